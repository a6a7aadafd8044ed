"""
CSV layout descriptions.

A column reference is either a zero-based index or a header label. Labels
are resolved to indices against the detected headers before any row is read.
"""

from dataclasses import dataclass, field, fields
from typing import Optional, Union

from ..errors import ParseError, ValidationError

ColumnRef = Union[int, str]


def _resolve_column(column: ColumnRef, headers: list[str], field_name: str) -> int:
    if isinstance(column, bool):
        raise ValidationError(f"{field_name}: column must be an index or header label")
    if isinstance(column, int):
        if column < 0:
            raise ValidationError(f"{field_name}: column index must be >= 0, got {column}")
        return column

    label = column.strip()
    if label.isdigit():
        return int(label)

    lowered = [h.strip().lower() for h in headers]
    try:
        return lowered.index(label.lower())
    except ValueError:
        raise ParseError(f"{field_name}: no column named '{label}' in CSV headers") from None


@dataclass
class CSVColumnMapping:
    """Which CSV columns hold which transaction fields.

    credit_column is used for layouts with split debit/credit amount columns:
    when the amount cell of a row is empty, the credit cell is read instead.
    """

    date_column: ColumnRef
    description_column: ColumnRef
    amount_column: ColumnRef
    type_column: Optional[ColumnRef] = None
    currency_column: Optional[ColumnRef] = None
    credit_column: Optional[ColumnRef] = None

    def resolve(self, headers: list[str]) -> "CSVColumnMapping":
        """Return a copy with every header label replaced by its index.

        Raises:
            ParseError: If a label does not name a header
            ValidationError: If an index is negative
        """
        resolved = {}
        for f in fields(self):
            value = getattr(self, f.name)
            resolved[f.name] = (
                None if value is None else _resolve_column(value, headers, f.name)
            )
        return CSVColumnMapping(**resolved)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> "CSVColumnMapping":
        """Deserialize from dictionary.

        Raises:
            ValidationError: If a required column is missing
        """
        missing = [
            name
            for name in ("date_column", "description_column", "amount_column")
            if data.get(name) is None or data.get(name) == ""
        ]
        if missing:
            raise ValidationError(f"Column mapping is missing: {', '.join(missing)}")

        return cls(
            date_column=data["date_column"],
            description_column=data["description_column"],
            amount_column=data["amount_column"],
            type_column=data.get("type_column"),
            currency_column=data.get("currency_column"),
            credit_column=data.get("credit_column"),
        )


@dataclass
class CSVFormatInfo:
    """Structure of a CSV statement, shown to the user before mapping."""

    delimiter: str
    has_headers: bool
    columns: list[str]
    row_count: int
    sample_rows: list[list[str]] = field(default_factory=list)
    suggested_mapping: Optional[CSVColumnMapping] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "delimiter": self.delimiter,
            "has_headers": self.has_headers,
            "columns": self.columns,
            "row_count": self.row_count,
            "sample_rows": self.sample_rows,
            "suggested_mapping": (
                self.suggested_mapping.to_dict() if self.suggested_mapping else None
            ),
        }
