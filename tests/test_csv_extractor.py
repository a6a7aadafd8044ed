"""Tests for the CSV extraction pipeline."""

import pytest

from statement_importer.errors import ParseError
from statement_importer.extractors import CSVStatementExtractor, ExtractionContext
from statement_importer.extractors.csv_extractor import decode_csv_bytes
from statement_importer.schemas.csv_format import CSVColumnMapping
from statement_importer.schemas.dedupe import compute_transaction_hash
from statement_importer.schemas.extraction import StatementFormat, TransactionType


@pytest.fixture
def extractor() -> CSVStatementExtractor:
    return CSVStatementExtractor()


class TestCSVExtraction:
    """Tests for auto-detected CSV extraction."""

    def test_extracts_all_rows(self, extractor, sample_csv) -> None:
        """Every data row becomes a transaction."""
        data = extractor.extract(sample_csv.encode(), ExtractionContext())

        assert len(data.transactions) == 3
        coffee, salary, grocery = data.transactions

        assert coffee.date == "2024-01-15"
        assert coffee.description == "Coffee Shop"
        assert coffee.amount == 450
        assert coffee.type == TransactionType.DEBIT
        assert coffee.currency == "EUR"
        assert coffee.confidence == 1.0
        assert coffee.raw_line == "2024-01-15,Coffee Shop,-4.50,debit"

        assert salary.amount == 250000
        assert salary.type == TransactionType.CREDIT
        assert grocery.amount == 6230

    def test_hash_matches_canonical_hash(self, extractor, sample_csv) -> None:
        """Row hashes come from the canonical hash function."""
        data = extractor.extract(sample_csv.encode(), ExtractionContext())
        coffee = data.transactions[0]
        assert coffee.hash == compute_transaction_hash("2024-01-15", 450, "Coffee Shop")

    def test_summary(self, extractor, sample_csv) -> None:
        """Summary totals are computed over all transactions."""
        summary = extractor.extract(sample_csv.encode(), ExtractionContext()).summary

        assert summary.total_debits == 6680
        assert summary.total_credits == 250000
        assert summary.net_amount == 243320
        assert summary.transaction_count == 3
        assert summary.date_range.start == "2024-01-15"
        assert summary.date_range.end == "2024-01-17"

    def test_parsing_metadata(self, extractor, sample_csv) -> None:
        """Parsing metadata records how the file was read."""
        metadata = extractor.extract(sample_csv.encode(), ExtractionContext()).parsing_metadata

        assert metadata.format == StatementFormat.CSV
        assert metadata.detected_delimiter == ","
        assert metadata.has_headers is True
        assert metadata.column_mapping["amount_column"] == 2
        assert metadata.column_mapping["type_column"] == 3

    def test_german_statement(self, extractor, sample_csv_de) -> None:
        """Semicolons, dotted dates and comma decimals are normalized."""
        context = ExtractionContext(positive_amount_type=TransactionType.CREDIT)
        data = extractor.extract(sample_csv_de.encode(), context)

        rewe, salary = data.transactions
        assert rewe.date == "2024-01-15"
        assert rewe.amount == 2345
        assert rewe.type == TransactionType.DEBIT
        assert salary.date == "2024-01-16"
        assert salary.amount == 150000
        assert salary.type == TransactionType.CREDIT
        assert data.parsing_metadata.detected_delimiter == ";"

    def test_default_currency_from_context(self, extractor, sample_csv) -> None:
        """Without a currency column the context currency is used."""
        data = extractor.extract(sample_csv.encode(), ExtractionContext(default_currency="USD"))
        assert {tx.currency for tx in data.transactions} == {"USD"}

    def test_split_debit_credit_columns(self, extractor) -> None:
        """An empty debit cell reads the credit column as money in."""
        content = (
            "Date,Description,Debit,Credit\n"
            "2024-01-15,Coffee,4.50,\n"
            "2024-01-16,Salary,,2500.00\n"
        )
        data = extractor.extract(content.encode(), ExtractionContext())

        coffee, salary = data.transactions
        assert coffee.amount == 450
        assert coffee.type == TransactionType.DEBIT
        assert salary.amount == 250000
        assert salary.type == TransactionType.CREDIT

    def test_split_columns_ignore_credit_default(self, extractor) -> None:
        """Debit column amounts stay debits when unsigned amounts default to credit."""
        content = (
            "Date,Description,Debit,Credit\n"
            "2024-01-15,Rent,100.00,\n"
            "2024-01-16,Salary,,2500.00\n"
        )
        context = ExtractionContext(positive_amount_type=TransactionType.CREDIT)
        data = extractor.extract(content.encode(), context)

        rent, salary = data.transactions
        assert rent.type == TransactionType.DEBIT
        assert salary.type == TransactionType.CREDIT
        assert data.summary.total_debits == 10000

    def test_bad_row_skipped(self, extractor) -> None:
        """Rows that cannot be normalized are skipped, not fatal."""
        content = (
            "Date,Description,Amount\n"
            "2024-01-15,Coffee,-4.50\n"
            "invalid,Broken,-1.00\n"
            "2024-01-17,Bakery,-3.20\n"
        )
        data = extractor.extract(content.encode(), ExtractionContext())
        assert [tx.description for tx in data.transactions] == ["Coffee", "Bakery"]

    def test_rows_without_amount_ignored(self, extractor) -> None:
        """Rows with an empty amount cell are ignored."""
        content = "Date,Description,Amount\n2024-01-15,Coffee,-4.50\n2024-01-16,Note,\n"
        data = extractor.extract(content.encode(), ExtractionContext())
        assert len(data.transactions) == 1


class TestCSVErrors:
    """Tests for fatal CSV failures."""

    def test_empty_file(self, extractor) -> None:
        """An empty file raises ParseError."""
        with pytest.raises(ParseError, match="CSV file is empty"):
            extractor.extract(b"", ExtractionContext())

    def test_headerless_needs_mapping(self, extractor, sample_csv_headerless) -> None:
        """Headerless files cannot be auto-mapped."""
        with pytest.raises(ParseError, match="auto-detect column mapping"):
            extractor.extract(sample_csv_headerless.encode(), ExtractionContext())

    def test_no_valid_rows(self, extractor) -> None:
        """A file whose rows all fail raises ParseError."""
        content = "Date,Description,Amount\ninvalid,Broken,abc\n"
        with pytest.raises(ParseError, match="No valid transactions"):
            extractor.extract(content.encode(), ExtractionContext())

    def test_unknown_header_label(self, extractor, sample_csv) -> None:
        """A manual mapping naming a missing header raises ParseError."""
        mapping = CSVColumnMapping(
            date_column="Booking", description_column="Description", amount_column="Amount"
        )
        with pytest.raises(ParseError, match="no column named"):
            extractor.extract(sample_csv.encode(), ExtractionContext(column_mapping=mapping))


class TestManualMapping:
    """Tests for user-provided column mappings."""

    def test_headerless_with_indices(self, extractor, sample_csv_headerless) -> None:
        """Index mappings work without a header row."""
        mapping = CSVColumnMapping(date_column=0, description_column=1, amount_column=2)
        data = extractor.extract(
            sample_csv_headerless.encode(), ExtractionContext(column_mapping=mapping)
        )

        assert len(data.transactions) == 2
        assert data.transactions[1].description == "Bakery"
        assert data.parsing_metadata.has_headers is False

    def test_header_labels(self, extractor, sample_csv) -> None:
        """Header labels resolve case-insensitively to indices."""
        mapping = CSVColumnMapping(
            date_column="date", description_column="DESCRIPTION", amount_column="Amount"
        )
        context = ExtractionContext(
            column_mapping=mapping, positive_amount_type=TransactionType.CREDIT
        )
        data = extractor.extract(sample_csv.encode(), context)

        # No type column mapped: sign and default decide
        assert data.transactions[0].type == TransactionType.DEBIT
        assert data.transactions[1].type == TransactionType.CREDIT
        assert data.parsing_metadata.column_mapping["date_column"] == 0


class TestDecodingAndRouting:
    """Tests for byte decoding and file acceptance."""

    def test_utf8_bom_stripped(self, extractor, sample_csv) -> None:
        """A UTF-8 BOM does not end up in the first header."""
        data = extractor.extract(b"\xef\xbb\xbf" + sample_csv.encode(), ExtractionContext())
        assert len(data.transactions) == 3

    def test_latin1_fallback(self) -> None:
        """Non-UTF-8 files are decoded as Latin-1."""
        content = "Datum;Text;Betrag\n15.01.2024;Café;-3,50\n".encode("latin-1")
        assert "Café" in decode_csv_bytes(content)

    def test_can_extract(self, extractor) -> None:
        """CSV files are accepted by name or MIME type; PDFs are not."""
        assert extractor.can_extract("export.CSV", "", b"") is True
        assert extractor.can_extract("export", "text/csv", b"") is True
        assert extractor.can_extract("statement.pdf", "application/pdf", b"%PDF") is False
