"""Test fixtures and utilities."""

import uuid
from pathlib import Path

import pytest

from statement_importer.config import (
    PROVIDER_ENV,
    Config,
    ProcessingConfig,
    UploadConfig,
)
from statement_importer.schemas.dedupe import compute_transaction_hash
from statement_importer.schemas.extraction import (
    ExtractedData,
    ExtractedTransaction,
    ParsingMetadata,
    StatementFormat,
    TransactionType,
)
from statement_importer.state_store import StateStore, TransactionRecord
from statement_importer.storage import LocalFileStore

# Typical bank export: comma separated, explicit type column
SAMPLE_CSV = """Date,Description,Amount,Type
2024-01-15,Coffee Shop,-4.50,debit
2024-01-16,Salary January,2500.00,credit
2024-01-17,Grocery Store,-62.30,debit
"""

# German online banking export: semicolon, day-first dates, comma decimals
SAMPLE_CSV_DE = """Datum;Verwendungszweck;Betrag;Währung
15.01.2024;REWE Markt;-23,45;EUR
16.01.2024;Gehalt;1.500,00;EUR
"""

# No header row: columns must be mapped manually
SAMPLE_CSV_HEADERLESS = """2024-01-15,Coffee Shop,-4.50
2024-01-16,Bakery,-3.20
"""

ENV_VARS = [
    "STATEMENT_DB_PATH",
    "STATEMENT_UPLOAD_DIR",
    "STATEMENT_DEFAULT_CURRENCY",
    "STATEMENT_PREFER_EUROPEAN_DATES",
    *[name for pair in PROVIDER_ENV.values() for name in pair],
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment variables out of configuration loading."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sample_csv() -> str:
    """Comma-separated statement with a type column."""
    return SAMPLE_CSV


@pytest.fixture
def sample_csv_de() -> str:
    """Semicolon-separated German statement."""
    return SAMPLE_CSV_DE


@pytest.fixture
def sample_csv_headerless() -> str:
    """Statement without a header row."""
    return SAMPLE_CSV_HEADERLESS


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def file_store(tmp_path) -> LocalFileStore:
    """Upload storage in a temporary directory."""
    return LocalFileStore(tmp_path / "uploads")


@pytest.fixture
def config(tmp_path, temp_db) -> Config:
    """Configuration pointing at temporary paths, no AI providers."""
    return Config(
        processing=ProcessingConfig(max_workers=1, poll_attempts=5, poll_interval_seconds=0.01),
        uploads=UploadConfig(storage_dir=tmp_path / "uploads"),
        state_db_path=temp_db,
    )


def make_transaction(
    date: str = "2024-01-15",
    description: str = "Coffee Shop",
    amount: int = 450,
    tx_type: TransactionType = TransactionType.DEBIT,
    currency: str = "EUR",
    **overrides,
) -> ExtractedTransaction:
    """Build an extracted transaction with a correct hash."""
    tx = ExtractedTransaction(
        id=str(uuid.uuid4()),
        date=date,
        description=description,
        amount=amount,
        type=tx_type,
        currency=currency,
        confidence=1.0,
        hash=compute_transaction_hash(date, amount, description),
    )
    for name, value in overrides.items():
        setattr(tx, name, value)
    return tx


def make_extracted(transactions: list[ExtractedTransaction]) -> ExtractedData:
    """Wrap transactions in a CSV working set."""
    return ExtractedData.build(
        transactions=transactions,
        parsing_metadata=ParsingMetadata(format=StatementFormat.CSV, detected_delimiter=","),
    )


def make_record(user_id: str = "user-1", **overrides) -> TransactionRecord:
    """Build a persisted transaction record (defaults to an unpaid invoice)."""
    values = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "name": "Invoice",
        "total": -450,
        "currency_code": "EUR",
        "type": "expense",
        "issued_at": "2024-01-15",
        "source_type": "invoice",
    }
    values.update(overrides)
    return TransactionRecord(**values)
