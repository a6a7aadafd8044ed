"""
CLI main entry point.
"""

import argparse
import json
import logging
import mimetypes
import sys
from pathlib import Path

from ..ai import ModelCatalog
from ..config import KNOWN_PROVIDERS, Config, ProviderConfig, create_default_config, load_config
from ..errors import StatementError
from ..extractors import analyze_csv_format, decode_csv_bytes
from ..schemas.csv_format import CSVColumnMapping
from ..services import ImportOptions, StatementLifecycleManager, StatusPoller, UploadedFile
from ..state_store import StatementStatus, StateStore
from ..storage import LocalFileStore

logger = logging.getLogger(__name__)

DEFAULT_USER = "local"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="statement-importer",
        description="Import bank statements (CSV or PDF) as reviewed transactions",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    # Shared by every statement command
    user_parent = argparse.ArgumentParser(add_help=False)
    user_parent.add_argument(
        "--user",
        type=str,
        default=DEFAULT_USER,
        help=f"Owner of the statements (default: {DEFAULT_USER})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # upload command
    upload_parser = subparsers.add_parser(
        "upload", parents=[user_parent], help="Upload and process a statement"
    )
    upload_parser.add_argument("file", type=Path, help="CSV or PDF statement")
    upload_parser.add_argument(
        "--currency",
        type=str,
        help="Default currency for this statement (default: parsing.default_currency)",
    )
    upload_parser.add_argument(
        "--wait",
        action="store_true",
        help="Poll until processing finishes",
    )

    # status command
    status_parser = subparsers.add_parser(
        "status", parents=[user_parent], help="Show processing status of a statement"
    )
    status_parser.add_argument("statement_id", type=str)

    # show command
    show_parser = subparsers.add_parser(
        "show", parents=[user_parent], help="Show extracted transactions"
    )
    show_parser.add_argument("statement_id", type=str)
    show_parser.add_argument(
        "--matches",
        action="store_true",
        help="Include reconciliation suggestions",
    )

    # analyze command
    analyze_parser = subparsers.add_parser("analyze", help="Describe the layout of a CSV file")
    analyze_parser.add_argument("file", type=Path)

    # remap command
    remap_parser = subparsers.add_parser(
        "remap", parents=[user_parent], help="Re-run CSV extraction with manual columns"
    )
    remap_parser.add_argument("statement_id", type=str)
    remap_parser.add_argument("--date", required=True, help="Date column (index or header)")
    remap_parser.add_argument("--amount", required=True, help="Amount column")
    remap_parser.add_argument("--description", required=True, help="Description column")
    remap_parser.add_argument("--type", dest="type_column", help="Debit/credit column")
    remap_parser.add_argument("--currency-column", help="Currency column")
    remap_parser.add_argument("--credit", dest="credit_column", help="Separate credit column")

    # import command
    import_parser = subparsers.add_parser(
        "import", parents=[user_parent], help="Import reviewed transactions"
    )
    import_parser.add_argument("statement_id", type=str)
    import_parser.add_argument(
        "--tx",
        nargs="+",
        dest="transaction_ids",
        help="Only import these extracted transaction IDs",
    )
    import_parser.add_argument(
        "--keep-duplicates",
        action="store_true",
        help="Import transactions flagged as duplicates too",
    )
    import_parser.add_argument("--category", type=str, help="Default category code")
    import_parser.add_argument("--project", type=str, help="Default project code")

    # import-all command
    import_all_parser = subparsers.add_parser(
        "import-all", parents=[user_parent], help="Import every ready statement"
    )
    import_all_parser.add_argument(
        "--keep-duplicates",
        action="store_true",
        help="Import transactions flagged as duplicates too",
    )

    # delete command
    delete_parser = subparsers.add_parser(
        "delete", parents=[user_parent], help="Delete a statement and its file"
    )
    delete_parser.add_argument("statement_id", type=str)

    # list command
    list_parser = subparsers.add_parser("list", parents=[user_parent], help="List statements")
    list_parser.add_argument(
        "--status",
        choices=[s.value for s in StatementStatus],
        help="Only statements in this status",
    )

    # models command
    models_parser = subparsers.add_parser("models", help="List models offered by a provider")
    models_parser.add_argument("provider", choices=KNOWN_PROVIDERS)

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    return parser


def build_manager(config: Config) -> StatementLifecycleManager:
    """Wire the lifecycle manager from configuration."""
    return StatementLifecycleManager(
        config=config,
        store=StateStore(config.state_db_path),
        file_store=LocalFileStore(config.uploads.storage_dir),
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _format_amount(minor_units: int) -> str:
    return f"{minor_units / 100:.2f}"


def cmd_upload(
    manager: StatementLifecycleManager,
    user_id: str,
    file_path: Path,
    currency: str | None,
    wait: bool,
) -> int:
    """Upload a statement and optionally wait for processing."""
    if not file_path.exists():
        print(f"❌ File not found: {file_path}")
        return 1

    mimetype = mimetypes.guess_type(file_path.name)[0] or ""
    print(f"📤 Uploading {file_path.name}...")

    statement = manager.upload(
        user_id,
        UploadedFile(filename=file_path.name, content=file_path.read_bytes(), mimetype=mimetype),
        currency=currency,
    )
    print(f"  Statement ID: {statement.id}")

    if not wait:
        print(f"  Status: {statement.status.value}")
        return 0

    processing = manager.config.processing
    poller = StatusPoller(processing.poll_attempts, processing.poll_interval_seconds)
    outcome = poller.wait(lambda: manager.get_status(user_id, statement.id))

    if outcome.timed_out:
        print(f"⏳ {outcome.message}")
        return 1
    if outcome.status.status == StatementStatus.FAILED:
        print(f"❌ Processing failed: {outcome.status.error_message}")
        return 1

    print(f"✓ Ready: {outcome.status.transaction_count} transaction(s) extracted")
    return 0


def cmd_status(manager: StatementLifecycleManager, user_id: str, statement_id: str) -> int:
    """Show statement status."""
    info = manager.get_status(user_id, statement_id)
    print(f"  Status:       {info.status.value}")
    print(f"  Transactions: {info.transaction_count}")
    if info.error_message:
        print(f"  Error:        {info.error_message}")
    return 0


def cmd_show(
    manager: StatementLifecycleManager, user_id: str, statement_id: str, matches: bool
) -> int:
    """Show the extracted working set."""
    extracted = manager.get_extracted(user_id, statement_id)
    suggestions = manager.suggest_matches(user_id, statement_id) if matches else {}

    print(f"\n📊 Statement {statement_id}")
    print("=" * 60)
    for tx in extracted.transactions:
        flags = []
        if tx.is_duplicate:
            flags.append("duplicate")
        if not tx.selected:
            flags.append("deselected")
        if tx.edited:
            flags.append("edited")
        sign = "-" if tx.type.value == "debit" else "+"
        flag_text = f" [{', '.join(flags)}]" if flags else ""
        print(
            f"  {tx.id}  {tx.date}  {sign}{_format_amount(tx.amount):>12} {tx.currency}  "
            f"{tx.description}{flag_text}"
        )
        for suggestion in suggestions.get(tx.id, []):
            print(
                f"      ↳ {suggestion.transaction_name} "
                f"({suggestion.confidence:.0%}, {suggestion.transaction_id})"
            )

    summary = extracted.summary
    print("-" * 60)
    print(f"  Debits:  {_format_amount(summary.total_debits)}")
    print(f"  Credits: {_format_amount(summary.total_credits)}")
    print(f"  Net:     {_format_amount(summary.net_amount)}")
    print(f"  Period:  {summary.date_range.start} .. {summary.date_range.end}")
    return 0


def cmd_analyze(file_path: Path) -> int:
    """Describe a local CSV file."""
    if not file_path.exists():
        print(f"❌ File not found: {file_path}")
        return 1

    info = analyze_csv_format(decode_csv_bytes(file_path.read_bytes()))
    _print_json(info.to_dict())
    return 0


def cmd_remap(manager: StatementLifecycleManager, user_id: str, args: argparse.Namespace) -> int:
    """Re-run CSV extraction with a manual column mapping."""
    mapping = CSVColumnMapping.from_dict(
        {
            "date_column": args.date,
            "amount_column": args.amount,
            "description_column": args.description,
            "type_column": args.type_column,
            "currency_column": args.currency_column,
            "credit_column": args.credit_column,
        }
    )
    extracted = manager.remap_columns(user_id, args.statement_id, mapping)
    print(f"✓ Remapped: {len(extracted.transactions)} transaction(s)")
    return 0


def cmd_import(manager: StatementLifecycleManager, user_id: str, args: argparse.Namespace) -> int:
    """Import reviewed transactions of one statement."""
    options = ImportOptions(
        skip_duplicates=not args.keep_duplicates,
        default_category=args.category,
        default_project=args.project,
    )
    result = manager.import_transactions(user_id, args.statement_id, args.transaction_ids, options)
    print(
        f"✓ Imported: {result.imported_count}, Skipped duplicates: {result.skipped_duplicates}"
    )
    return 0


def cmd_import_all(manager: StatementLifecycleManager, user_id: str, keep_duplicates: bool) -> int:
    """Import every ready statement."""
    outcome = manager.import_all(user_id, ImportOptions(skip_duplicates=not keep_duplicates))
    for statement_id, error in outcome.errors.items():
        print(f"  ❌ {statement_id}: {error}")
    print(
        f"✓ Imported: {outcome.imported_count} from {len(outcome.results)} statement(s), "
        f"Skipped duplicates: {outcome.skipped_duplicates}"
    )
    return 1 if outcome.errors else 0


def cmd_delete(manager: StatementLifecycleManager, user_id: str, statement_id: str) -> int:
    manager.delete(user_id, statement_id)
    print(f"✓ Deleted statement {statement_id}")
    return 0


def cmd_list(manager: StatementLifecycleManager, user_id: str, status: str | None) -> int:
    """List statements."""
    statements = manager.list_statements(user_id, StatementStatus(status) if status else None)
    if not statements:
        print("No statements")
        return 0

    for statement in statements:
        print(
            f"  [{statement.id}] {statement.filename}  {statement.status.value}  "
            f"({statement.transaction_count} transactions)"
        )
    return 0


def cmd_models(config: Config, provider: str) -> int:
    """List the models a provider offers."""
    entry = next(
        (p for p in config.extraction.providers if p.provider == provider),
        ProviderConfig(provider=provider),
    )
    catalog = ModelCatalog(ttl_seconds=config.extraction.model_cache_ttl_seconds)
    try:
        result = catalog.list_models(entry)
    finally:
        catalog.close()

    if result.error:
        print(f"❌ {result.error}")
        return 1

    for model in result.models:
        vision = " (vision)" if model.supports_vision else ""
        print(f"  {model.id}{vision}")
    return 0


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ Config already exists: {config_path}")
        return 1

    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def run_command(config: Config, parsed: argparse.Namespace) -> int:
    """Route statement commands that need the lifecycle manager."""
    with build_manager(config) as manager:
        user_id = parsed.user
        if parsed.command == "upload":
            return cmd_upload(manager, user_id, parsed.file, parsed.currency, parsed.wait)
        elif parsed.command == "status":
            return cmd_status(manager, user_id, parsed.statement_id)
        elif parsed.command == "show":
            return cmd_show(manager, user_id, parsed.statement_id, parsed.matches)
        elif parsed.command == "remap":
            return cmd_remap(manager, user_id, parsed)
        elif parsed.command == "import":
            return cmd_import(manager, user_id, parsed)
        elif parsed.command == "import-all":
            return cmd_import_all(manager, user_id, parsed.keep_duplicates)
        elif parsed.command == "delete":
            return cmd_delete(manager, user_id, parsed.statement_id)
        elif parsed.command == "list":
            return cmd_list(manager, user_id, parsed.status)
    return 1


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    problems = config.validate()
    if problems:
        for problem in problems:
            print(f"❌ {problem}")
        return 1

    try:
        if parsed.command == "analyze":
            return cmd_analyze(parsed.file)
        elif parsed.command == "models":
            return cmd_models(config, parsed.provider)
        return run_command(config, parsed)
    except StatementError as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
