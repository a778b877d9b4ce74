"""
Command-line interface for AMR surveillance imports.

Usage:
    amr-ingest import <file> [--template <yaml|owner/name>] [--format <fmt>] [options]
    amr-ingest rollback <batch_id>
    amr-ingest batches [--status <status>] [--limit <n>]
    amr-ingest show <batch_id>
    amr-ingest templates
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

from amr_ingest.batch import ImportPipeline, LongFormatExporter
from amr_ingest.core.config import EngineSettings, load_settings
from amr_ingest.core.errors import AmrIngestError
from amr_ingest.core.mapping import TemplateConfigLoader, TemplateStore, load_templates
from amr_ingest.core.models import AuthorizationContext, BatchFilter, SourceFile
from amr_ingest.observability import metrics
from amr_ingest.observability.logger import get_logger
from amr_ingest.warehouse.connection import DatabaseConnectionPool
from amr_ingest.warehouse.ledger import PostgresImportLedger
from amr_ingest.warehouse.schema_mgmt import SchemaManager
from amr_ingest.warehouse.store import PostgresPersistenceStore

logger = get_logger(__name__)

FORMATS = ["delimited", "spreadsheet", "whonet-db", "structured"]


def format_timestamp(ts: datetime | None) -> str:
    """Format timestamp for display."""
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def create_pool(args) -> DatabaseConnectionPool:
    pool = DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
    )
    pool.open()
    return pool


def load_template_store(settings: EngineSettings) -> TemplateStore:
    """Template store seeded with the YAML templates of the templates directory."""
    store = TemplateStore()
    if settings.templates_dir.is_dir():
        for template in load_templates(settings.templates_dir):
            store.create(template)
    return store


def resolve_template(spec: str | None, store: TemplateStore):
    """A template from a YAML path or an owner/name reference."""
    if spec is None:
        return None
    if Path(spec).is_file():
        return TemplateConfigLoader(spec).load_template()
    owner, _, name = spec.partition("/")
    if not name:
        raise ValueError(f"Template must be a YAML file or 'owner/name', got '{spec}'")
    return store.get(owner, name)


def print_report(report) -> None:
    batch = report.batch
    counts = batch.counts
    print(f"\n{'=' * 60}")
    print(f"BATCH {batch.batch_id}: {batch.status.upper()}{' (paused)' if report.paused else ''}")
    print(f"{'=' * 60}")
    print(f"Source:        {batch.source_name} ({batch.file_format or 'unknown format'})")
    print(f"Template:      {batch.template_name}")
    print(f"Rows parsed:   {counts.parsed}")
    print(f"Interpreted:   {counts.interpreted}")
    print(f"Committed:     {counts.committed}")
    print(f"Errored:       {counts.errored}")
    print(f"Quality score: {report.quality.mean_score:.3f}")
    print(f"Completeness:  {report.quality.completeness:.1f}%")
    if batch.error:
        print(f"Error:         {batch.error}")
    for warning in report.warnings:
        print(f"WARNING: {warning}")

    if report.rows:
        print("\nIssues by row:")
        print(f"{'Row':<6} {'Severity':<9} {'Kind':<28} {'Field':<18} {'Message'}")
        print(f"{'-' * 60}")
        for row in report.rows:
            for issue in row.issues:
                print(
                    f"{row.row_number:<6} {issue.severity:<9} {issue.kind:<28} "
                    f"{(issue.field or '-'):<18} {issue.message}"
                )
    print(f"\n{'=' * 60}\n")


def import_command(args) -> int:
    """
    Import one file.

    Returns:
        Exit code: 0 when committed or paused, 1 otherwise
    """
    settings = load_settings(args.config)
    source_path = Path(args.file)
    if not source_path.exists():
        logger.error(f"Input file not found: {args.file}")
        return 1

    source = SourceFile.from_path(
        source_path,
        declared_format=args.format,
        sheet_name=args.sheet,
        header_row=args.header_row,
        delimiter=args.delimiter,
        encoding=args.encoding,
    )
    auth = AuthorizationContext(
        actor=args.actor,
        allowed_tables=frozenset({"isolate", settings.target_table}),
    )
    if args.metrics_port:
        metrics.start_metrics_server(args.metrics_port)

    pool = None
    try:
        template_store = load_template_store(settings)
        template = resolve_template(args.template, template_store)

        if args.dry_run:
            logger.info("DRY RUN MODE: rows are written to an in-memory store only")
            pipeline = ImportPipeline.from_settings(settings, template_store=template_store)
        else:
            pool = create_pool(args)
            SchemaManager(pool, settings.target_table).ensure_schema()
            pipeline = ImportPipeline.from_settings(
                settings,
                store=PostgresPersistenceStore(pool, settings.target_table),
                ledger=PostgresImportLedger(pool),
                template_store=template_store,
            )

        report = pipeline.run(source, auth, template=template)
        print_report(report)

        if args.export:
            LongFormatExporter().export(report.units, args.export)
        if args.dry_run:
            logger.info("DRY RUN: no data was written to the database")
        return 0 if report.status == "committed" or report.paused else 1

    except (AmrIngestError, ValueError) as e:
        logger.error(f"Import failed: {e}")
        print(f"\nError: {e}")
        return 1
    finally:
        if pool is not None:
            pool.close()


def rollback_command(args) -> int:
    settings = load_settings(args.config)
    pool = create_pool(args)
    try:
        pipeline = ImportPipeline.from_settings(
            settings,
            store=PostgresPersistenceStore(pool, settings.target_table),
            ledger=PostgresImportLedger(pool),
        )
        batch = pipeline.rollback(args.batch_id, actor=args.actor)
        print(f"Rolled back batch {batch.batch_id} at {format_timestamp(batch.rolled_back_at)}")
        return 0
    except AmrIngestError as e:
        print(f"\nError: {e}")
        return 1
    finally:
        pool.close()


def batches_command(args) -> int:
    pool = create_pool(args)
    try:
        ledger = PostgresImportLedger(pool)
        batches = ledger.list_batches(BatchFilter(status=args.status, limit=args.limit))
        if not batches:
            print("\nNo batches found matching the criteria.")
            return 0

        print(f"\n{'Batch ID':<36} {'Status':<12} {'Actor':<16} {'Rows':>6} {'Created':<20}")
        print(f"{'-' * 96}")
        for batch in batches:
            print(
                f"{batch.batch_id:<36} {batch.status:<12} {batch.actor:<16} "
                f"{batch.counts.parsed:>6} {format_timestamp(batch.created_at):<20}"
            )
        print()
        return 0
    finally:
        pool.close()


def show_command(args) -> int:
    pool = create_pool(args)
    try:
        ledger = PostgresImportLedger(pool)
        batch = ledger.get_batch(args.batch_id)
        if args.json:
            print(json.dumps(batch.model_dump(mode="json", exclude={"row_ids"}), indent=2))
            return 0

        print(f"\n{'=' * 80}")
        print(f"BATCH: {batch.batch_id}")
        print(f"{'=' * 80}\n")
        print(f"Status:    {batch.status}")
        print(f"Source:    {batch.source_name} (sha256 {batch.source_checksum[:16]}...)")
        print(f"Template:  {batch.template_name}")
        print(f"Actor:     {batch.actor}")
        print(f"Counts:    {batch.counts.model_dump()}")
        print(f"Row ids:   {len(batch.row_ids)}")
        if batch.error:
            print(f"Error:     {batch.error}")

        print("\nEvents:")
        print(f"{'Timestamp':<20} {'From':<12} {'To':<12} {'Actor':<16} {'Details'}")
        print(f"{'-' * 80}")
        for event in ledger.events(batch.batch_id):
            print(
                f"{format_timestamp(event.created_at):<20} {event.from_status or '-':<12} "
                f"{event.to_status:<12} {event.actor or '-':<16} {json.dumps(event.detail)}"
            )
        print(f"\n{'=' * 80}\n")
        return 0
    except AmrIngestError as e:
        print(f"\nError: {e}")
        return 1
    finally:
        pool.close()


def templates_command(args) -> int:
    settings = load_settings(args.config)
    store = load_template_store(settings)
    templates = store.list_templates(owner=args.owner)
    if not templates:
        print(f"\nNo templates found in {settings.templates_dir}")
        return 0

    print(f"\n{'Owner':<20} {'Name':<24} {'Ver':>4} {'Layout':<7} {'Standard':<14} {'Columns':>7}")
    print(f"{'-' * 82}")
    for template in templates:
        standard = (
            f"{template.breakpoint_standard} {template.breakpoint_version}"
            if template.breakpoint_standard
            else "-"
        )
        print(
            f"{template.owner:<20} {template.name:<24} {template.version:>4} "
            f"{template.layout:<7} {standard:<14} {len(template.columns):>7}"
        )
    print()
    return 0


def add_db_arguments(parser: argparse.ArgumentParser) -> None:
    """Database connection arguments; unset values fall back to DB_* env vars."""
    parser.add_argument("--db-host", default=None, help="Database host (env DB_HOST)")
    parser.add_argument("--db-port", type=int, default=None, help="Database port (env DB_PORT)")
    parser.add_argument("--db-name", default=None, help="Database name (env DB_NAME)")
    parser.add_argument("--db-user", default=None, help="Database user (env DB_USER)")
    parser.add_argument("--db-password", default=None, help="Database password (env DB_PASSWORD)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="amr-ingest",
        description="AMR surveillance data import and interpretation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Import a WHONET-style wide CSV in auto-map mode without touching the database
  amr-ingest import data/ecoli_q1.csv --dry-run

  # Import with a stored template and export the normalized long format
  amr-ingest import data/lab_export.xlsx --template regional-lab/whonet-wide \\
      --sheet Isolates --export out/long.csv

  # Reverse a committed batch
  amr-ingest rollback batch_20240105_3f2a9c
        """,
    )
    parser.add_argument(
        "--config", default=None, help="Engine settings YAML (default: config/engine.yaml)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    import_parser = subparsers.add_parser("import", help="Import a laboratory file")
    import_parser.add_argument("file", help="Path to the source file")
    import_parser.add_argument(
        "--template", default=None, help="Template YAML file or 'owner/name' (default: auto-map)"
    )
    import_parser.add_argument(
        "--format", default=None, choices=FORMATS, help="Override format detection"
    )
    import_parser.add_argument("--sheet", default=None, help="Spreadsheet sheet name")
    import_parser.add_argument(
        "--header-row", type=int, default=0, help="0-based header row offset (default: 0)"
    )
    import_parser.add_argument("--delimiter", default=None, help="Delimiter for text files")
    import_parser.add_argument("--encoding", default=None, help="Text encoding")
    import_parser.add_argument("--actor", default="cli", help="Acting user (default: cli)")
    import_parser.add_argument(
        "--dry-run", action="store_true", help="Process without writing to the database"
    )
    import_parser.add_argument(
        "--export", default=None, help="Write normalized records as long-format CSV"
    )
    import_parser.add_argument(
        "--metrics-port", type=int, default=None, help="Serve Prometheus metrics on this port"
    )
    add_db_arguments(import_parser)

    rollback_parser = subparsers.add_parser("rollback", help="Roll back a committed batch")
    rollback_parser.add_argument("batch_id", help="Batch to roll back")
    rollback_parser.add_argument("--actor", default="cli", help="Acting user (default: cli)")
    add_db_arguments(rollback_parser)

    batches_parser = subparsers.add_parser("batches", help="List import batches")
    batches_parser.add_argument(
        "--status",
        default=None,
        choices=["pending", "parsing", "validating", "committed", "failed", "cancelled", "rolled-back"],
        help="Filter by status",
    )
    batches_parser.add_argument("--limit", type=int, default=50, help="Maximum rows (default: 50)")
    add_db_arguments(batches_parser)

    show_parser = subparsers.add_parser("show", help="Show one batch and its ledger events")
    show_parser.add_argument("batch_id", help="Batch to show")
    show_parser.add_argument("--json", action="store_true", help="Print the batch as JSON")
    add_db_arguments(show_parser)

    templates_parser = subparsers.add_parser("templates", help="List mapping templates")
    templates_parser.add_argument("--owner", default=None, help="Only templates of this owner")

    return parser


COMMANDS = {
    "import": import_command,
    "rollback": rollback_command,
    "batches": batches_command,
    "show": show_command,
    "templates": templates_command,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
