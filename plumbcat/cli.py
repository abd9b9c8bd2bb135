"""Command line entry point.

Usage:
    plumbcat init-db
    plumbcat import-products data/products.csv --dry-run
    plumbcat import-products data/products.json --batch-size 50 --report reports/run.json
    plumbcat export-categories --output categories.csv
    plumbcat export-products --output products.csv
    plumbcat import-categories categories.json
    plumbcat recount

Exit codes: 0 when the command ran (row-level import failures are listed
but do not fail the run), 2 for an unreadable or malformed input file,
3 when the database cannot be reached.
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any

import structlog

from plumbcat.catalog.service import CatalogService
from plumbcat.domain.categories import legacy_category_records
from plumbcat.domain.exceptions import FeedFormatError, StorageUnavailableError
from plumbcat.importer.pipeline import BulkImportPipeline, CancellationToken, ImportReport
from plumbcat.infrastructure.config import settings
from plumbcat.infrastructure.database import (
    configure_engine,
    dispose_engine,
    get_session_factory,
    init_models,
)
from plumbcat.infrastructure.images import DryRunImageRehoster, HttpImageRehoster
from plumbcat.infrastructure.logging import setup_logging

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_BAD_INPUT = 2
EXIT_STORAGE = 3


# ============================================================================
# Commands
# ============================================================================


def _install_cancel_handler(token: CancellationToken) -> None:
    """Stop after the current batch on Ctrl+C."""
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError):
        # No signal support on this loop; Ctrl+C aborts the run instead.
        pass


def print_report(report: ImportReport) -> None:
    """Print import totals and every row that was not written."""
    totals = report.totals
    mode = "DRY RUN" if report.dry_run else "LIVE"
    print("=" * 60)
    print(f"Import {report.run_id} ({mode}) from {report.source}")
    print("=" * 60)
    for key in ("total", "inserted", "updated", "unchanged", "duplicates", "skipped", "errors"):
        print(f"  {key:<10} {totals[key]}")
    if report.cancelled:
        print("  cancelled before the last batch")

    problems = report.problem_rows
    if problems:
        print()
        print("Rows not written:")
        for row in problems:
            label = row.sku or row.name or "-"
            reason = "; ".join(row.errors) or row.reason or ""
            print(f"  row {row.row_number} [{row.outcome.value}] {label}: {reason}")

    warned = [r for r in report.rows if r.warnings]
    if warned:
        print()
        print("Warnings:")
        for row in warned:
            for warning in row.warnings:
                print(f"  row {row.row_number}: {warning}")


async def import_products(args: argparse.Namespace) -> int:
    token = CancellationToken()
    _install_cancel_handler(token)

    if args.dry_run or args.no_rehost:
        rehoster = DryRunImageRehoster()
    else:
        rehoster = HttpImageRehoster()

    try:
        async with get_session_factory()() as session:
            pipeline = BulkImportPipeline(
                session,
                rehoster=rehoster,
                dry_run=args.dry_run,
                batch_size=args.batch_size,
                cancel_token=token,
            )
            report = await pipeline.run_file(args.path)
    finally:
        await rehoster.close()

    print_report(report)

    report_path = args.report or Path(settings.report_dir) / f"import-{report.run_id}.json"
    written = report.write(report_path)
    print()
    print(f"Report written to {written}")
    return EXIT_OK


async def export_categories(args: argparse.Namespace) -> int:
    async with get_session_factory()() as session:
        service = CatalogService(session)
        if args.format == "csv":
            content = await service.tree.export_categories_csv()
        else:
            records = await service.tree.export_categories()
            content = json.dumps(records, indent=2, ensure_ascii=False)

    if args.output:
        Path(args.output).write_text(content, encoding="utf-8")
        print(f"Categories written to {args.output}")
    else:
        sys.stdout.write(content)
    return EXIT_OK


async def export_products(args: argparse.Namespace) -> int:
    async with get_session_factory()() as session:
        service = CatalogService(session)
        if args.format == "csv":
            content = await service.export_products_csv()
        else:
            records = await service.export_products()
            content = json.dumps(records, indent=2, ensure_ascii=False)

    if args.output:
        Path(args.output).write_text(content, encoding="utf-8")
        print(f"Products written to {args.output}")
    else:
        sys.stdout.write(content)
    return EXIT_OK


def _load_category_records(path: str) -> list[dict[str, Any]]:
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8-sig"))
    except OSError as e:
        raise FeedFormatError(f"Cannot read {path}: {e.strerror or e}") from e
    except json.JSONDecodeError as e:
        raise FeedFormatError(f"{path} is not valid JSON: {e}") from e

    if isinstance(document, list):
        records = document
    elif isinstance(document, dict) and "categories" in document:
        # Old two-collection dump: main categories plus subcategories
        records = legacy_category_records(
            document.get("categories") or [],
            document.get("subcategories") or [],
        )
    else:
        raise FeedFormatError(f"{path} must hold a list of category records")

    if not all(isinstance(r, dict) for r in records):
        raise FeedFormatError(f"{path} must hold a list of category records")
    return records


async def import_categories(args: argparse.Namespace) -> int:
    records = _load_category_records(args.path)
    async with get_session_factory()() as session:
        service = CatalogService(session)
        result = await service.tree.import_categories(records)
        await service.recompute_counts()

    print(f"Created: {len(result.created)}")
    print(f"Updated: {len(result.updated)}")
    if result.errors:
        print(f"Errors: {len(result.errors)}")
        for error in result.errors:
            print(f"  {error['slug']}: {error['error']}")
    return EXIT_OK


async def recount(args: argparse.Namespace) -> int:
    async with get_session_factory()() as session:
        counts = await CatalogService(session).recompute_counts()
    print(f"Recounted {len(counts)} categories")
    return EXIT_OK


async def init_db(args: argparse.Namespace) -> int:
    print("Database tables ready.")
    return EXIT_OK


COMMANDS = {
    "import-products": import_products,
    "export-categories": export_categories,
    "export-products": export_products,
    "import-categories": import_categories,
    "recount": recount,
    "init-db": init_db,
}


# ============================================================================
# Entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="plumbcat",
        description="Plumbing catalog maintenance commands",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: PLUMBCAT_DATABASE_URL or settings)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    importer = subparsers.add_parser("import-products", help="Import a CSV or JSON product feed")
    importer.add_argument(
        "path",
        nargs="?",
        default=settings.default_import_path,
        help=f"Feed file (default: {settings.default_import_path})",
    )
    importer.add_argument(
        "--dry-run",
        action="store_true",
        help="Produce the full report without uploading images or writing",
    )
    importer.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help=f"Rows per batch (default: {settings.import_batch_size})",
    )
    importer.add_argument(
        "--report",
        default=None,
        help=f"Report file (default: {settings.report_dir}/import-<run id>.json)",
    )
    importer.add_argument(
        "--no-rehost",
        action="store_true",
        help="Keep source image URLs instead of copying images to the image host",
    )

    exporter = subparsers.add_parser("export-categories", help="Export the category tree")
    exporter.add_argument("--output", "-o", default=None, help="Output file (default: stdout)")
    exporter.add_argument("--format", choices=["csv", "json"], default="csv")

    product_exporter = subparsers.add_parser(
        "export-products",
        help="Export products in the layout import-products reads back",
    )
    product_exporter.add_argument("--output", "-o", default=None, help="Output file (default: stdout)")
    product_exporter.add_argument("--format", choices=["csv", "json"], default="csv")

    category_importer = subparsers.add_parser(
        "import-categories",
        help="Create or update categories from an export or a legacy dump",
    )
    category_importer.add_argument("path", help="JSON file with category records")

    subparsers.add_parser("recount", help="Recompute category product counts")
    subparsers.add_parser("init-db", help="Create missing database tables")
    return parser


async def run(args: argparse.Namespace) -> int:
    """Run one command against a freshly configured engine."""
    if args.database_url:
        configure_engine(args.database_url)
    try:
        await init_models()
        return await COMMANDS[args.command](args)
    except FeedFormatError as e:
        logger.error("Input rejected", command=args.command, error=e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_BAD_INPUT
    except StorageUnavailableError as e:
        logger.error("Storage unavailable", command=args.command, error=e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_STORAGE
    finally:
        await dispose_engine()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(json_output=True if args.json_logs else None)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
