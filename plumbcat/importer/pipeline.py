"""Bulk product import pipeline.

Parse, resolve categories, normalise, de-duplicate, rehost images and
commit in batches, producing a per-row report. Every step runs in dry-run
mode too, with uploads and writes replaced by no-ops.
"""

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from plumbcat.catalog.service import CatalogService, diff_drafts
from plumbcat.domain.categories import CategoryIndex
from plumbcat.domain.exceptions import DomainError, StorageUnavailableError
from plumbcat.domain.products import ProductDraft, collect_validation_issues
from plumbcat.importer.normalizer import NormalizedRow, is_valid_id, normalize_row
from plumbcat.importer.parsers import read_feed
from plumbcat.infrastructure.config import settings
from plumbcat.infrastructure.images import DryRunImageRehoster, ImageRehoster
from plumbcat.infrastructure.logging import get_logger


class RowOutcome(str, Enum):
    """Final state of an import row."""

    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    ERROR = "error"


class CancellationToken:
    """Cooperative "stop after the current batch" signal."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class ImportRow:
    """Per-row record of an import run.

    Attributes:
        row_number: 1-based position in the feed.
        sku: Base SKU as given.
        name: Product name as given.
        category_ref: Category reference as given.
        product_id: Product written or matched.
        outcome: Final outcome.
        changed: Whether the row changes (or would change) stored data.
        reason: Why the row was skipped or flagged duplicate.
        existing_id: Conflicting product for duplicates.
        errors: Problems that stopped the row.
        warnings: Problems worked around.
        changes: Field-level changes for updates.
    """

    row_number: int
    sku: str = ""
    name: str = ""
    category_ref: str | None = None
    product_id: str | None = None
    outcome: RowOutcome | None = None
    changed: bool = False
    reason: str | None = None
    existing_id: str | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    changes: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_number,
            "sku": self.sku,
            "name": self.name,
            "category": self.category_ref,
            "product_id": self.product_id,
            "outcome": self.outcome.value if self.outcome else None,
            "changed": self.changed,
            "reason": self.reason,
            "existing_id": self.existing_id,
            "errors": self.errors,
            "warnings": self.warnings,
            "changes": self.changes,
        }


@dataclass
class ImportReport:
    """Structured summary of an import run."""

    run_id: str
    source: str
    dry_run: bool
    started_at: datetime
    finished_at: datetime | None = None
    cancelled: bool = False
    batches: int = 0
    rows: list[ImportRow] = field(default_factory=list)

    def count(self, outcome: RowOutcome) -> int:
        return sum(1 for r in self.rows if r.outcome == outcome)

    @property
    def totals(self) -> dict[str, int]:
        return {
            "total": len(self.rows),
            "inserted": self.count(RowOutcome.INSERTED),
            "updated": self.count(RowOutcome.UPDATED),
            "unchanged": self.count(RowOutcome.UNCHANGED),
            "duplicates": self.count(RowOutcome.DUPLICATE),
            "skipped": self.count(RowOutcome.SKIPPED),
            "errors": self.count(RowOutcome.ERROR),
        }

    @property
    def problem_rows(self) -> list[ImportRow]:
        """Rows that were not written: errors, skips and duplicates."""
        problems = {RowOutcome.ERROR, RowOutcome.SKIPPED, RowOutcome.DUPLICATE}
        return [r for r in self.rows if r.outcome in problems]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "source": self.source,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "batches": self.batches,
            "totals": self.totals,
            "rows": [r.to_dict() for r in self.rows],
            "changes": [
                {"row": r.row_number, "product_id": r.product_id, "sku": r.sku, **change}
                for r in self.rows
                for change in r.changes
            ],
        }

    def write(self, path: str | Path) -> Path:
        """Write the report as JSON, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(self.to_dict(), indent=2, ensure_ascii=False, default=str),
            encoding="utf-8",
        )
        return path


@dataclass
class _PreparedRow:
    record: ImportRow
    draft: ProductDraft
    update_changes: dict[str, Any] | None = None


@dataclass
class _RunLedger:
    """Keys accepted earlier in the same run."""

    skus: dict[str, int] = field(default_factory=dict)
    combos: dict[tuple[str, str | None, str], int] = field(default_factory=dict)
    names: dict[str, int] = field(default_factory=dict)

    def add(self, draft: ProductDraft, row_number: int) -> None:
        for sku in draft.all_skus:
            self.skus.setdefault(sku, row_number)
        self.combos.setdefault((draft.name, draft.category_id, draft.brand), row_number)
        self.names.setdefault(draft.name, row_number)


class BulkImportPipeline:
    """Imports product feeds into the catalog.

    Example usage:
        async with get_session_factory()() as session:
            async with HttpImageRehoster() as rehoster:
                pipeline = BulkImportPipeline(session, rehoster=rehoster)
                report = await pipeline.run_file("data/products.csv")
    """

    def __init__(
        self,
        session: AsyncSession,
        rehoster: ImageRehoster | None = None,
        dry_run: bool = False,
        batch_size: int | None = None,
        batch_pause: float | None = None,
        rehost_concurrency: int | None = None,
        rehost_pause: float | None = None,
        cancel_token: CancellationToken | None = None,
        catalog: CatalogService | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            session: Async SQLAlchemy session.
            rehoster: Image host; ignored in dry-run mode.
            dry_run: Produce the full report without uploads or writes.
            batch_size: Rows per batch.
            batch_pause: Seconds to wait between batches.
            rehost_concurrency: Image rehost calls in flight at once.
            rehost_pause: Seconds each rehost slot waits after a call.
            cancel_token: Checked before each batch starts.
            catalog: Catalog service to write through.
        """
        self.session = session
        self.dry_run = dry_run
        self.rehoster: ImageRehoster = DryRunImageRehoster() if dry_run or rehoster is None else rehoster
        self.batch_size = max(1, batch_size or settings.import_batch_size)
        self.batch_pause = settings.import_batch_pause_seconds if batch_pause is None else batch_pause
        self.rehost_concurrency = max(1, rehost_concurrency or settings.image_rehost_concurrency)
        self.rehost_pause = (
            settings.image_rehost_pause_seconds if rehost_pause is None else rehost_pause
        )
        self.cancel_token = cancel_token or CancellationToken()
        self.catalog = catalog or CatalogService(session, recount_on_write=False)
        self._image_cache: dict[str, tuple[str, str | None]] = {}

    async def run_file(self, path: str | Path) -> ImportReport:
        """Parse a CSV or JSON feed file and import it."""
        rows = read_feed(path)
        return await self.run(rows, source=str(path))

    async def run(self, rows: list[dict[str, Any]], source: str = "feed") -> ImportReport:
        """Import parsed feed rows.

        Args:
            rows: Raw rows from the feed parser.
            source: Label for the report.

        Returns:
            The run report; counts are rolled up before it is returned.

        Raises:
            StorageUnavailableError: If the database cannot be reached.
        """
        report = ImportReport(
            run_id=uuid.uuid4().hex[:12],
            source=source,
            dry_run=self.dry_run,
            started_at=datetime.now(timezone.utc),
        )
        log = get_logger(__name__, run_id=report.run_id, dry_run=self.dry_run)
        log.info("Import started", source=source, rows=len(rows), batch_size=self.batch_size)

        try:
            index = await self.catalog.tree.load_index()
            ledger = _RunLedger()

            for start in range(0, len(rows), self.batch_size):
                batch = rows[start:start + self.batch_size]
                if self.cancel_token.cancelled:
                    report.cancelled = True
                    for offset in range(len(batch)):
                        report.rows.append(
                            ImportRow(
                                row_number=start + offset + 1,
                                outcome=RowOutcome.SKIPPED,
                                reason="import cancelled before this batch",
                            )
                        )
                    continue

                if report.batches:
                    await asyncio.sleep(self.batch_pause)
                report.batches += 1
                await self._run_batch(batch, start, index, ledger, report)
                log.info(
                    "Batch finished",
                    batch=report.batches,
                    rows_done=min(start + self.batch_size, len(rows)),
                    rows_total=len(rows),
                )

            written = report.count(RowOutcome.INSERTED) + report.count(RowOutcome.UPDATED)
            if not self.dry_run and written:
                await self.catalog.recompute_counts()
        except (OperationalError, InterfaceError) as e:
            log.error("Storage unavailable during import", error=str(e))
            raise StorageUnavailableError(str(e)) from e

        report.finished_at = datetime.now(timezone.utc)
        log.info("Import finished", cancelled=report.cancelled, **report.totals)
        return report

    async def _run_batch(
        self,
        batch: list[dict[str, Any]],
        start: int,
        index: CategoryIndex,
        ledger: _RunLedger,
        report: ImportReport,
    ) -> None:
        prepared: list[_PreparedRow] = []
        for offset, raw in enumerate(batch):
            record, ready = await self._prepare(raw, start + offset + 1, index, ledger)
            report.rows.append(record)
            if ready is not None:
                prepared.append(ready)

        await self._rehost_images(prepared)

        for item in prepared:
            await self._commit_row(item)

    # ------------------------------------------------------------------
    # Per-row preparation
    # ------------------------------------------------------------------

    async def _prepare(
        self,
        raw: dict[str, Any],
        row_number: int,
        index: CategoryIndex,
        ledger: _RunLedger,
    ) -> tuple[ImportRow, _PreparedRow | None]:
        normalized = normalize_row(raw, row_number)
        record = ImportRow(
            row_number=row_number,
            sku=str(raw.get("sku") or "").strip(),
            name=str(raw.get("name") or "").strip(),
            category_ref=normalized.category_ref,
            product_id=normalized.product_id,
            warnings=list(normalized.warnings),
        )

        if normalized.errors:
            return self._fail(record, normalized.errors), None

        if normalized.product_id is not None:
            return await self._prepare_update(normalized, record, index)

        skip_reason = self._category_problem(normalized.category_ref, index)
        if skip_reason:
            record.outcome = RowOutcome.SKIPPED
            record.reason = skip_reason
            return record, None

        draft = normalized.draft
        issues = collect_validation_issues(draft)
        if issues:
            return self._fail(record, [i.message for i in issues]), None

        duplicate = await self._find_duplicate(draft, ledger)
        if duplicate is not None:
            record.outcome = RowOutcome.DUPLICATE
            record.reason, record.existing_id = duplicate
            return record, None

        ledger.add(draft, row_number)
        record.changed = True
        if self.dry_run:
            record.outcome = RowOutcome.INSERTED
        return record, _PreparedRow(record=record, draft=draft)

    async def _prepare_update(
        self,
        normalized: NormalizedRow,
        record: ImportRow,
        index: CategoryIndex,
    ) -> tuple[ImportRow, _PreparedRow | None]:
        product = await self.catalog.repository.get_by_id(normalized.product_id)
        if product is None:
            return self._fail(record, [f"product {normalized.product_id} not found"]), None

        changes = {
            name: getattr(normalized.draft, name)
            for name in normalized.provided
        }
        if "category_id" in changes:
            skip_reason = self._category_problem(normalized.category_ref, index)
            if skip_reason:
                record.outcome = RowOutcome.SKIPPED
                record.reason = skip_reason
                return record, None

        current = product.to_draft()
        merged = current.merged(changes)
        issues = collect_validation_issues(merged)
        if issues:
            return self._fail(record, [i.message for i in issues]), None

        owners = await self.catalog.repository.find_sku_owners(merged.all_skus, product.id)
        if owners:
            messages = [f"SKU '{sku}' is already used by product {owner}" for sku, owner in owners.items()]
            return self._fail(record, messages), None

        field_changes = diff_drafts(current, merged)
        record.sku = record.sku or product.sku
        record.name = record.name or product.name
        record.changes = [c.to_dict() for c in field_changes]
        if not field_changes:
            record.outcome = RowOutcome.UNCHANGED
            return record, None

        record.changed = True
        if self.dry_run:
            record.outcome = RowOutcome.UPDATED
        return record, _PreparedRow(record=record, draft=merged, update_changes=changes)

    @staticmethod
    def _fail(record: ImportRow, errors: list[str]) -> ImportRow:
        record.outcome = RowOutcome.ERROR
        record.errors.extend(errors)
        return record

    @staticmethod
    def _category_problem(category_ref: str | None, index: CategoryIndex) -> str | None:
        if not category_ref:
            return "no category given"
        if not is_valid_id(category_ref):
            return f"category reference '{category_ref}' is not a valid id"
        category = index.get(category_ref)
        if category is None:
            return f"category {category_ref} does not exist"
        if not category.active:
            return f"category {category.name} is inactive"
        return None

    async def _find_duplicate(
        self,
        draft: ProductDraft,
        ledger: _RunLedger,
    ) -> tuple[str, str | None] | None:
        """Return ``(reason, existing_id)`` when the draft matches a known product."""
        repository = self.catalog.repository

        owners = await repository.find_sku_owners(draft.all_skus)
        if owners:
            sku, owner = next(iter(owners.items()))
            return f"SKU '{sku}' already exists", owner
        for sku in draft.all_skus:
            if sku in ledger.skus:
                return f"SKU '{sku}' repeats row {ledger.skus[sku]}", None

        combo = (draft.name, draft.category_id, draft.brand)
        existing = await repository.get_by_name_category_brand(*combo)
        if existing is not None:
            return "same name, category and brand already exist", existing.id
        if combo in ledger.combos:
            return f"same name, category and brand as row {ledger.combos[combo]}", None

        existing = await repository.get_by_name(draft.name)
        if existing is not None:
            return f"name '{draft.name}' already exists", existing.id
        if draft.name in ledger.names:
            return f"name '{draft.name}' repeats row {ledger.names[draft.name]}", None

        return None

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def _rehost_images(self, prepared: list[_PreparedRow]) -> None:
        semaphore = asyncio.Semaphore(self.rehost_concurrency)

        async def rehost(url: str, name: str, position: int) -> tuple[str, str | None]:
            if url in self._image_cache:
                return self._image_cache[url]
            async with semaphore:
                if url in self._image_cache:
                    return self._image_cache[url]
                try:
                    result = await self.rehoster.rehost(url, name, position)
                except Exception as e:
                    get_logger(__name__).warning(
                        "Image rehost raised", source_url=url, error=str(e)
                    )
                    outcome = (url, str(e) or type(e).__name__)
                else:
                    outcome = (result.hosted_url, None) if result.success else (url, result.error)
                self._image_cache[url] = outcome
                if self.rehost_pause:
                    await asyncio.sleep(self.rehost_pause)
                return outcome

        async def process(item: _PreparedRow) -> None:
            draft = item.draft
            urls = self._image_urls(item)
            if not urls:
                return
            results = await asyncio.gather(
                *(rehost(url, draft.name, position) for position, url in enumerate(urls))
            )
            mapping = {}
            for url, (hosted, error) in zip(urls, results):
                mapping[url] = hosted
                if error:
                    item.record.warnings.append(
                        f"image {url} could not be rehosted ({error}); original URL kept"
                    )
            self._apply_image_mapping(item, mapping)

        await asyncio.gather(*(process(item) for item in prepared))

    @staticmethod
    def _image_urls(item: _PreparedRow) -> list[str]:
        draft = item.draft
        if item.update_changes is not None:
            provided = item.update_changes
            candidates = []
            if "default_image" in provided:
                candidates.append(draft.default_image)
            if "images" in provided:
                candidates.extend(draft.images)
            if "color_variants" in provided:
                candidates.extend(v.image for v in draft.color_variants)
        else:
            candidates = [draft.default_image, *draft.images, *(v.image for v in draft.color_variants)]

        urls: list[str] = []
        for url in candidates:
            if url and url.startswith(("http://", "https://")) and url not in urls:
                urls.append(url)
        return urls

    @staticmethod
    def _apply_image_mapping(item: _PreparedRow, mapping: dict[str, str]) -> None:
        draft = item.draft
        if draft.default_image in mapping:
            draft.default_image = mapping[draft.default_image]
        draft.images = [mapping.get(url, url) for url in draft.images]
        for variant in draft.color_variants:
            if variant.image in mapping:
                variant.image = mapping[variant.image]
        if item.update_changes is not None:
            for name in ("default_image", "images", "color_variants"):
                if name in item.update_changes:
                    item.update_changes[name] = getattr(draft, name)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _commit_row(self, item: _PreparedRow) -> None:
        record = item.record
        if self.dry_run:
            return

        try:
            if item.update_changes is None:
                product = await self.catalog.create(item.draft, recount=False)
                record.outcome = RowOutcome.INSERTED
            else:
                result = await self.catalog.update(
                    record.product_id, item.update_changes, recount=False
                )
                product = result.product
                record.changes = [c.to_dict() for c in result.changes]
                record.outcome = RowOutcome.UPDATED if result.changed else RowOutcome.UNCHANGED
                record.changed = result.changed
        except DomainError as e:
            errors = getattr(e, "messages", None) or [e.message]
            self._fail(record, errors)
            record.changed = False
            return

        record.product_id = product.id
