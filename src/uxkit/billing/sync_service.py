"""
CatalogSyncEngine: keeps catalog packs and their Stripe products in step.

Flow for a single pack (sync_item):
  1. No stripe_product_id → create Product, create Price, save both refs.
  2. stripe_product_id set → retrieve Product.
       - missing in Stripe → recreate as in 1 (self-heal)
       - present → overwrite name/description/metadata/images, then check
         the stored Price. If it is gone, inactive, or for a different
         amount, deactivate it and mint a new one (Stripe prices are
         immutable), then save the new price ref.
       - present but archived → overwrite fields only; no new price.

Batch flows (sync_all_pending, process_queue) run packs one at a time with
a FixedIntervalGate between Stripe calls. Nothing is retried inside a batch;
failed queue entries go back to pending until attempts run out.

Every sync operation returns a result object instead of raising, so one bad
pack never stops a batch. Remote objects created before a failed DB write
are not rolled back; find_orphan_products() reports them.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlmodel import Session, col, func, select

from uxkit.billing.client import RemoteNotFoundError
from uxkit.billing.rate_limit import FixedIntervalGate
from uxkit.models.pack import Pack
from uxkit.models.sync import CLAIMABLE_STATUSES, SyncQueueEntry, SyncQueueStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
STALE_CLAIM_MESSAGE = "claim expired"
MANAGED_METADATA_KEYS = ("pack_id", "pack_slug", "components_count")


def to_minor_units(amount) -> int:
    """Convert a major-unit amount (e.g. dollars) to integer cents, half-up."""
    cents = Decimal(str(amount)) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ─── Result types ─────────────────────────────────────────────────────────────

@dataclass
class SyncResult:
    """Outcome of syncing one pack."""
    success: bool
    pack_id: str
    pack_name: Optional[str] = None
    stripe_product_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    created: bool = False        # a new Stripe product was created
    price_changed: bool = False  # a new Stripe price replaced the old one
    archived: bool = False       # product is archived in Stripe; price untouched
    error: Optional[str] = None


@dataclass
class SyncSummary:
    """Aggregate of a batch run."""
    success: bool
    total: int = 0
    synced: int = 0
    failed: int = 0
    details: List[SyncResult] = field(default_factory=list)
    error: Optional[str] = None  # set only when the batch could not start

    @classmethod
    def empty(cls) -> "SyncSummary":
        return cls(success=True)

    @classmethod
    def from_results(cls, results: List[SyncResult], total: Optional[int] = None) -> "SyncSummary":
        synced = sum(1 for r in results if r.success)
        failed = len(results) - synced
        return cls(
            success=failed == 0,
            total=len(results) if total is None else total,
            synced=synced,
            failed=failed,
            details=results,
        )


@dataclass
class ArchiveResult:
    success: bool
    error: Optional[str] = None


@dataclass
class QueueCounts:
    pending: int = 0
    processing: int = 0
    failed: int = 0
    completed: int = 0


@dataclass
class SyncStatusReport:
    synced: int
    pending: int
    queue: QueueCounts


@dataclass
class OrphanProduct:
    """A live Stripe product that no catalog pack points at."""
    product_id: str
    pack_id: str
    reason: str  # "pack_missing" or "superseded"


# ─── Engine ───────────────────────────────────────────────────────────────────

class CatalogSyncEngine:
    """Reconciles catalog packs with Stripe products and prices."""

    def __init__(
        self,
        client,
        engine,
        rate_limiter: Optional[FixedIntervalGate] = None,
        currency: str = "usd",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        """
        Args:
            client: StripeBillingClient instance (or a fake in tests).
            engine: SQLAlchemy engine (SQLModel create_engine result).
            rate_limiter: Gate awaited after each pack in a batch.
                Defaults to no waiting.
            currency: ISO currency code for new prices.
            max_attempts: Queue attempts before an entry is terminally failed.
        """
        self.client = client
        self.engine = engine
        self.rate_limiter = rate_limiter or FixedIntervalGate(0)
        self.currency = currency
        self.max_attempts = max_attempts

    # ─── Single pack ──────────────────────────────────────────────────────────

    async def sync_item(self, pack: Pack) -> SyncResult:
        """
        Create or update the Stripe product/price for one pack.

        Never raises: provider and DB errors come back as a failed
        SyncResult, and the pack's stored refs are left as they were.
        """
        logger.info("Syncing pack %s (%s)", pack.id, pack.name)
        try:
            if not pack.stripe_product_id:
                return await self._create_remote_item(pack)

            try:
                product = await self.client.retrieve_product(pack.stripe_product_id)
            except RemoteNotFoundError:
                logger.warning(
                    "Stripe product %s for pack %s no longer exists; recreating",
                    pack.stripe_product_id,
                    pack.id,
                )
                return await self._create_remote_item(pack)

            return await self._update_remote_item(pack, product)

        except Exception as exc:
            logger.exception("Stripe sync failed for pack %s", pack.id)
            return SyncResult(
                success=False,
                pack_id=pack.id,
                pack_name=pack.name,
                stripe_product_id=pack.stripe_product_id,
                stripe_price_id=pack.stripe_price_id,
                error=str(exc) or exc.__class__.__name__,
            )

    async def sync_pack(self, pack_id: str) -> SyncResult:
        """Look up a pack by id and sync it."""
        try:
            with Session(self.engine) as s:
                pack = s.get(Pack, pack_id)
        except Exception as exc:
            logger.exception("Could not load pack %s", pack_id)
            return SyncResult(success=False, pack_id=pack_id, error=str(exc))

        if pack is None:
            return SyncResult(success=False, pack_id=pack_id, error=f"Pack not found: {pack_id}")
        return await self.sync_item(pack)

    async def _create_remote_item(self, pack: Pack) -> SyncResult:
        product = await self.client.create_product(
            name=pack.name,
            description=_description(pack),
            metadata=_product_metadata(pack),
            images=[pack.thumbnail_url] if pack.thumbnail_url else None,
        )
        logger.info("Created Stripe product %s for pack %s", product["id"], pack.id)

        price = await self._mint_price(pack, product["id"])
        self._save_refs(pack, product["id"], price["id"])

        return SyncResult(
            success=True,
            pack_id=pack.id,
            pack_name=pack.name,
            stripe_product_id=product["id"],
            stripe_price_id=price["id"],
            created=True,
        )

    async def _update_remote_item(
        self, pack: Pack, product: Optional[Dict[str, Any]] = None
    ) -> SyncResult:
        """
        Overwrite product fields, then replace the price if it is stale.

        `product` is the Stripe product as last retrieved. Fields cleared on
        the pack are cleared remotely too. An archived (inactive) product
        keeps its retired price; archiving is only undone by hand.
        """
        remote_metadata = (product or {}).get("metadata") or {}
        await self.client.update_product(
            pack.stripe_product_id,
            name=pack.name,
            description=_description(pack) or "",
            metadata=_product_metadata(pack, remote_metadata),
            images=[pack.thumbnail_url] if pack.thumbnail_url else [],
        )

        if product is not None and not product.get("active", True):
            logger.info(
                "Stripe product %s for pack %s is archived; price left as is",
                pack.stripe_product_id,
                pack.id,
            )
            return SyncResult(
                success=True,
                pack_id=pack.id,
                pack_name=pack.name,
                stripe_product_id=pack.stripe_product_id,
                stripe_price_id=pack.stripe_price_id,
                archived=True,
            )

        expected = to_minor_units(pack.price)
        current: Optional[Dict[str, Any]] = None
        if pack.stripe_price_id:
            try:
                current = await self.client.retrieve_price(pack.stripe_price_id)
            except RemoteNotFoundError:
                logger.warning(
                    "Stripe price %s for pack %s no longer exists",
                    pack.stripe_price_id,
                    pack.id,
                )

        if current and current["active"] and current["unit_amount"] == expected:
            return SyncResult(
                success=True,
                pack_id=pack.id,
                pack_name=pack.name,
                stripe_product_id=pack.stripe_product_id,
                stripe_price_id=pack.stripe_price_id,
            )

        # Stripe prices are immutable: retire the old one, mint a replacement
        if current and current["active"]:
            await self.client.update_price(current["id"], active=False)
            logger.info(
                "Deactivated Stripe price %s (%s → %s)",
                current["id"],
                current["unit_amount"],
                expected,
            )

        price = await self._mint_price(pack, pack.stripe_product_id)
        self._save_refs(pack, pack.stripe_product_id, price["id"])

        return SyncResult(
            success=True,
            pack_id=pack.id,
            pack_name=pack.name,
            stripe_product_id=pack.stripe_product_id,
            stripe_price_id=price["id"],
            price_changed=True,
        )

    async def _mint_price(self, pack: Pack, product_id: str) -> Dict[str, Any]:
        price = await self.client.create_price(
            product_id,
            to_minor_units(pack.price),
            self.currency,
            {"pack_id": pack.id},
        )
        logger.info("Created Stripe price %s for pack %s", price["id"], pack.id)
        return price

    def _save_refs(self, pack: Pack, product_id: str, price_id: str) -> None:
        """Write both refs in one commit, then mirror them on the in-memory pack."""
        with Session(self.engine) as s:
            db_pack = s.get(Pack, pack.id)
            if db_pack is None:
                raise LookupError(f"Pack {pack.id} disappeared before its Stripe refs were saved")
            db_pack.stripe_product_id = product_id
            db_pack.stripe_price_id = price_id
            s.add(db_pack)
            s.commit()

        pack.stripe_product_id = product_id
        pack.stripe_price_id = price_id

    # ─── Batches ──────────────────────────────────────────────────────────────

    async def sync_all_pending(self) -> SyncSummary:
        """Sync every published pack that has never been pushed to Stripe."""
        try:
            with Session(self.engine) as s:
                packs = s.exec(
                    select(Pack)
                    .where(col(Pack.stripe_product_id).is_(None))
                    .where(col(Pack.is_published).is_(True))
                    .order_by(Pack.created_at)
                ).all()
        except Exception as exc:
            logger.exception("Could not load packs pending sync")
            return SyncSummary(success=False, error=str(exc))

        if not packs:
            logger.info("No packs need syncing")
            return SyncSummary.empty()

        logger.info("Found %d packs to sync", len(packs))
        results: List[SyncResult] = []
        for pack in packs:
            results.append(await self.sync_item(pack))
            await self.rate_limiter.wait()

        summary = SyncSummary.from_results(results)
        logger.info("Sync complete: %d/%d successful", summary.synced, summary.total)
        return summary

    async def process_queue(self, limit: int = 10) -> SyncSummary:
        """
        Work through up to `limit` claimable queue entries, oldest first.

        Each entry is claimed (status=processing, attempts+1) before any
        Stripe call, so a crash mid-sync leaves a visible processing row
        for requeue_stale() to recover.
        """
        if limit < 1:
            return SyncSummary(success=False, error=f"limit must be at least 1, got {limit}")

        try:
            with Session(self.engine) as s:
                rows = s.exec(
                    select(SyncQueueEntry, Pack)
                    .join(Pack, isouter=True)
                    .where(col(SyncQueueEntry.status).in_(CLAIMABLE_STATUSES))
                    .where(SyncQueueEntry.attempts < self.max_attempts)
                    .order_by(SyncQueueEntry.created_at, SyncQueueEntry.id)
                    .limit(limit)
                ).all()
        except Exception as exc:
            logger.exception("Could not load sync queue")
            return SyncSummary(success=False, error=str(exc))

        if not rows:
            return SyncSummary.empty()

        logger.info("Processing %d queue entries", len(rows))
        results: List[SyncResult] = []
        for entry, pack in rows:
            try:
                if not self._claim(entry):
                    logger.info("Queue entry %s was claimed by another worker", entry.id)
                    continue

                if pack is None:
                    logger.warning(
                        "Queue entry %s references missing pack %s; skipping",
                        entry.id,
                        entry.pack_id,
                    )
                    continue

                result = await self.sync_item(pack)
                results.append(result)
                if not self._finish_entry(entry.id, entry.attempts + 1, result):
                    logger.warning(
                        "Queue entry %s was released and reclaimed mid-sync; result not recorded",
                        entry.id,
                    )
            except Exception:
                # Entry stays in processing; requeue_stale() picks it up later
                logger.exception("Queue entry %s could not be updated", entry.id)

            await self.rate_limiter.wait()

        summary = SyncSummary.from_results(results, total=len(rows))
        logger.info(
            "Queue run complete: %d synced, %d failed, %d fetched",
            summary.synced,
            summary.failed,
            summary.total,
        )
        return summary

    def _claim(self, entry: SyncQueueEntry) -> bool:
        """
        Atomically move an entry to processing and bump its attempts.

        The update only matches if the row still has the status and attempt
        count we read, so two overlapping runs can't both claim it.
        """
        stmt = (
            update(SyncQueueEntry)
            .where(SyncQueueEntry.id == entry.id)
            .where(col(SyncQueueEntry.status).in_(CLAIMABLE_STATUSES))
            .where(SyncQueueEntry.attempts == entry.attempts)
            .values(
                status=SyncQueueStatus.PROCESSING,
                attempts=SyncQueueEntry.attempts + 1,
                claimed_at=datetime.utcnow(),
            )
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount == 1

    def _finish_entry(self, entry_id: int, attempts: int, result: SyncResult) -> bool:
        """
        Record the outcome of the claim that left the entry at `attempts`.

        Only writes if the row is still processing under that claim; returns
        False when requeue_stale() released it and another run took it over.
        """
        if result.success:
            values = dict(
                status=SyncQueueStatus.COMPLETED,
                processed_at=datetime.utcnow(),
                error_message=None,
            )
        elif attempts >= self.max_attempts:
            values = dict(status=SyncQueueStatus.FAILED, error_message=result.error)
        else:
            values = dict(status=SyncQueueStatus.PENDING, error_message=result.error)

        stmt = (
            update(SyncQueueEntry)
            .where(SyncQueueEntry.id == entry_id)
            .where(SyncQueueEntry.status == SyncQueueStatus.PROCESSING)
            .where(SyncQueueEntry.attempts == attempts)
            .values(**values)
        )
        with self.engine.begin() as conn:
            finished = conn.execute(stmt).rowcount == 1

        if finished and values["status"] == SyncQueueStatus.FAILED:
            logger.error(
                "Queue entry %s failed permanently after %d attempts: %s",
                entry_id,
                attempts,
                result.error,
            )
        return finished

    def requeue_stale(self, max_age: timedelta) -> int:
        """
        Release processing entries whose claim is older than `max_age`.

        Returns:
            Number of entries released.
        """
        cutoff = datetime.utcnow() - max_age
        with Session(self.engine) as s:
            stale = s.exec(
                select(SyncQueueEntry)
                .where(SyncQueueEntry.status == SyncQueueStatus.PROCESSING)
                .where(
                    or_(
                        col(SyncQueueEntry.claimed_at).is_(None),
                        col(SyncQueueEntry.claimed_at) < cutoff,
                    )
                )
            ).all()
            for entry in stale:
                if entry.attempts >= self.max_attempts:
                    entry.status = SyncQueueStatus.FAILED
                else:
                    entry.status = SyncQueueStatus.PENDING
                entry.error_message = STALE_CLAIM_MESSAGE
                s.add(entry)
            s.commit()

        if stale:
            logger.warning("Released %d stale queue claims", len(stale))
        return len(stale)

    # ─── Reporting / archival ─────────────────────────────────────────────────

    def get_sync_status(self) -> SyncStatusReport:
        with Session(self.engine) as s:
            synced = s.exec(
                select(func.count())
                .select_from(Pack)
                .where(col(Pack.stripe_product_id).is_not(None))
            ).one()
            pending = s.exec(
                select(func.count())
                .select_from(Pack)
                .where(col(Pack.stripe_product_id).is_(None))
                .where(col(Pack.is_published).is_(True))
            ).one()
            by_status = dict(
                s.exec(
                    select(SyncQueueEntry.status, func.count())
                    .group_by(SyncQueueEntry.status)
                ).all()
            )

        return SyncStatusReport(
            synced=synced,
            pending=pending,
            queue=QueueCounts(
                pending=by_status.get(SyncQueueStatus.PENDING, 0),
                processing=by_status.get(SyncQueueStatus.PROCESSING, 0),
                failed=by_status.get(SyncQueueStatus.FAILED, 0),
                completed=by_status.get(SyncQueueStatus.COMPLETED, 0),
            ),
        )

    async def archive_remote_item(self, pack_id: str) -> ArchiveResult:
        """Deactivate (never delete) a pack's Stripe price and product."""
        try:
            with Session(self.engine) as s:
                pack = s.get(Pack, pack_id)

            if pack is None or not pack.stripe_product_id:
                logger.info("Pack %s has no Stripe product to archive", pack_id)
                return ArchiveResult(success=True)

            if pack.stripe_price_id:
                await self.client.update_price(pack.stripe_price_id, active=False)
                logger.info("Archived Stripe price %s", pack.stripe_price_id)

            await self.client.update_product(pack.stripe_product_id, active=False)
            logger.info("Archived Stripe product %s", pack.stripe_product_id)
            return ArchiveResult(success=True)

        except Exception as exc:
            logger.exception("Archiving Stripe product for pack %s failed", pack_id)
            return ArchiveResult(success=False, error=str(exc) or exc.__class__.__name__)

    async def find_orphan_products(self) -> List[OrphanProduct]:
        """
        List active Stripe products tagged with a pack_id that no pack links to.

        Report only; nothing in Stripe or the catalog is changed.
        """
        products = await self.client.list_products()
        orphans: List[OrphanProduct] = []
        with Session(self.engine) as s:
            for product in products:
                pack_id = product["metadata"].get("pack_id")
                if not pack_id or not product["active"]:
                    continue
                pack = s.get(Pack, pack_id)
                if pack is None:
                    orphans.append(OrphanProduct(product["id"], pack_id, "pack_missing"))
                elif pack.stripe_product_id != product["id"]:
                    orphans.append(OrphanProduct(product["id"], pack_id, "superseded"))
        return orphans


def _description(pack: Pack) -> Optional[str]:
    return pack.short_description or pack.description or None


def _product_metadata(pack: Pack, remote: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Metadata we own on a pack's product. Keys we own that the pack no
    longer has are sent as "" so Stripe drops them; other keys are left.
    """
    metadata = {"pack_id": pack.id, "pack_slug": pack.slug}
    if pack.components_count is not None:
        metadata["components_count"] = str(pack.components_count)
    for key in MANAGED_METADATA_KEYS:
        if remote and key in remote and key not in metadata:
            metadata[key] = ""
    return metadata
