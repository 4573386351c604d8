"""
Producer side of the sync queue.

Catalog management calls enqueue_pack() whenever a pack is created or
edited. Enqueueing is best-effort and at-least-once: a pack may have several
pending entries, and syncing it twice is harmless.
"""
import logging
from typing import Optional

from sqlmodel import Session, select

from uxkit.models.pack import Pack
from uxkit.models.sync import SyncQueueEntry, SyncQueueStatus

logger = logging.getLogger(__name__)


class UnknownPackError(LookupError):
    """Raised when enqueueing a pack id that is not in the catalog."""


def enqueue_pack(session: Session, pack_id: str) -> SyncQueueEntry:
    """
    Add a pending sync entry for a pack and commit it.

    An entry that is still pending is reused rather than duplicated.

    Args:
        session: Open DB session (the caller's, so an edit and its
            enqueue can share a transaction).
        pack_id: Catalog id of the pack to sync.

    Raises:
        UnknownPackError: if no pack has this id.
    """
    if session.get(Pack, pack_id) is None:
        raise UnknownPackError(f"Pack not found: {pack_id}")

    existing: Optional[SyncQueueEntry] = session.exec(
        select(SyncQueueEntry)
        .where(SyncQueueEntry.pack_id == pack_id)
        .where(SyncQueueEntry.status == SyncQueueStatus.PENDING)
        .order_by(SyncQueueEntry.created_at)
    ).first()
    if existing:
        return existing

    entry = SyncQueueEntry(pack_id=pack_id)
    session.add(entry)
    session.commit()
    session.refresh(entry)
    logger.info("Enqueued sync for pack %s (entry %s)", pack_id, entry.id)
    return entry
