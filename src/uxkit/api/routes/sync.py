"""Stripe sync admin routes."""
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import List, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from uxkit.billing.client import BillingError
from uxkit.billing.factory import StripeNotConfiguredError, build_sync_engine
from uxkit.billing.sync_service import (
    ArchiveResult,
    CatalogSyncEngine,
    OrphanProduct,
    SyncResult,
    SyncStatusReport,
    SyncSummary,
)
from uxkit.config import get_settings
from uxkit.db.engine import get_engine, get_session
from uxkit.db.queue import UnknownPackError, enqueue_pack

router = APIRouter()


class EnqueueRequest(BaseModel):
    pack_id: str


class EnqueueResponse(BaseModel):
    id: int
    pack_id: str
    status: str
    attempts: int
    created_at: datetime


class RequeueResponse(BaseModel):
    requeued: int


def get_sync_engine() -> CatalogSyncEngine:
    """FastAPI dependency: a sync engine wired from settings."""
    try:
        return build_sync_engine(get_engine())
    except StripeNotConfiguredError as exc:
        raise HTTPException(status_code=500, detail=str(exc))


def _respond(result):
    """Return the result as-is, or as a 502 body when it reports failure."""
    if not result.success:
        return JSONResponse(status_code=502, content=asdict(result))
    return result


@router.post("/all", response_model=SyncSummary)
async def sync_all(sync_engine: CatalogSyncEngine = Depends(get_sync_engine)):
    """Push every published, never-synced pack to Stripe."""
    return _respond(await sync_engine.sync_all_pending())


@router.get("/status", response_model=SyncStatusReport)
def sync_status(sync_engine: CatalogSyncEngine = Depends(get_sync_engine)):
    """Counts of synced/pending packs and queue entries by status."""
    return sync_engine.get_sync_status()


@router.post("/queue/process", response_model=SyncSummary)
async def process_queue(
    limit: Optional[int] = Query(None, ge=1),
    sync_engine: CatalogSyncEngine = Depends(get_sync_engine),
):
    """Work through the oldest claimable queue entries."""
    limit = limit or get_settings().queue_batch_size
    return _respond(await sync_engine.process_queue(limit=limit))


@router.post("/queue", response_model=EnqueueResponse)
def enqueue(request: EnqueueRequest, session: Session = Depends(get_session)):
    """Queue a pack for sync (used by catalog management after edits)."""
    try:
        entry = enqueue_pack(session, request.pack_id)
    except UnknownPackError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return EnqueueResponse(
        id=entry.id,
        pack_id=entry.pack_id,
        status=entry.status.value,
        attempts=entry.attempts,
        created_at=entry.created_at,
    )


@router.post("/queue/requeue-stale", response_model=RequeueResponse)
def requeue_stale(
    max_age_minutes: Optional[int] = None,
    sync_engine: CatalogSyncEngine = Depends(get_sync_engine),
):
    """Release queue entries stuck in processing."""
    minutes = max_age_minutes or get_settings().stale_claim_minutes
    return RequeueResponse(requeued=sync_engine.requeue_stale(timedelta(minutes=minutes)))


@router.post("/packs/{pack_id}", response_model=SyncResult)
async def sync_pack(pack_id: str, sync_engine: CatalogSyncEngine = Depends(get_sync_engine)):
    """Sync one pack now, bypassing the queue."""
    return _respond(await sync_engine.sync_pack(pack_id))


@router.post("/packs/{pack_id}/archive", response_model=ArchiveResult)
async def archive_pack(pack_id: str, sync_engine: CatalogSyncEngine = Depends(get_sync_engine)):
    """Deactivate a pack's Stripe product and price (e.g. when unpublished)."""
    return _respond(await sync_engine.archive_remote_item(pack_id))


@router.get("/orphans", response_model=List[OrphanProduct])
async def orphans(sync_engine: CatalogSyncEngine = Depends(get_sync_engine)):
    """Live Stripe products that no pack points at."""
    try:
        return await sync_engine.find_orphan_products()
    except (BillingError, stripe.StripeError) as exc:
        raise HTTPException(status_code=502, detail=str(exc))
