"""Durable Stripe sync work queue."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


class SyncQueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"  # terminal once attempts are exhausted


# Statuses a worker may claim (subject to the attempts cap)
CLAIMABLE_STATUSES = (SyncQueueStatus.PENDING, SyncQueueStatus.FAILED)


class SyncQueueEntry(SQLModel, table=True):
    """One pending reconciliation of a pack against Stripe."""

    id: Optional[int] = Field(default=None, primary_key=True)
    pack_id: str = Field(foreign_key="pack.id", index=True)
    status: SyncQueueStatus = Field(default=SyncQueueStatus.PENDING, index=True)
    attempts: int = 0
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    claimed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
