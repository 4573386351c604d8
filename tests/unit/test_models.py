"""Tests for catalog and queue models, and minor-unit conversion."""
from datetime import datetime
from decimal import Decimal

import pytest
from sqlmodel import Session, select

from uxkit.billing.sync_service import to_minor_units
from uxkit.models.pack import Pack
from uxkit.models.sync import CLAIMABLE_STATUSES, SyncQueueEntry, SyncQueueStatus


class TestPack:
    def test_defaults(self, test_session):
        pack = Pack(name="Forms Kit", slug="forms-kit")
        test_session.add(pack)
        test_session.commit()
        test_session.refresh(pack)

        assert len(pack.id) == 36  # uuid4 string
        assert pack.is_published is False
        assert pack.stripe_product_id is None
        assert pack.stripe_price_id is None
        assert pack.created_at is not None

    def test_price_keeps_cents(self, test_session):
        pack = Pack(name="Forms Kit", slug="forms-kit", price=Decimal("19.99"))
        test_session.add(pack)
        test_session.commit()
        test_session.refresh(pack)
        assert pack.price == Decimal("19.99")


class TestSyncQueueEntry:
    def test_defaults(self):
        entry = SyncQueueEntry(pack_id="p1")
        assert entry.status == SyncQueueStatus.PENDING
        assert entry.attempts == 0
        assert entry.error_message is None
        assert entry.processed_at is None

    def test_status_round_trip(self, test_session, make_pack):
        pack = make_pack()
        test_session.add(SyncQueueEntry(pack_id=pack.id, status=SyncQueueStatus.FAILED))
        test_session.commit()

        stored = test_session.exec(select(SyncQueueEntry)).first()
        assert stored.status is SyncQueueStatus.FAILED

    def test_utc_timestamps_persist(self, test_session, make_pack):
        """Queue timestamps are naive UTC and round-trip unchanged."""
        claimed = datetime.utcnow()
        entry = SyncQueueEntry(pack_id=make_pack().id, claimed_at=claimed)
        test_session.add(entry)
        test_session.commit()
        test_session.refresh(entry)

        assert entry.claimed_at == claimed
        assert entry.created_at.tzinfo is None

    def test_claimable_statuses(self):
        assert set(CLAIMABLE_STATUSES) == {SyncQueueStatus.PENDING, SyncQueueStatus.FAILED}


class TestToMinorUnits:
    @pytest.mark.parametrize(
        "amount, expected",
        [
            (Decimal("10"), 1000),
            (Decimal("12.00"), 1200),
            (Decimal("19.99"), 1999),
            (Decimal("0.005"), 1),  # half-up
            (0.295, 30),
            (7, 700),
            ("4.5", 450),
        ],
    )
    def test_conversion(self, amount, expected):
        assert to_minor_units(amount) == expected
