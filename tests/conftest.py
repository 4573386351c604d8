"""Shared test fixtures."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from uxkit.billing.client import RemoteNotFoundError
from uxkit.billing.sync_service import CatalogSyncEngine

# Import all models so SQLModel.metadata knows about them
from uxkit.models.pack import Pack
from uxkit.models.sync import SyncQueueEntry  # noqa: F401


class FakeStripe:
    """
    In-memory stand-in for StripeBillingClient.

    Keeps products and prices in dicts so tests can inspect remote state,
    and exposes every method as an AsyncMock so calls can be asserted or
    replaced with a failing side_effect.
    """

    def __init__(self):
        self.products: Dict[str, Dict[str, Any]] = {}
        self.prices: Dict[str, Dict[str, Any]] = {}
        self._seq = 0

        self.create_product = AsyncMock(side_effect=self._create_product)
        self.retrieve_product = AsyncMock(side_effect=self._retrieve_product)
        self.update_product = AsyncMock(side_effect=self._update_product)
        self.list_products = AsyncMock(side_effect=self._list_products)
        self.create_price = AsyncMock(side_effect=self._create_price)
        self.retrieve_price = AsyncMock(side_effect=self._retrieve_price)
        self.update_price = AsyncMock(side_effect=self._update_price)

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_{self._seq:04d}"

    async def _create_product(
        self,
        name: str,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        images: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        product_id = self._next_id("prod")
        self.products[product_id] = {
            "id": product_id,
            "name": name,
            "description": description,
            "metadata": dict(metadata or {}),
            "images": list(images or []),
            "active": True,
        }
        return dict(self.products[product_id])

    async def _retrieve_product(self, product_id: str) -> Dict[str, Any]:
        if product_id not in self.products:
            raise RemoteNotFoundError(f"No such product: '{product_id}'")
        return dict(self.products[product_id])

    async def _update_product(self, product_id: str, **fields) -> Dict[str, Any]:
        if product_id not in self.products:
            raise RemoteNotFoundError(f"No such product: '{product_id}'")
        product = self.products[product_id]
        for key, value in fields.items():
            if value is None:
                continue
            if key == "metadata":
                # Stripe merges metadata and drops keys sent as ""
                merged = {**product.get("metadata", {}), **value}
                product["metadata"] = {k: v for k, v in merged.items() if v != ""}
            elif key == "images":
                product["images"] = list(value) if value else []
            elif value == "":
                product[key] = None
            else:
                product[key] = value
        return dict(product)

    async def _list_products(self) -> List[Dict[str, Any]]:
        return [dict(p) for p in self.products.values()]

    async def _create_price(
        self,
        product_id: str,
        unit_amount: int,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        price_id = self._next_id("price")
        self.prices[price_id] = {
            "id": price_id,
            "product": product_id,
            "unit_amount": unit_amount,
            "currency": currency,
            "metadata": dict(metadata or {}),
            "active": True,
        }
        return dict(self.prices[price_id])

    async def _retrieve_price(self, price_id: str) -> Dict[str, Any]:
        if price_id not in self.prices:
            raise RemoteNotFoundError(f"No such price: '{price_id}'")
        return dict(self.prices[price_id])

    async def _update_price(self, price_id: str, active: bool) -> Dict[str, Any]:
        if price_id not in self.prices:
            raise RemoteNotFoundError(f"No such price: '{price_id}'")
        self.prices[price_id]["active"] = active
        return dict(self.prices[price_id])


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="stripe_fake")
def stripe_fake_fixture() -> FakeStripe:
    return FakeStripe()


@pytest.fixture(name="sync_engine")
def sync_engine_fixture(stripe_fake, engine) -> CatalogSyncEngine:
    return CatalogSyncEngine(client=stripe_fake, engine=engine)


@pytest.fixture(name="make_pack")
def make_pack_fixture(test_session: Session):
    """Factory that persists a published $10 pack, with per-test overrides."""
    counter = {"n": 0}

    def _make(**overrides) -> Pack:
        counter["n"] += 1
        fields = {
            "name": f"Dashboard Kit {counter['n']}",
            "slug": f"dashboard-kit-{counter['n']}",
            "description": "Charts, tables and cards for admin dashboards.",
            "price": Decimal("10.00"),
            "is_published": True,
            "created_at": datetime(2025, 1, 1, 9, 0, counter["n"]),
        }
        fields.update(overrides)
        pack = Pack(**fields)
        test_session.add(pack)
        test_session.commit()
        test_session.refresh(pack)
        return pack

    return _make
