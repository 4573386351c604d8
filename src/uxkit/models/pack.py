"""Catalog model: one row per sellable UI component pack."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel


class Pack(SQLModel, table=True):
    """A pack in the storefront catalog and its Stripe counterpart."""

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str
    slug: str = Field(unique=True, index=True)
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)  # USD, major units
    is_published: bool = Field(default=False, index=True)

    # Both set once synced, both null before
    stripe_product_id: Optional[str] = Field(default=None, index=True)
    stripe_price_id: Optional[str] = None

    components_count: Optional[int] = None
    thumbnail_url: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
