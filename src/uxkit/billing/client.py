"""
Async wrapper around the stripe library.

stripe is synchronous; we run each call in the default thread pool executor
so it doesn't block the asyncio event loop, and bound it with
asyncio.wait_for so one hung request can't stall a whole batch.

Every method returns plain dicts so callers (and test fakes) never depend on
StripeObject internals.
"""
import asyncio
from typing import Any, Dict, List, Optional

import stripe


# ── Exceptions ────────────────────────────────────────────────────────────────

class BillingError(RuntimeError):
    """Base class for billing-provider failures raised by this wrapper."""


class RemoteNotFoundError(BillingError):
    """Raised when a Stripe product or price no longer exists."""


class BillingTimeoutError(BillingError):
    """Raised when a Stripe call exceeds the configured timeout."""


# ── Main class ────────────────────────────────────────────────────────────────

class StripeBillingClient:
    """
    Thin async wrapper over stripe.Product and stripe.Price.

    The API key is passed per request instead of being set on the stripe
    module, so several clients (or a test fake) can coexist in one process.
    """

    def __init__(
        self,
        api_key: str,
        api_version: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self._api_key = api_key
        self._api_version = api_version
        self._timeout = timeout

    def _request_options(self) -> Dict[str, Any]:
        opts: Dict[str, Any] = {"api_key": self._api_key}
        if self._api_version:
            opts["stripe_version"] = self._api_version
        return opts

    async def _run(self, fn, *args, **kwargs):
        """Run a sync stripe call in the thread pool, bounded by the timeout."""
        loop = asyncio.get_event_loop()
        call = loop.run_in_executor(
            None, lambda: fn(*args, **self._request_options(), **kwargs)
        )
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise BillingTimeoutError(
                f"Stripe call {getattr(fn, '__name__', fn)} timed out after {self._timeout}s"
            ) from exc

    async def _retrieve(self, fn, object_id: str):
        try:
            return await self._run(fn, object_id)
        except stripe.InvalidRequestError as err:
            if err.code == "resource_missing":
                raise RemoteNotFoundError(str(err)) from err
            raise

    # ── Products ──────────────────────────────────────────────────────────────

    async def create_product(
        self,
        name: str,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        images: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"name": name, "metadata": metadata or {}}
        # Stripe rejects empty strings, so optional fields are left out entirely
        if description:
            params["description"] = description
        if images:
            params["images"] = images
        product = await self._run(stripe.Product.create, **params)
        return _product_dict(product)

    async def retrieve_product(self, product_id: str) -> Dict[str, Any]:
        """
        Raises:
            RemoteNotFoundError: if the product was deleted in Stripe.
        """
        product = await self._retrieve(stripe.Product.retrieve, product_id)
        return _product_dict(product)

    async def update_product(self, product_id: str, **fields) -> Dict[str, Any]:
        """
        Overwrite the given product fields; None values are left untouched.

        An empty description or image list clears the field in Stripe, and a
        metadata value of "" removes that key (Stripe merges metadata).
        """
        fields = {k: v for k, v in fields.items() if v is not None}
        # The form encoder drops empty lists; Stripe unsets a field sent as ""
        if fields.get("images") == []:
            fields["images"] = ""
        product = await self._run(stripe.Product.modify, product_id, **fields)
        return _product_dict(product)

    async def list_products(self) -> List[Dict[str, Any]]:
        """Return every product in the account, following pagination."""

        def _list_all(**opts):
            page = stripe.Product.list(limit=100, **opts)
            return [_product_dict(p) for p in page.auto_paging_iter()]

        return await self._run(_list_all)

    # ── Prices ────────────────────────────────────────────────────────────────

    async def create_price(
        self,
        product_id: str,
        unit_amount: int,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        price = await self._run(
            stripe.Price.create,
            product=product_id,
            unit_amount=unit_amount,
            currency=currency,
            metadata=metadata or {},
        )
        return _price_dict(price)

    async def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        """
        Raises:
            RemoteNotFoundError: if the price does not exist.
        """
        price = await self._retrieve(stripe.Price.retrieve, price_id)
        return _price_dict(price)

    async def update_price(self, price_id: str, active: bool) -> Dict[str, Any]:
        price = await self._run(stripe.Price.modify, price_id, active=active)
        return _price_dict(price)


def _metadata_dict(obj) -> Dict[str, str]:
    metadata = getattr(obj, "metadata", None)
    if not metadata:
        return {}
    return {k: metadata[k] for k in metadata.keys()}


def _product_dict(product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": getattr(product, "name", None),
        "active": getattr(product, "active", True),
        "metadata": _metadata_dict(product),
    }



def _price_dict(price) -> Dict[str, Any]:
    return {
        "id": price.id,
        "unit_amount": getattr(price, "unit_amount", None),
        "currency": getattr(price, "currency", None),
        "active": getattr(price, "active", True),
    }
