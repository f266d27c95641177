"""Exceptions raised by the checkout client and flows.

Every message is user facing (French, as shown by the storefront) and is
meant to be surfaced unmodified.
"""

from typing import Optional


class ApiError(Exception):
    """Non-2xx reply (or transport failure) from the Paylive backend."""

    def __init__(
        self, message: str, status_code: Optional[int] = None, payload: Optional[dict] = None
    ):
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(message)


class ConflictError(ApiError):
    """409 reply: duplicate reference, stock exhausted or shipment lock held."""


class CheckoutError(Exception):
    """A business rule refused the requested checkout action."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StockError(CheckoutError):
    """A cart line asks for more than the store has in stock."""

    def __init__(self, message: str, reference: str, requested: int = 0, available: int = 0):
        super().__init__(message)
        self.reference = reference
        self.requested = requested
        self.available = available


class CartConsistencyError(CheckoutError):
    """The local cart no longer matches the authoritative server cart."""


class PromoCodeError(CheckoutError):
    """The promotion code typed by the buyer is not acceptable."""
