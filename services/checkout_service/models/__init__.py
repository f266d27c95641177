"""Checkout service models package."""

from services.checkout_service.models.enums import (
    BlockReason,
    CheckoutStage,
    DeliveryMethod,
    DeliveryType,
    MapMode,
    NetworkFilter,
    OpenShipmentState,
)

__all__ = [
    "BlockReason",
    "CheckoutStage",
    "DeliveryMethod",
    "DeliveryType",
    "MapMode",
    "NetworkFilter",
    "OpenShipmentState",
]
