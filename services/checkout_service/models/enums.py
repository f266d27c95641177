"""Enum definitions for the checkout flow."""

import enum


class DeliveryMethod(str, enum.Enum):
    HOME_DELIVERY = "home_delivery"
    PICKUP_POINT = "pickup_point"
    STORE_PICKUP = "store_pickup"


class DeliveryType(str, enum.Enum):
    """Radio shown by the parcel point map: home delivery or pickup point."""

    HOME = "HOME"
    PICKUP = "PICKUP"


class NetworkFilter(str, enum.Enum):
    ALL = "ALL"
    SOGP = "SOGP"
    MONR = "MONR"
    CHRP = "CHRP"
    COPR = "COPR"


class MapMode(str, enum.Enum):
    DELIVERY = "delivery"
    RETURN = "return"


class CheckoutStage(str, enum.Enum):
    BROWSING = "browsing"
    EDITING_ORDER = "editing_order"
    EDITING_DELIVERY = "editing_delivery"
    AWAITING_PAYMENT = "awaiting_payment"
    COMPLETED = "completed"


class OpenShipmentState(str, enum.Enum):
    IDLE = "idle"
    REQUESTING_LOCK = "requesting_lock"
    EDITING = "editing"
    BLOCKED = "blocked"
    CANCELLING = "cancelling"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


class BlockReason(str, enum.Enum):
    ALREADY_BOUGHT = "already_bought"
    OUT_OF_STOCK = "out_of_stock"
    INSUFFICIENT_STOCK = "insufficient_stock"
