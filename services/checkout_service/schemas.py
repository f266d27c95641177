"""Pydantic schemas for the checkout flow.

These mirror the JSON exchanged with the Paylive backend. Backend payloads are
loosely typed (ids as numbers or strings, empty strings for "absent"), so most
validators below normalise rather than reject.
"""

from typing import Any, Optional

from libs.common.currency import parse_cents
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from services.checkout_service.models import DeliveryMethod


def _blank_to_none(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def ref_key(reference: Optional[str]) -> str:
    """Case-insensitive key under which cart references are unique."""
    return str(reference or "").strip().lower()


# ============================================================================
# STORE / ADDRESS
# ============================================================================


class Address(BaseModel):
    model_config = ConfigDict(extra="ignore")

    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "FR"

    @field_validator("country", mode="before")
    @classmethod
    def normalise_country(cls, v: Any) -> str:
        return (str(v or "").strip().upper()) or "FR"

    @property
    def is_complete(self) -> bool:
        return bool(self.line1 and self.city and self.postal_code)

    def one_line(self) -> str:
        return f"{self.line1 or ''}, {self.postal_code or ''} {self.city or ''}, {self.country}"


class Store(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    slug: str
    description: Optional[str] = None
    theme: Optional[str] = None
    owner_email: Optional[str] = None
    stripe_id: Optional[str] = None
    website: Optional[str] = None
    is_verified: bool = False
    promo_code: Optional[str] = None
    address: Optional[Address] = None

    @property
    def pickup_address(self) -> Optional[Address]:
        """Store address usable for store pickup, if one is set."""
        if self.address and self.address.line1:
            return self.address
        return None


# ============================================================================
# CART
# ============================================================================


class CartItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    store_id: Optional[int] = None
    product_reference: str
    description: Optional[str] = None
    value: float = 0.0
    quantity: int = 1
    weight: Optional[float] = None
    product_stripe_id: Optional[str] = None
    payment_id: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator("product_reference", mode="before")
    @classmethod
    def strip_reference(cls, v: Any) -> str:
        return str(v or "").strip()

    @field_validator("quantity", mode="before")
    @classmethod
    def at_least_one(cls, v: Any) -> int:
        try:
            return max(1, round(float(v)))
        except (TypeError, ValueError):
            return 1

    @field_validator("value", mode="before")
    @classmethod
    def numeric_value(cls, v: Any) -> float:
        try:
            return float(v or 0)
        except (TypeError, ValueError):
            return 0.0

    @field_validator("payment_id", "product_stripe_id", "description", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        return _blank_to_none(v)

    @property
    def ref_key(self) -> str:
        return ref_key(self.product_reference)

    @property
    def line_total(self) -> float:
        return self.value * self.quantity

    @property
    def has_stripe_product(self) -> bool:
        return (self.product_stripe_id or "").startswith("prod_")


class CartGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    store: dict[str, Any] = Field(default_factory=dict)
    items: list[CartItem] = Field(default_factory=list)
    total: float = 0.0

    @property
    def store_id(self) -> Optional[int]:
        raw = self.store.get("id")
        return int(raw) if raw is not None else None


class CartSummary(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    items_by_store: list[CartGroup] = Field(default_factory=list, alias="itemsByStore")
    grand_total: float = Field(0.0, alias="grandTotal")

    def group_for_store(self, store_id: int) -> Optional[CartGroup]:
        for group in self.items_by_store:
            if group.store_id == store_id:
                return group
        return None


class StockItem(BaseModel):
    """Stock line returned by the per-store reference search."""

    product_reference: str
    quantity: Optional[float] = None
    weight: Optional[float] = None
    product_stripe_id: Optional[str] = None
    unit_price: Optional[float] = None
    product_name: Optional[str] = None

    @property
    def ref_key(self) -> str:
        return ref_key(self.product_reference)

    @classmethod
    def from_search_hit(cls, hit: dict[str, Any]) -> "StockItem":
        stock = hit.get("stock") or {}
        product = hit.get("product") or {}

        quantity = None
        for key in ("quantity", "stock_quantity", "available_quantity", "availableQuantity"):
            candidate = _to_float(stock.get(key))
            if candidate is not None:
                quantity = candidate
                break

        weight_raw = (product.get("metadata") or {}).get("weight_kg")
        weight = _to_float(str(weight_raw).replace(",", ".")) if weight_raw else None
        if weight is None or weight < 0:
            weight = _to_float(stock.get("weight"))
            if weight is not None and weight < 0:
                weight = None

        return cls(
            product_reference=str(stock.get("product_reference") or "").strip(),
            quantity=quantity,
            weight=weight,
            product_stripe_id=_blank_to_none(stock.get("product_stripe_id")),
            unit_price=_unit_price(hit),
            product_name=_blank_to_none(product.get("name")),
        )


def _to_float(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    if f != f or f in (float("inf"), float("-inf")):
        return None
    return f


def _unit_price(hit: dict[str, Any]) -> Optional[float]:
    direct = _to_float(hit.get("unit_price"))
    if direct is not None and direct > 0:
        return direct
    for price in hit.get("prices") or []:
        amount = _to_float((price or {}).get("unit_amount"))
        if str((price or {}).get("currency") or "").lower() == "eur" and amount and amount > 0:
            return amount / 100
    return None


# ============================================================================
# PARCEL POINTS
# ============================================================================

_DAYS = (
    ("MONDAY", "Lun"),
    ("TUESDAY", "Mar"),
    ("WEDNESDAY", "Mer"),
    ("THURSDAY", "Jeu"),
    ("FRIDAY", "Ven"),
    ("SATURDAY", "Sam"),
    ("SUNDAY", "Dim"),
)


class ParcelPointLocation(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    street: str = ""
    number: Optional[str] = None
    city: str = ""
    state: Optional[str] = None
    postal_code: str = Field("", alias="postalCode")
    country: str = Field("FR", alias="countryIsoCode")
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def flatten_position(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("position"), dict):
            data = dict(data)
            position = data.pop("position")
            data.setdefault("latitude", _to_float(position.get("latitude")))
            data.setdefault("longitude", _to_float(position.get("longitude")))
        return data


class OpeningHours(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    opening_time: str = Field(alias="openingTime")
    closing_time: str = Field(alias="closingTime")


class ParcelPoint(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    code: str
    name: str = ""
    status: Optional[str] = None
    network: str = ""
    location: ParcelPointLocation = Field(default_factory=ParcelPointLocation)
    opening_days: dict[str, list[OpeningHours]] = Field(
        default_factory=dict, alias="openingDays"
    )
    shipping_offer_code: Optional[str] = Field(None, alias="shippingOfferCode")

    def opening_hours_summary(self) -> str:
        """Format opening hours the way the map popup shows them."""
        parts = []
        for day, label in _DAYS:
            hours = self.opening_days.get(day) or []
            if hours:
                parts.append(f"{label}: {hours[0].opening_time}-{hours[0].closing_time}")
            else:
                parts.append(f"{label}: Fermé")
        return ", ".join(parts)

    def to_wire(self) -> dict[str, Any]:
        """Boxtal-shaped dict sent back to the backend with the checkout session."""
        loc = self.location
        location: dict[str, Any] = {
            "street": loc.street,
            "number": loc.number,
            "city": loc.city,
            "state": loc.state,
            "postalCode": loc.postal_code,
            "countryIsoCode": loc.country,
        }
        if loc.latitude is not None and loc.longitude is not None:
            location["position"] = {"latitude": loc.latitude, "longitude": loc.longitude}
        return {
            "code": self.code,
            "name": self.name,
            "status": self.status,
            "network": self.network,
            "location": location,
            "shippingOfferCode": self.shipping_offer_code,
        }

    def as_shipping_address(self) -> Address:
        loc = self.location
        return Address(
            line1=loc.street or None,
            line2=loc.number,
            city=loc.city or None,
            state=loc.state,
            postal_code=loc.postal_code or None,
            country=loc.country,
        )


class ParcelPointHit(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    parcel_point: ParcelPoint = Field(alias="parcelPoint")
    distance: Optional[float] = Field(None, alias="distanceFromSearchLocation")


# ============================================================================
# CUSTOMER
# ============================================================================


class CustomerData(BaseModel):
    """Stripe customer as returned by ``get-customer-details``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
    shipping: Optional[dict[str, Any]] = None
    parcel_point: Optional[ParcelPoint] = None
    delivery_method: Optional[DeliveryMethod] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def accept_camel_delivery_method(cls, data: Any) -> Any:
        if isinstance(data, dict) and "delivery_method" not in data and "deliveryMethod" in data:
            data = dict(data)
            data["delivery_method"] = data.pop("deliveryMethod")
        return data

    @field_validator("delivery_method", mode="before")
    @classmethod
    def known_method_only(cls, v: Any) -> Optional[str]:
        values = {m.value for m in DeliveryMethod}
        return v if v in values else None

    @field_validator("parcel_point", mode="before")
    @classmethod
    def parcel_point_dict_only(cls, v: Any) -> Any:
        return v if isinstance(v, dict) and v.get("code") else None

    @property
    def saved_delivery_method(self) -> Optional[DeliveryMethod]:
        if self.delivery_method:
            return self.delivery_method
        raw = self.metadata.get("delivery_method")
        try:
            return DeliveryMethod(raw)
        except ValueError:
            return None

    @property
    def saved_delivery_network(self) -> str:
        return str(self.metadata.get("delivery_network") or "").strip()

    @property
    def saved_parcel_point_code(self) -> str:
        return str(self.metadata.get("parcel_point_code") or "").strip()

    @property
    def credit_balance_cents(self) -> int:
        return parse_cents(self.metadata.get("credit_balance"))


# ============================================================================
# OPEN SHIPMENT
# ============================================================================


class OpenShipment(BaseModel):
    """A server-side lock on the edit of a paid order's shipment."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    shipment_id: Optional[str] = None
    payment_id: Optional[str] = None
    store_id: Optional[int] = None

    @field_validator("shipment_id", "payment_id", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        return _blank_to_none(v)

    @field_validator("id", mode="before")
    @classmethod
    def positive_row_id(cls, v: Any) -> Optional[int]:
        f = _to_float(v)
        return int(f) if f is not None and f > 0 else None


class OpenShipmentGrant(BaseModel):
    """Successful reply of ``open-shipment-by-payment``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    shipment_display_id: Optional[str] = Field(None, alias="shipmentDisplayId")
    shipment_row_id: Optional[int] = Field(None, alias="shipmentId")
    paid_value: float = Field(0.0, alias="paidValue")

    @field_validator("shipment_row_id", mode="before")
    @classmethod
    def positive_row_id(cls, v: Any) -> Optional[int]:
        f = _to_float(v)
        return int(f) if f is not None and f > 0 else None

    @field_validator("paid_value", mode="before")
    @classmethod
    def numeric(cls, v: Any) -> float:
        return _to_float(v) or 0.0


# ============================================================================
# CHECKOUT SESSION
# ============================================================================


class CheckoutSessionItem(BaseModel):
    reference: str
    description: str = ""
    price: float
    quantity: int
    weight: Optional[float] = None


class CheckoutSessionRequest(BaseModel):
    """Body of ``POST /api/stripe/create-checkout-session`` (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    shipping_has_been_modified: bool = False
    open_shipment_payment_id: str = ""
    amount: float
    currency: str = "eur"
    customer_name: str
    customer_email: str
    clerk_user_id: Optional[str] = None
    store_name: str
    items: list[CheckoutSessionItem]
    temp_credit_balance_cents: int = 0
    address: Address
    delivery_method: DeliveryMethod
    parcel_point: Optional[dict[str, Any]] = None
    phone: str
    cart_item_ids: list[int]
    delivery_network: str = ""
    promotion_code_id: str = ""

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CheckoutSessionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    client_secret: str = Field(alias="clientSecret")
    credit_coupon_id: Optional[str] = Field(None, alias="creditCouponId")
    credit_promotion_code_id: Optional[str] = Field(None, alias="creditPromotionCodeId")

    @field_validator("credit_coupon_id", "credit_promotion_code_id", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        return _blank_to_none(v)
