"""
Async client for the Paylive REST backend.

Covers the endpoints the checkout flow talks to:
- Stores and per-store stock search
- Stripe customer lookup, checkout sessions and credit coupons
- Cart summary and cart item mutations
- Open-shipment lock (acquire, query, release) and cart rebuild
- Boxtal parcel point search (through the backend proxy)

The client never retries on its own. Every call is bounded by the timeout of
its ``ClientConfig``; cancelling the awaiting task cancels the request.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

import httpx
from libs.common.config import Settings, get_settings
from libs.common.logging import get_logger
from services.checkout_service.exceptions import ApiError, ConflictError
from services.checkout_service.schemas import (
    Address,
    CartItem,
    CartSummary,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CustomerData,
    OpenShipment,
    OpenShipmentGrant,
    ParcelPointHit,
    Store,
)
from services.checkout_service.shipping import SEARCH_NETWORKS, normalise_country

logger = get_logger(__name__)

TokenProvider = Callable[[], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for one ``PayliveClient``."""

    base_url: str
    timeout: float = 15.0
    stock_lookup_concurrency: int = 4

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ClientConfig":
        settings = settings or get_settings()
        return cls(
            base_url=settings.PAYLIVE_API_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            stock_lookup_concurrency=settings.STOCK_LOOKUP_CONCURRENCY,
        )


def _json_or_empty(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


class PayliveClient:
    """Async client for the Paylive backend."""

    def __init__(
        self,
        config: ClientConfig,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "PayliveClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _auth_headers(self) -> dict:
        token = await self._token_provider() if self._token_provider else None
        return {"Authorization": f"Bearer {token}" if token else ""}

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict = None,
        json_data: dict = None,
        auth: bool = False,
    ) -> Any:
        """Make a request to the backend and return the decoded JSON body."""
        headers = await self._auth_headers() if auth else None

        try:
            response = await self._client.request(
                method=method,
                url=endpoint,
                params=params,
                json=json_data,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            logger.warning(f"Paylive API timeout: {method} {endpoint}")
            raise ApiError("Le serveur ne répond pas, veuillez réessayer.") from exc
        except httpx.HTTPError as exc:
            logger.warning(f"Paylive API transport error: {method} {endpoint}: {exc}")
            raise ApiError(f"Erreur réseau: {exc}") from exc

        data = _json_or_empty(response)

        if not response.is_success:
            body = data if isinstance(data, dict) else {}
            status = response.status_code
            logger.error(f"Paylive API error: {status} {method} {endpoint} - {body}")
            if status == 409:
                message = body.get("message") or body.get("error") or "Conflit"
                raise ConflictError(message, status_code=status, payload=body)
            message = body.get("error") or body.get("message") or f"Erreur HTTP {status}"
            raise ApiError(message, status_code=status, payload=body)

        return data

    # =========================================================================
    # Stores
    # =========================================================================

    async def get_store(self, slug: str) -> Store:
        data = await self._request("GET", f"/api/stores/{slug}")
        return Store.model_validate(data.get("store") or {})

    async def search_stock(self, slug: str, query: str) -> List[dict]:
        """Raw hits of the store's reference search (``stock`` + ``product``)."""
        data = await self._request(
            "GET", f"/api/stores/{slug}/stock/search", params={"q": query}
        )
        items = data.get("items") if isinstance(data, dict) else None
        return items if isinstance(items, list) else []

    # =========================================================================
    # Stripe
    # =========================================================================

    async def get_customer_details(self, email: str) -> Optional[CustomerData]:
        data = await self._request(
            "GET", "/api/stripe/get-customer-details", params={"customerEmail": email}
        )
        customer = data.get("customer")
        if not customer or not customer.get("id"):
            return None
        return CustomerData.model_validate(customer)

    async def create_checkout_session(
        self, request: CheckoutSessionRequest
    ) -> CheckoutSessionResponse:
        data = await self._request(
            "POST", "/api/stripe/create-checkout-session", json_data=request.to_wire()
        )
        return CheckoutSessionResponse.model_validate(data)

    async def delete_coupon(self, coupon_id: str) -> None:
        await self._request(
            "POST", "/api/stripe/delete-coupon", json_data={"couponId": coupon_id}, auth=True
        )

    # =========================================================================
    # Carts
    # =========================================================================

    async def get_cart_summary(
        self, stripe_id: str, payment_id: Optional[str] = None
    ) -> CartSummary:
        params = {"stripeId": stripe_id}
        if payment_id:
            params["paymentId"] = payment_id
        data = await self._request("GET", "/api/carts/summary", params=params)
        return CartSummary.model_validate(data)

    async def create_cart_item(
        self,
        *,
        store_id: int,
        customer_stripe_id: str,
        product_reference: str,
        value: float,
        description: str,
        quantity: int = 1,
        weight: Optional[float] = None,
        payment_id: Optional[str] = None,
    ) -> Optional[CartItem]:
        """
        Add a line to the customer's cart.

        Raises:
            ConflictError: the reference already sits in another cart. The
                server message is kept as-is.
        """
        payload = {
            "store_id": store_id,
            "product_reference": product_reference,
            "value": value,
            "customer_stripe_id": customer_stripe_id,
            "description": description,
            "quantity": quantity,
        }
        if weight is not None:
            payload["weight"] = weight
        if payment_id:
            payload["payment_id"] = payment_id

        data = await self._request("POST", "/api/carts", json_data=payload)
        created = data.get("item")
        return CartItem.model_validate(created) if created else None

    async def update_cart_item(self, item_id: int, quantity: int) -> Optional[CartItem]:
        data = await self._request(
            "PUT", f"/api/carts/{item_id}", json_data={"quantity": quantity}
        )
        updated = data.get("item") if isinstance(data, dict) else None
        return CartItem.model_validate(updated) if updated else None

    async def delete_cart_item(self, item_id: int) -> None:
        await self._request("DELETE", "/api/carts", json_data={"id": item_id})

    # =========================================================================
    # Shipments
    # =========================================================================

    async def open_shipment_by_payment(
        self, payment_id: str, store_id: int, force: bool = False
    ) -> OpenShipmentGrant:
        """
        Acquire the edit lock on a paid order's shipment.

        Raises:
            ConflictError: another shipment is already open for the store;
                ``payload["openShipment"]`` describes it when the server knows.
        """
        data = await self._request(
            "POST",
            "/api/shipments/open-shipment-by-payment",
            json_data={"paymentId": payment_id, "storeId": store_id, "force": force},
            auth=True,
        )
        return OpenShipmentGrant.model_validate(data)

    async def get_active_open_shipment(self, store_id: int) -> Optional[OpenShipment]:
        data = await self._request(
            "GET",
            "/api/shipments/active-open-shipment",
            params={"storeId": str(store_id)},
            auth=True,
        )
        raw = data.get("openShipment") if isinstance(data, dict) else None
        if not raw:
            return None
        shipment = OpenShipment.model_validate(raw)
        return shipment if shipment.payment_id else None

    async def cancel_open_shipment(self, payment_id: str, store_id: int) -> None:
        await self._request(
            "POST",
            "/api/shipments/cancel-open-shipment",
            json_data={"paymentId": payment_id, "storeId": store_id},
            auth=True,
        )

    async def rebuild_carts_from_payment(self, payment_id: str, store_id: int) -> None:
        await self._request(
            "POST",
            "/api/shipments/rebuild-carts-from-payment",
            json_data={"paymentId": payment_id, "storeId": store_id},
            auth=True,
        )

    # =========================================================================
    # Parcel points
    # =========================================================================

    async def search_parcel_points(
        self, address: Address, networks: str = SEARCH_NETWORKS
    ) -> List[ParcelPointHit]:
        data = await self._request(
            "POST",
            "/api/boxtal/parcel-points",
            json_data={
                "street": address.line1,
                "city": address.city,
                "postalCode": address.postal_code,
                "countryIsoCode": normalise_country(address.country),
                "searchNetworks": networks,
            },
        )
        content = data.get("content") if isinstance(data, dict) else None
        return [ParcelPointHit.model_validate(hit) for hit in content or []]
