"""
Checkout controller.

Wires the delivery reconciler, the cart synchronizer and the open-shipment
flow together behind one ``CheckoutStage``:

    BROWSING -> AWAITING_PAYMENT -> COMPLETED
       ^  |          |
       |  v          v
    EDITING_ORDER / EDITING_DELIVERY

Every refused action records ``payment_error`` and goes through ``notify``.
"""

from typing import Dict, Optional

from libs.common.logging import get_logger
from services.checkout_service.cart import CartSynchronizer, missing_refs_message
from services.checkout_service.client import PayliveClient
from services.checkout_service.delivery import DeliveryReconciler, Geocoder
from services.checkout_service.exceptions import (
    ApiError,
    CartConsistencyError,
    CheckoutError,
    ConflictError,
    PromoCodeError,
    StockError,
)
from services.checkout_service.models import (
    BlockReason,
    CheckoutStage,
    DeliveryMethod,
    DeliveryType,
    MapMode,
)
from services.checkout_service.notifications import Notify, log_notify
from services.checkout_service.open_shipment import OpenShipmentFlow, requested_payment_id
from services.checkout_service.schemas import (
    Address,
    CartItem,
    CheckoutSessionItem,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CustomerData,
    ParcelPoint,
    ParcelPointLocation,
    StockItem,
    Store,
)
from services.checkout_service.shipping import STORE_PICKUP_NETWORK
from services.checkout_service.validators import (
    expected_phone_country,
    normalise_promo_code,
    validate_phone,
)

logger = get_logger(__name__)


def blocked_message(payload: dict) -> Optional[str]:
    """French message for a 409 ``{"blocked": true, ...}`` checkout reply."""
    if not payload or not payload.get("blocked"):
        return None
    ref = str(payload.get("reference") or "").strip()
    reason = str(payload.get("reason") or "").strip()

    if ref:
        if reason == BlockReason.ALREADY_BOUGHT:
            return f"Malheureusement, la référence {ref} a déjà été achetée."
        if reason == BlockReason.OUT_OF_STOCK:
            return f"La référence {ref} n'est plus en stock."
        if reason == BlockReason.INSUFFICIENT_STOCK:
            available = payload.get("available")
            requested = payload.get("requested")
            if isinstance(available, (int, float)) and isinstance(requested, (int, float)):
                return (
                    f"Stock insuffisant pour la référence {ref} "
                    f"(disponible: {available}, demandé: {requested})."
                )
            return f"Stock insuffisant pour la référence {ref}."
        return f"Impossible de finaliser l'achat pour la référence {ref}."
    if reason:
        return f"Impossible de finaliser l'achat ({reason})."
    return None


class CheckoutController:
    def __init__(
        self,
        client: PayliveClient,
        store_slug: str,
        *,
        customer_email: str,
        params: Optional[Dict[str, str]] = None,
        clerk_user_id: Optional[str] = None,
        notify: Optional[Notify] = None,
        geocoder: Optional[Geocoder] = None,
    ):
        self.client = client
        self.store_slug = store_slug
        self.email = (customer_email or "").strip()
        self.clerk_user_id = clerk_user_id
        self.params: Dict[str, str] = dict(params or {})
        self.notify = notify or log_notify
        self.geocoder = geocoder

        self.stage = CheckoutStage.BROWSING
        self.store: Optional[Store] = None
        self.customer: Optional[CustomerData] = None
        self.customer_details_loaded = False
        self.cart: Optional[CartSynchronizer] = None
        self.delivery: Optional[DeliveryReconciler] = None
        self.open_shipment: Optional[OpenShipmentFlow] = None

        self.name = ""
        self.phone = ""
        self.address: Optional[Address] = None
        self.delivery_method = DeliveryMethod.PICKUP_POINT
        self.promo_code = ""
        self.shipping_has_been_modified = False

        self.payment_error: Optional[str] = None
        self.client_secret: Optional[str] = None
        self.processing = False
        self._modify_delivery_clicks = 0

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> None:
        try:
            self.store = await self.client.get_store(self.store_slug)
        except ApiError as exc:
            self._fail(exc.message)
            raise

        self.cart = CartSynchronizer(
            self.client,
            self.store,
            self.email,
            payment_id=requested_payment_id(self.params),
        )
        self.open_shipment = OpenShipmentFlow(
            self.client, self.store, self.cart, notify=self.notify
        )
        self.open_shipment.params = self.params

        try:
            self.customer = await self.client.get_customer_details(self.email)
        except ApiError as exc:
            logger.warning(f"Customer lookup failed for {self.email}: {exc.message}")
            self.customer = None
        self.customer_details_loaded = True

        saved_method = self.customer.saved_delivery_method if self.customer else None
        if self.customer:
            self.name = self.customer.name or ""
            self.phone = self.customer.phone or ""
            self.address = self.customer.address
            self.cart.stripe_customer_id = self.customer.id
        self.delivery_method = saved_method or DeliveryMethod.PICKUP_POINT

        self.delivery = DeliveryReconciler(
            self.client,
            mode=MapMode.RETURN if self.open_shipment.is_return_mode else MapMode.DELIVERY,
            default_delivery_method=self.delivery_method,
            initial_delivery_network=(
                self.customer.saved_delivery_network if self.customer else None
            ),
            geocoder=self.geocoder,
        )
        if self.address is not None:
            await self.delivery.set_address(self.address)
            self._follow_delivery_type()

        try:
            await self.cart.refresh()
        except (ApiError, CheckoutError) as exc:
            self._fail(exc.message)

        await self.open_shipment.check_active()
        await self.open_shipment.start_from_params(self.params)

    # ------------------------------------------------------------------
    # Form
    # ------------------------------------------------------------------

    async def set_address(self, address: Optional[Address]) -> None:
        self.address = address
        await self.delivery.set_address(address)
        self._follow_delivery_type()

    def _follow_delivery_type(self) -> None:
        # Countries without a pickup network leave only home delivery.
        if self.delivery_method == DeliveryMethod.PICKUP_POINT and not self.delivery.pickup_allowed:
            self.delivery_method = self.delivery.delivery_method

    def set_delivery_method(self, method: DeliveryMethod) -> DeliveryMethod:
        method = DeliveryMethod(method)
        if method == DeliveryMethod.STORE_PICKUP:
            if self.store is None or self.store.pickup_address is None:
                raise CheckoutError("Le retrait en boutique n'est pas disponible pour cette boutique.")
        elif method == DeliveryMethod.PICKUP_POINT:
            if self.delivery.set_delivery_type(DeliveryType.PICKUP) == DeliveryType.HOME:
                method = DeliveryMethod.HOME_DELIVERY
        else:
            self.delivery.set_delivery_type(DeliveryType.HOME)
        self.delivery_method = method
        return method

    def select_parcel_point(self, point: ParcelPoint) -> ParcelPoint:
        selected = self.delivery.select_parcel_point(point)
        self.delivery_method = DeliveryMethod.PICKUP_POINT
        self.shipping_has_been_modified = True
        return selected

    def select_home_option(self, key: str) -> str:
        offer_code = self.delivery.select_home_option(key)
        self.delivery_method = DeliveryMethod.HOME_DELIVERY
        self.shipping_has_been_modified = True
        return offer_code

    def resolved_parcel_point(self) -> Optional[ParcelPoint]:
        """Selected parcel point, else the one saved on the customer."""
        if self.delivery and self.delivery.selected_parcel_point:
            return self.delivery.selected_parcel_point
        if self.customer is None:
            return None
        if self.customer.parcel_point and self.customer.parcel_point.location.street:
            return self.customer.parcel_point

        shipping_address = (self.customer.shipping or {}).get("address")
        if not isinstance(shipping_address, dict):
            return None

        network_code = self.customer.saved_delivery_network
        shipping_name = str((self.customer.shipping or {}).get("name") or "").strip()
        name_parts = [part.strip() for part in shipping_name.split(" - ") if part.strip()]
        network = name_parts[1] if len(name_parts) > 1 else network_code.split("-")[0].strip()

        return ParcelPoint(
            code=self.customer.saved_parcel_point_code,
            name=name_parts[0] if name_parts else shipping_name,
            network=network,
            shipping_offer_code=network_code or None,
            location=ParcelPointLocation(
                street=shipping_address.get("street") or shipping_address.get("line1") or "",
                number=shipping_address.get("number") or shipping_address.get("line2"),
                city=shipping_address.get("city") or "",
                postal_code=shipping_address.get("postalCode")
                or shipping_address.get("postal_code")
                or "",
                country=shipping_address.get("countryIsoCode")
                or shipping_address.get("country")
                or "FR",
            ),
        )

    def is_form_complete(self) -> bool:
        has_email = bool(self.email)
        has_contact = bool(self.name.strip()) and bool(self.phone.strip())
        if self.delivery_method == DeliveryMethod.PICKUP_POINT:
            has_delivery = self.resolved_parcel_point() is not None
        else:
            has_delivery = self.delivery.is_complete_for(
                self.delivery_method,
                self.address,
                self.store.pickup_address if self.store else None,
            )
        return has_email and has_contact and has_delivery

    @property
    def can_enter_promo_code(self) -> bool:
        credit = self.customer.credit_balance_cents if self.customer else 0
        return (
            not self.open_shipment.is_open_mode
            and self.customer_details_loaded
            and credit <= 0
        )

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    async def add_to_cart(
        self,
        reference: str,
        value: float,
        description: str,
        *,
        quantity: int = 1,
        weight: Optional[float] = None,
    ) -> Optional[CartItem]:
        try:
            item = await self.cart.add_item(
                reference, value, description, quantity=quantity, weight=weight
            )
        except (CheckoutError, ApiError) as exc:
            self._fail(exc.message)
            return None
        self.payment_error = None
        return item

    async def add_stock_item(self, stock_item: StockItem) -> Optional[CartItem]:
        try:
            item = await self.cart.add_stock_item(stock_item)
        except (CheckoutError, ApiError) as exc:
            self._fail(exc.message)
            return None
        self.payment_error = None
        return item

    async def update_quantity(self, item_id: int, quantity: int) -> Optional[CartItem]:
        """Change a quantity; on failure the confirmed quantity is back in the cart."""
        try:
            item = await self.cart.update_quantity(item_id, quantity)
        except (CheckoutError, ApiError) as exc:
            self._fail(exc.message)
            return None
        self.payment_error = None
        return item

    async def remove_item(self, item_id: int) -> bool:
        try:
            await self.cart.remove_item(item_id)
        except (CheckoutError, ApiError) as exc:
            self._fail(exc.message)
            return False
        self.payment_error = None
        return True

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def proceed_to_payment(self) -> Optional[CheckoutSessionResponse]:
        """Run every pre-payment check and open a checkout session."""
        if self.open_shipment.is_return_mode:
            await self._enter_return_delivery()
            return None

        if (not self.is_form_complete() and not self.cart.items) or not self.store or not self.email:
            self._fail("Veuillez compléter vos informations et ajouter un article au panier.")
            return None

        self.processing = True
        try:
            response = await self._create_session()
        except (CheckoutError, ApiError) as exc:
            self._fail(exc.message)
            return None
        finally:
            self.processing = False

        self.payment_error = None
        self.client_secret = response.client_secret
        self.stage = CheckoutStage.AWAITING_PAYMENT
        return response

    async def _create_session(self) -> CheckoutSessionResponse:
        refreshed = await self.cart.verify_before_payment(list(self.cart.items))
        await self.cart.validate_quantities_in_stock(refreshed.items, refreshed.stock)

        method = self.delivery_method
        point = self.resolved_parcel_point() if method == DeliveryMethod.PICKUP_POINT else None
        if method == DeliveryMethod.PICKUP_POINT and point is None:
            raise CheckoutError(
                "Veuillez sélectionner un point relais avant de procéder au paiement."
            )

        customer = self.customer
        name = self.name or (customer.name if customer else None) or "Client"
        phone = self.phone or (customer.phone if customer else None) or ""
        expected = expected_phone_country(self._phone_country(method, point))
        if expected and not validate_phone(phone, expected.country):
            raise CheckoutError(f"Numéro de téléphone invalide ({expected.label}).")

        promotion_code = self._validated_promo_code()

        open_mode = self.open_shipment.is_open_mode
        credit_cents = await self.open_shipment.prepare_commit() if open_mode else 0

        store_address = self.store.pickup_address
        if method == DeliveryMethod.STORE_PICKUP:
            delivery_network = STORE_PICKUP_NETWORK
            address = self.address or store_address
        else:
            delivery_network = (
                (point.shipping_offer_code if point else None)
                or self.delivery.shipping_offer_code
                or (customer.saved_delivery_network if customer else "")
            )
            address = self.address or (customer.address if customer else None)

        request = CheckoutSessionRequest(
            shipping_has_been_modified=self.shipping_has_been_modified,
            open_shipment_payment_id=(self.open_shipment.payment_id or "") if open_mode else "",
            amount=refreshed.total,
            customer_name=name,
            customer_email=self.email,
            clerk_user_id=self.clerk_user_id,
            store_name=self.store.name,
            items=[
                CheckoutSessionItem(
                    reference=item.product_reference,
                    description=item.description or "",
                    price=item.value,
                    quantity=item.quantity,
                    weight=item.weight,
                )
                for item in refreshed.items
            ],
            temp_credit_balance_cents=credit_cents,
            address=address or Address(),
            delivery_method=method,
            parcel_point=point.to_wire() if point else None,
            phone=phone,
            cart_item_ids=[item.id for item in refreshed.items],
            delivery_network=delivery_network or "",
            promotion_code_id=promotion_code,
        )

        try:
            response = await self.client.create_checkout_session(request)
        except ConflictError as exc:
            raise CheckoutError(blocked_message(exc.payload) or exc.message) from exc

        self.open_shipment.record_session(response)
        self._remember_delivery(method, point, name, phone)
        logger.info(f"Checkout session created for {self.email} ({method.value})")
        return response

    def _phone_country(self, method: DeliveryMethod, point: Optional[ParcelPoint]) -> Optional[str]:
        customer_address = self.customer.address if self.customer else None
        if method == DeliveryMethod.HOME_DELIVERY:
            source = self.address or customer_address
            return source.country if source else None
        if method == DeliveryMethod.PICKUP_POINT:
            return point.location.country if point else None
        source = self.address or customer_address
        return source.country if source else "FR"

    def _validated_promo_code(self) -> str:
        code = self.promo_code.strip()
        if not code or self.open_shipment.is_open_mode:
            return ""
        if not self.customer_details_loaded:
            raise PromoCodeError("Chargement des informations client…")
        if not self.can_enter_promo_code:
            raise PromoCodeError("Vous ne pouvez pas utiliser de code promo avec un solde positif.")
        return normalise_promo_code(code)

    def _remember_delivery(
        self, method: DeliveryMethod, point: Optional[ParcelPoint], name: str, phone: str
    ) -> None:
        """Mirror the delivery choice on the local customer copy."""
        if self.customer is None:
            return
        metadata = dict(self.customer.metadata)
        metadata["delivery_method"] = method.value
        update = {"name": name, "phone": phone, "delivery_method": method}

        if method == DeliveryMethod.HOME_DELIVERY:
            metadata["delivery_network"] = self.delivery.shipping_offer_code or ""
            update["address"] = self.address or self.customer.address
        elif method == DeliveryMethod.PICKUP_POINT and point is not None:
            metadata["delivery_network"] = point.shipping_offer_code or ""
            metadata["parcel_point_code"] = point.code
            update["parcel_point"] = point
            update["shipping"] = {
                "name": point.name,
                "phone": phone,
                "address": point.as_shipping_address().model_dump(),
            }
        else:
            metadata["delivery_network"] = STORE_PICKUP_NETWORK

        update["metadata"] = metadata
        self.customer = self.customer.model_copy(update=update)

    async def _enter_return_delivery(self) -> None:
        """Return shipments leave from a pickup point and go back to the store."""
        self.stage = CheckoutStage.EDITING_DELIVERY
        self.payment_error = None
        self.client_secret = None
        self.delivery_method = DeliveryMethod.PICKUP_POINT
        self.delivery.reset(DeliveryType.PICKUP)
        store_address = self.store.pickup_address if self.store else None
        if store_address is not None:
            await self.set_address(store_address)

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    def modify_order(self) -> None:
        self.stage = CheckoutStage.EDITING_ORDER
        self.client_secret = None

    def modify_delivery(self) -> None:
        """Reopen delivery; a second consecutive click starts from scratch."""
        force_reset = self._modify_delivery_clicks >= 1
        self._modify_delivery_clicks += 1
        self.stage = CheckoutStage.EDITING_DELIVERY
        self.client_secret = None

        if force_reset:
            self.delivery_method = DeliveryMethod.PICKUP_POINT
            self.delivery.reset(DeliveryType.PICKUP)
            self._follow_delivery_type()
            return

        saved = self.customer.saved_delivery_method if self.customer else None
        self.delivery_method = saved or DeliveryMethod.PICKUP_POINT
        self.delivery.reset(
            DeliveryType.HOME if saved == DeliveryMethod.HOME_DELIVERY else DeliveryType.PICKUP
        )
        if self.address is None and self.customer and self.customer.address:
            self.address = self.customer.address
        if saved in (DeliveryMethod.HOME_DELIVERY, DeliveryMethod.PICKUP_POINT):
            self.delivery.restore_saved_network(self.customer.saved_delivery_network)
        self._follow_delivery_type()

    def complete(self) -> None:
        """The embedded checkout reported a successful payment."""
        self.stage = CheckoutStage.COMPLETED
        self.client_secret = None
        if self.open_shipment.is_open_mode:
            self.open_shipment.commit()

    async def recheck_stock_during_payment(self) -> bool:
        """
        Re-validate the cart while the payment form is shown. On failure the
        buyer is sent back to editing the order.
        """
        if self.stage != CheckoutStage.AWAITING_PAYMENT:
            return True
        try:
            refreshed = await self.cart.refresh()
            if refreshed.missing_refs:
                raise StockError(
                    missing_refs_message(refreshed.missing_refs), refreshed.missing_refs[0]
                )
            if not refreshed.items:
                raise CartConsistencyError("Votre panier est vide")
            await self.cart.validate_quantities_in_stock(refreshed.items, refreshed.stock)
        except (CheckoutError, ApiError) as exc:
            self._fail(exc.message)
            self.modify_order()
            return False
        return True

    def _fail(self, message: str) -> None:
        self.payment_error = message
        self.notify(message, "error")
