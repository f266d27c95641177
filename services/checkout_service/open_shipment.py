"""
Open-shipment edit flow.

A buyer may reopen a paid order to modify it. The backend allows at most one
open shipment per store; the lock is requested with the payment id found in
the checkout URL parameters (``open_shipment=true&payment_id=...``).

    IDLE --start--> REQUESTING_LOCK --ok--> EDITING --commit--> COMMITTED
                                    --409-> BLOCKED
    EDITING --cancel--> CANCELLING --> CANCELLED
    BLOCKED --cancel other / continue other--> (restart)

Every step is a single backend call. Failures are reported through
``notify`` and leave the flow where it was.
"""

from typing import Dict, Optional

from libs.common.currency import euros_to_cents
from libs.common.logging import get_logger
from services.checkout_service.cart import CartSynchronizer
from services.checkout_service.client import PayliveClient
from services.checkout_service.exceptions import (
    ApiError,
    CheckoutError,
    ConflictError,
)
from services.checkout_service.models import OpenShipmentState
from services.checkout_service.notifications import Notify, log_notify
from services.checkout_service.schemas import (
    CheckoutSessionResponse,
    OpenShipment,
    Store,
)

logger = get_logger(__name__)

CANCEL_ERROR = "Erreur lors de l’annulation de la modification"
VERIFY_ERROR = "Erreur lors de la vérification de l’annulation"
STILL_OPEN_ERROR = "Impossible de fermer la commande"
COUPON_ERROR = "Erreur lors de la suppression du coupon de crédit"


def requested_payment_id(params: Dict[str, str]) -> Optional[str]:
    """Payment id to edit, when the URL asks for an open or return shipment."""
    flagged = params.get("open_shipment") == "true" or params.get("return_shipment") == "true"
    payment_id = (params.get("payment_id") or "").strip()
    return payment_id if flagged and payment_id else None


class OpenShipmentFlow:
    def __init__(
        self,
        client: PayliveClient,
        store: Store,
        cart: CartSynchronizer,
        notify: Optional[Notify] = None,
    ):
        self.client = client
        self.store = store
        self.cart = cart
        self.notify = notify or log_notify

        self.state = OpenShipmentState.IDLE
        self.params: Dict[str, str] = {}
        self.payment_id: Optional[str] = None
        self.shipment_id: Optional[str] = None
        self.shipment_row_id: Optional[int] = None
        self.temp_credit_balance_cents = 0
        self.credit_coupon_id: Optional[str] = None
        self.credit_promotion_code_id: Optional[str] = None
        self.blocked_by: Optional[OpenShipment] = None
        self.attempted_payment_id: Optional[str] = None
        self.last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # URL parameters
    # ------------------------------------------------------------------

    @property
    def is_open_mode(self) -> bool:
        return self.params.get("open_shipment") == "true" and bool(
            (self.params.get("payment_id") or "").strip()
        )

    @property
    def is_return_mode(self) -> bool:
        return self.params.get("return_shipment") == "true" and bool(
            (self.params.get("payment_id") or "").strip()
        )

    @property
    def display_id(self) -> str:
        if self.shipment_id:
            return self.shipment_id
        return str(self.shipment_row_id) if self.shipment_row_id is not None else ""

    def _point_params_at(self, payment_id: str) -> None:
        self.params.pop("return_shipment", None)
        self.params["open_shipment"] = "true"
        self.params["payment_id"] = payment_id

    def _clear_params(self) -> None:
        for key in ("open_shipment", "return_shipment", "payment_id"):
            self.params.pop(key, None)

    # ------------------------------------------------------------------
    # Lock acquisition
    # ------------------------------------------------------------------

    async def start_from_params(self, params: Dict[str, str]) -> OpenShipmentState:
        self.params = params
        payment_id = requested_payment_id(params)
        if not payment_id or self.state == OpenShipmentState.BLOCKED:
            return self.state
        if self.state == OpenShipmentState.EDITING and self.payment_id == payment_id:
            return self.state

        self.state = OpenShipmentState.REQUESTING_LOCK
        try:
            grant = await self.client.open_shipment_by_payment(
                payment_id, self.store.id, force=False
            )
        except ConflictError as exc:
            holder = self._holder_from_payload(exc.payload)
            if holder is None:
                holder = await self._active_or_none()
            if holder is None:
                self._fail(exc.message)
            else:
                self._block(holder, attempted=payment_id)
            return self.state
        except ApiError as exc:
            self._fail(
                exc.message or "Erreur lors de la préparation de la modification de commande"
            )
            return self.state

        self.payment_id = payment_id
        self.shipment_id = grant.shipment_display_id
        self.shipment_row_id = grant.shipment_row_id
        self.temp_credit_balance_cents = euros_to_cents(grant.paid_value)
        self.cart.payment_id = payment_id
        self.state = OpenShipmentState.EDITING
        logger.info(f"Editing shipment {self.display_id} for payment {payment_id}")

        await self._rebuild_cart(payment_id)
        return self.state

    async def check_active(self) -> OpenShipmentState:
        """Move to BLOCKED when the store's lock is held for another payment."""
        holder = await self._active_or_none()
        if holder is None:
            return self.state

        requested = requested_payment_id(self.params)
        if requested and requested == holder.payment_id:
            self.shipment_id = holder.shipment_id
            self.shipment_row_id = holder.id
            return self.state

        self._block(holder, attempted=requested)
        return self.state

    async def _rebuild_cart(self, payment_id: str) -> bool:
        """Load the paid order's items into the cart, reusing existing lines."""
        try:
            stripe_id = await self.cart.resolve_customer_id()
            summary = await self.client.get_cart_summary(stripe_id, payment_id)
            group = summary.group_for_store(self.store.id)
            if group and any(item.payment_id == payment_id for item in group.items):
                self.cart.replace_items(group.items)
                return True
        except (ApiError, CheckoutError) as exc:
            logger.warning(f"Could not reuse cart of payment {payment_id}: {exc}")

        try:
            await self.client.rebuild_carts_from_payment(payment_id, self.store.id)
        except ApiError as exc:
            self._notify_error(
                exc.message or "Erreur lors du chargement de la commande depuis le paiement"
            )
            return False

        await self._refresh_cart()
        return True

    def _holder_from_payload(self, payload: dict) -> Optional[OpenShipment]:
        raw = payload.get("openShipment") if payload else None
        if not raw:
            return None
        holder = OpenShipment.model_validate(raw)
        return holder if holder.payment_id else None

    async def _active_or_none(self) -> Optional[OpenShipment]:
        try:
            return await self.client.get_active_open_shipment(self.store.id)
        except ApiError as exc:
            logger.warning(f"Active open shipment lookup failed: {exc.message}")
            return None

    def _block(self, holder: OpenShipment, attempted: Optional[str]) -> None:
        self.blocked_by = holder
        self.attempted_payment_id = attempted or None
        self.state = OpenShipmentState.BLOCKED
        logger.info(
            f"Shipment edit blocked by shipment {holder.shipment_id} "
            f"(payment {holder.payment_id})"
        )

    # ------------------------------------------------------------------
    # Blocked resolution
    # ------------------------------------------------------------------

    async def resolve_cancel_other(self) -> bool:
        """Cancel the blocking edit, then resume the one the buyer asked for."""
        if self.state != OpenShipmentState.BLOCKED or self.blocked_by is None:
            return False
        if not await self._drop_credit_coupon():
            return False
        if not await self._cancel_and_verify(self.blocked_by.payment_id):
            return False

        attempted = self.attempted_payment_id
        self.blocked_by = None
        self.attempted_payment_id = None
        self.temp_credit_balance_cents = 0
        self.state = OpenShipmentState.IDLE
        self.notify("Modifications annulées", "success")

        if attempted:
            self._point_params_at(attempted)
            await self.start_from_params(self.params)
        else:
            self._clear_params()
            self.cart.payment_id = None
            self.state = OpenShipmentState.CANCELLED
            await self._refresh_cart()
        return True

    async def resolve_continue_other(self) -> OpenShipmentState:
        """Switch to editing the order that holds the lock."""
        if self.state != OpenShipmentState.BLOCKED or self.blocked_by is None:
            return self.state
        payment_id = self.blocked_by.payment_id
        self.blocked_by = None
        self.attempted_payment_id = None
        self.state = OpenShipmentState.IDLE
        self._point_params_at(payment_id)
        return await self.start_from_params(self.params)

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel(self) -> bool:
        if self.state not in (OpenShipmentState.EDITING, OpenShipmentState.CANCELLING):
            return False

        self.state = OpenShipmentState.CANCELLING
        if not await self._drop_credit_coupon() or not await self._cancel_and_verify(
            self.payment_id
        ):
            self.state = OpenShipmentState.EDITING
            return False

        self._clear_params()
        self.payment_id = None
        self.shipment_id = None
        self.shipment_row_id = None
        self.blocked_by = None
        self.attempted_payment_id = None
        self.temp_credit_balance_cents = 0
        self.cart.payment_id = None
        self.state = OpenShipmentState.CANCELLED

        await self._refresh_cart()
        self.notify("Modifications annulées", "success")
        return True

    async def _cancel_and_verify(self, preferred_payment_id: Optional[str]) -> bool:
        """
        Release the store's lock and check that nothing is left open.

        When a different payment still holds the lock afterwards, it is
        cancelled once more and checked again.
        """
        payment_id = (preferred_payment_id or "").strip()
        holder = await self._active_or_none()
        if holder is not None:
            payment_id = holder.payment_id
        if not payment_id:
            return False

        if not await self._cancel_lock(payment_id):
            return False

        try:
            still_open = await self.client.get_active_open_shipment(self.store.id)
        except ApiError:
            self._notify_error(VERIFY_ERROR)
            return False
        if still_open is None:
            return True

        if still_open.payment_id != payment_id:
            if not await self._cancel_lock(still_open.payment_id):
                return False
            try:
                again = await self.client.get_active_open_shipment(self.store.id)
            except ApiError:
                self._notify_error(VERIFY_ERROR)
                return False
            if again is None:
                return True

        self._notify_error(STILL_OPEN_ERROR)
        return False

    async def _cancel_lock(self, payment_id: str) -> bool:
        try:
            await self.client.cancel_open_shipment(payment_id, self.store.id)
        except ApiError as exc:
            self._notify_error(exc.message or CANCEL_ERROR)
            return False
        return True

    async def _drop_credit_coupon(self) -> bool:
        if self.credit_coupon_id:
            try:
                await self.client.delete_coupon(self.credit_coupon_id)
            except ApiError as exc:
                logger.warning(f"Credit coupon deletion failed: {exc.message}")
                self._notify_error(COUPON_ERROR)
                return False
        self.credit_coupon_id = None
        self.credit_promotion_code_id = None
        return True

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def prepare_commit(self) -> int:
        """
        Delete the credit coupon of an earlier session and return the credit
        (cents) to apply to the next checkout session.
        """
        if self.state != OpenShipmentState.EDITING:
            return 0
        if self.credit_coupon_id:
            try:
                await self.client.delete_coupon(self.credit_coupon_id)
            except ApiError as exc:
                raise CheckoutError(
                    "Erreur lors de la suppression du coupon de crédit précédent"
                ) from exc
        self.credit_coupon_id = None
        self.credit_promotion_code_id = None
        return self.temp_credit_balance_cents

    def record_session(self, result: CheckoutSessionResponse) -> None:
        if self.state != OpenShipmentState.EDITING:
            return
        self.credit_coupon_id = result.credit_coupon_id
        self.credit_promotion_code_id = result.credit_promotion_code_id

    def commit(self, result: Optional[CheckoutSessionResponse] = None) -> None:
        """The payment of the edited order went through."""
        if result is not None:
            self.record_session(result)
        if self.state == OpenShipmentState.EDITING:
            self.state = OpenShipmentState.COMMITTED

    # ------------------------------------------------------------------

    async def _refresh_cart(self) -> None:
        try:
            await self.cart.refresh()
        except (ApiError, CheckoutError) as exc:
            logger.warning(f"Cart refresh failed: {exc}")

    def _notify_error(self, message: str) -> None:
        self.last_error = message
        self.notify(message, "error")

    def _fail(self, message: str) -> None:
        self._notify_error(message)
        self.state = OpenShipmentState.IDLE
