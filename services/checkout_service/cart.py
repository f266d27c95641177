"""
Cart synchronizer.

Keeps the local view of the buyer's cart for one store in step with the
backend, and checks cart quantities against live stock before payment.

Quantity updates and removals are applied locally first. Each one gets an
operation id per cart item; when the backend refuses it, the item goes back
to its last server-confirmed state unless a newer operation on the same item
has started since.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from libs.common.logging import get_logger
from services.checkout_service.client import PayliveClient
from services.checkout_service.exceptions import (
    ApiError,
    CartConsistencyError,
    CheckoutError,
    StockError,
)
from services.checkout_service.schemas import CartItem, StockItem, Store, ref_key
from services.checkout_service.validators import is_delivery_regulation_text

logger = get_logger(__name__)

STOCK_RETRY_DELAY_SECONDS = 0.15
MIN_STOCK_QUERY_LENGTH = 2

# ref_key -> stock line, None when the store has no such reference
StockSnapshot = Dict[str, Optional[StockItem]]


@dataclass
class CartRefresh:
    """Result of re-reading the cart from the backend."""

    items: List[CartItem]
    total: float
    missing_refs: List[str] = field(default_factory=list)
    stock: StockSnapshot = field(default_factory=dict)
    regulation_refs: List[str] = field(default_factory=list)


def missing_refs_message(refs: Iterable[str]) -> str:
    return (
        f"Les articles {', '.join(refs)} ne sont plus disponibles. "
        "Veuillez les retirer de votre panier."
    )


def _format_quantity(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _is_regulation_item(item: CartItem) -> bool:
    return is_delivery_regulation_text(item.product_reference) or is_delivery_regulation_text(
        item.description
    )


class CartSynchronizer:
    def __init__(
        self,
        client: PayliveClient,
        store: Store,
        customer_email: Optional[str],
        *,
        payment_id: Optional[str] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.client = client
        self.store = store
        self.customer_email = (customer_email or "").strip()
        self.payment_id = payment_id
        self.max_concurrency = max(1, max_concurrency or client.config.stock_lookup_concurrency)

        self.stripe_customer_id: Optional[str] = None
        self.items: List[CartItem] = []
        self.total = 0.0
        self.stock: StockSnapshot = {}

        self._confirmed: Dict[int, CartItem] = {}
        self._pending: Dict[int, int] = {}
        self._op_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def find(self, reference: str) -> Optional[CartItem]:
        key = ref_key(reference)
        for item in self.items:
            if item.ref_key == key:
                return item
        return None

    def replace_items(self, items: List[CartItem]) -> None:
        """Adopt ``items`` as the server-confirmed cart."""
        self.items = list(items)
        self._confirmed = {item.id: item for item in self.items}
        self._recompute_total()

    def _recompute_total(self) -> None:
        self.total = sum(item.line_total for item in self.items)

    async def resolve_customer_id(self) -> str:
        if self.stripe_customer_id:
            return self.stripe_customer_id
        if not self.customer_email:
            raise CheckoutError("Adresse email requise")
        customer = await self.client.get_customer_details(self.customer_email)
        if customer is None:
            raise CheckoutError("Client Stripe introuvable")
        self.stripe_customer_id = customer.id
        return customer.id

    async def refresh(self) -> CartRefresh:
        """Re-read the cart for this store and enrich it from live stock."""
        if not self.customer_email:
            return CartRefresh(items=[], total=0.0)

        stripe_id = await self.resolve_customer_id()
        summary = await self.client.get_cart_summary(stripe_id, self.payment_id)
        group = summary.group_for_store(self.store.id)
        if group is None:
            self.replace_items([])
            return CartRefresh(items=[], total=0.0)

        stock = await self.fetch_stock_snapshot(
            [item.product_reference for item in group.items]
        )
        self.stock.update(stock)

        missing_refs = []
        enriched = []
        for item in group.items:
            hit = stock.get(item.ref_key)
            product_id = (hit.product_stripe_id if hit else None) or item.product_stripe_id or ""
            if product_id.startswith("prod_") and item.product_reference:
                if hit is None:
                    missing_refs.append(item.product_reference)
                else:
                    item = item.model_copy(
                        update={
                            "product_stripe_id": product_id,
                            "value": hit.unit_price or item.value,
                            "weight": hit.weight if hit.weight is not None else item.weight,
                        }
                    )
            enriched.append(item)

        regulation_refs = [it.product_reference for it in enriched if _is_regulation_item(it)]
        kept = [it for it in enriched if not _is_regulation_item(it)]
        self.replace_items(kept)

        return CartRefresh(
            items=list(self.items),
            total=self.total,
            missing_refs=missing_refs,
            stock=stock,
            regulation_refs=regulation_refs,
        )

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    async def fetch_stock_snapshot(self, refs: Iterable[str]) -> StockSnapshot:
        """
        Look up every distinct reference with at most ``max_concurrency``
        requests in flight. Workers pull the next reference from a shared
        index until none is left.
        """
        unique: List[str] = []
        seen = set()
        for ref in refs:
            key = ref_key(ref)
            if key and key not in seen:
                seen.add(key)
                unique.append(ref.strip())

        snapshot: StockSnapshot = {}
        next_index = 0

        async def worker() -> None:
            nonlocal next_index
            while next_index < len(unique):
                ref = unique[next_index]
                next_index += 1
                snapshot[ref_key(ref)] = await self._lookup_stock(ref)

        workers = [worker() for _ in range(min(self.max_concurrency, len(unique)))]
        await asyncio.gather(*workers)
        return snapshot

    async def _lookup_stock(self, reference: str) -> Optional[StockItem]:
        """Exact (case-insensitive) match for ``reference``; one retry on a non-2xx."""
        query = reference.strip()
        if len(query) < MIN_STOCK_QUERY_LENGTH:
            return None

        key = ref_key(query)
        for attempt in range(2):
            try:
                hits = await self.client.search_stock(self.store.slug, query)
            except ApiError as exc:
                if exc.status_code is None or attempt:
                    logger.warning(f"Stock lookup failed for {query}: {exc.message}")
                    return None
                await asyncio.sleep(STOCK_RETRY_DELAY_SECONDS)
                continue

            for hit in hits:
                item = StockItem.from_search_hit(hit)
                if item.ref_key == key:
                    return item
            return None
        return None

    async def validate_quantities_in_stock(
        self, items: List[CartItem], snapshot: Optional[StockSnapshot] = None
    ) -> None:
        """
        Raise ``StockError`` for the first Stripe-backed item that is gone,
        sold out, or asked for in a larger quantity than available.
        """
        to_check = [it for it in items if it.has_stripe_product and it.product_reference]
        if not to_check:
            return

        source = snapshot if snapshot is not None else self.stock
        resolved: StockSnapshot = {}
        unresolved = []
        for item in to_check:
            if item.ref_key in source:
                resolved[item.ref_key] = source[item.ref_key]
            else:
                unresolved.append(item.product_reference)
        if unresolved:
            fetched = await self.fetch_stock_snapshot(unresolved)
            self.stock.update(fetched)
            resolved.update(fetched)

        for item in to_check:
            ref = item.product_reference
            stock_item = resolved.get(item.ref_key)
            if stock_item is None:
                raise StockError(missing_refs_message([ref]), ref, requested=item.quantity)

            available = stock_item.quantity
            if available is None:
                continue
            if available <= 0:
                raise StockError(
                    f"La référence {ref} n'est plus en stock.", ref, requested=item.quantity
                )
            if item.quantity > available:
                raise StockError(
                    f"Stock insuffisant pour {ref} "
                    f"(demandé {item.quantity}, disponible {_format_quantity(available)})",
                    ref,
                    requested=item.quantity,
                    available=int(available),
                )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_item(
        self,
        reference: str,
        value: float,
        description: str,
        *,
        quantity: int = 1,
        weight: Optional[float] = None,
    ) -> Optional[CartItem]:
        """
        Add ``reference`` to the cart, or bump its quantity when the cart
        already holds it (references are unique, case-insensitively).
        """
        reference = (reference or "").strip()
        if not reference:
            raise CheckoutError("Référence requise")
        if is_delivery_regulation_text(reference) or is_delivery_regulation_text(description):
            raise CheckoutError("Référence interdite")

        existing = self.find(reference)
        if existing is not None:
            return await self.update_quantity(existing.id, existing.quantity + max(1, quantity))

        stripe_id = await self.resolve_customer_id()
        created = await self.client.create_cart_item(
            store_id=self.store.id,
            customer_stripe_id=stripe_id,
            product_reference=reference,
            value=value,
            description=description,
            quantity=max(1, quantity),
            weight=weight,
            payment_id=self.payment_id,
        )
        if created is not None and created.store_id in (None, self.store.id):
            self.items.append(created)
            self._confirmed[created.id] = created
            self._recompute_total()
        return created

    async def add_stock_item(
        self, stock_item: StockItem, fallback_value: float = 0.0
    ) -> Optional[CartItem]:
        """Add a reference picked from the store's stock search."""
        if stock_item.quantity is not None and stock_item.quantity <= 0 and not self.find(
            stock_item.product_reference
        ):
            raise StockError(
                f"La référence {stock_item.product_reference} n'est plus en stock.",
                stock_item.product_reference,
            )
        value = stock_item.unit_price if stock_item.unit_price else fallback_value
        return await self.add_item(
            stock_item.product_reference,
            value,
            stock_item.product_name or stock_item.product_reference,
            weight=stock_item.weight,
        )

    def _get(self, item_id: int) -> CartItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise CartConsistencyError("Cet article n'est plus dans votre panier.")

    def _begin(self, item_id: int) -> int:
        op_id = next(self._op_ids)
        self._pending[item_id] = op_id
        return op_id

    def _is_latest(self, item_id: int, op_id: int) -> bool:
        return self._pending.get(item_id) == op_id

    def _put_local(self, item: CartItem, index: Optional[int] = None) -> None:
        for i, current in enumerate(self.items):
            if current.id == item.id:
                self.items[i] = item
                break
        else:
            position = len(self.items) if index is None else min(index, len(self.items))
            self.items.insert(position, item)
        self._recompute_total()

    async def update_quantity(self, item_id: int, quantity: int) -> CartItem:
        if quantity <= 0:
            raise CheckoutError("Quantité invalide")

        item = self._get(item_id)
        op_id = self._begin(item_id)
        self._put_local(item.model_copy(update={"quantity": quantity}))

        try:
            updated = await self.client.update_cart_item(item_id, quantity)
        except (ApiError, asyncio.CancelledError):
            self._rollback(item_id, op_id)
            raise

        confirmed = updated or item.model_copy(update={"quantity": quantity})
        self._confirmed[item_id] = confirmed
        if self._is_latest(item_id, op_id):
            del self._pending[item_id]
            self._put_local(confirmed)
        return confirmed

    async def remove_item(self, item_id: int) -> None:
        item = self._get(item_id)
        index = self.items.index(item)
        op_id = self._begin(item_id)
        self.items = [it for it in self.items if it.id != item_id]
        self._recompute_total()

        try:
            await self.client.delete_cart_item(item_id)
        except (ApiError, asyncio.CancelledError):
            self._rollback(item_id, op_id, index)
            raise

        self._confirmed.pop(item_id, None)
        if self._is_latest(item_id, op_id):
            del self._pending[item_id]

    def _rollback(self, item_id: int, op_id: int, index: Optional[int] = None) -> None:
        if not self._is_latest(item_id, op_id):
            return
        del self._pending[item_id]
        confirmed = self._confirmed.get(item_id)
        if confirmed is None:
            return
        logger.info(f"Rolling back cart item {item_id} to quantity {confirmed.quantity}")
        self._put_local(confirmed, index)

    # ------------------------------------------------------------------
    # Pre-payment
    # ------------------------------------------------------------------

    async def verify_before_payment(self, local_items: List[CartItem]) -> CartRefresh:
        """
        Re-read the authoritative cart and refuse to go on when it no longer
        matches what the buyer is looking at.
        """
        refreshed = await self.refresh()

        if refreshed.missing_refs:
            raise CartConsistencyError(missing_refs_message(refreshed.missing_refs))

        server_ids = {item.id for item in refreshed.items}
        vanished = [
            it.product_reference
            for it in local_items
            if it.id not in server_ids and not _is_regulation_item(it)
        ]
        if vanished:
            raise CartConsistencyError(
                f"Les articles {', '.join(vanished)} ont été retirés de votre panier. "
                "Veuillez vérifier votre commande."
            )

        if refreshed.regulation_refs:
            raise CartConsistencyError(
                "Les articles 'regulation livraison' sont interdits au paiement."
            )

        if not refreshed.items:
            raise CartConsistencyError("Votre panier est vide")

        seen = set()
        for item in refreshed.items:
            if item.ref_key in seen:
                raise CartConsistencyError(
                    "Vous avez la même référence plusieurs fois dans le panier. "
                    "Supprimez la référence en double et modifiez la quantité de l'autre"
                )
            seen.add(item.ref_key)

        return refreshed
