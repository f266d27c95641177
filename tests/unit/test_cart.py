"""Unit tests for the cart synchronizer (stock checks, optimistic updates)."""

import asyncio

import pytest
from services.checkout_service import cart as cart_module
from services.checkout_service.cart import CartSynchronizer
from services.checkout_service.exceptions import (
    ApiError,
    CartConsistencyError,
    CheckoutError,
    ConflictError,
    StockError,
)
from services.checkout_service.schemas import CartItem, StockItem

EMAIL = "lina@example.com"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def stock_hit(ref, quantity, unit_price=None):
    hit = {
        "stock": {
            "product_reference": ref,
            "quantity": quantity,
            "product_stripe_id": f"prod_{ref.lower()}",
        },
        "product": {"name": f"Article {ref}"},
    }
    if unit_price is not None:
        hit["unit_price"] = unit_price
    return hit


def summary(*items, store_id=1):
    return {
        "itemsByStore": [{"store": {"id": store_id}, "items": list(items), "total": 0}],
        "grandTotal": 0,
    }


def wire_customer(backend):
    backend.route(
        "GET",
        "/api/stripe/get-customer-details",
        (200, {"customer": {"id": "cus_1", "email": EMAIL}}),
    )


def wire_stock(backend, levels):
    def search(request):
        q = request.url.params["q"]
        for ref, quantity in levels.items():
            if ref.lower() == q.lower():
                return 200, {"items": [stock_hit(ref, quantity)]}
        return 200, {"items": []}

    backend.route("GET", "/api/stores/boutique-lina/stock/search", search)


def item(id, ref, quantity=1, value=10.0, **extra):
    return CartItem(id=id, product_reference=ref, quantity=quantity, value=value, **extra)


@pytest.fixture
def cart(paylive, store):
    return CartSynchronizer(paylive, store, EMAIL)


# ---------------------------------------------------------------------------
# Stock validation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_insufficient_stock_message(cart):
    items = [
        item(1, "A1", quantity=2, value=10, product_stripe_id="prod_a1"),
        item(2, "B2", quantity=1, value=25, product_stripe_id="prod_b2"),
    ]
    snapshot = {
        "a1": StockItem(product_reference="A1", quantity=1),
        "b2": StockItem(product_reference="B2", quantity=5),
    }

    with pytest.raises(StockError) as exc:
        await cart.validate_quantities_in_stock(items, snapshot)

    assert str(exc.value) == "Stock insuffisant pour A1 (demandé 2, disponible 1)"
    assert exc.value.reference == "A1"
    assert exc.value.requested == 2
    assert exc.value.available == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_sold_out_and_missing_references(cart):
    sold_out = [item(1, "A1", product_stripe_id="prod_a1")]
    with pytest.raises(StockError) as exc:
        await cart.validate_quantities_in_stock(
            sold_out, {"a1": StockItem(product_reference="A1", quantity=0)}
        )
    assert exc.value.message == "La référence A1 n'est plus en stock."

    with pytest.raises(StockError) as exc:
        await cart.validate_quantities_in_stock(sold_out, {"a1": None})
    assert exc.value.message == (
        "Les articles A1 ne sont plus disponibles. Veuillez les retirer de votre panier."
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_items_without_stripe_product_are_not_checked(cart, backend):
    await cart.validate_quantities_in_stock([item(1, "Libre", quantity=50)])

    assert backend.requests == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_validation_looks_up_unknown_references(cart, backend):
    wire_stock(backend, {"A1": 3})

    await cart.validate_quantities_in_stock(
        [item(1, "a1", quantity=3, product_stripe_id="prod_a1")]
    )

    assert cart.stock["a1"].quantity == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stock_lookup_runs_at_most_four_requests(cart, backend):
    in_flight = 0
    peak = 0

    async def search(request):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return 200, {"items": [stock_hit(request.url.params["q"], 2)]}

    backend.route("GET", "/api/stores/boutique-lina/stock/search", search)
    refs = [f"REF{i}" for i in range(10)]

    snapshot = await cart.fetch_stock_snapshot(refs + ["ref0", " REF1 "])

    assert peak == 4
    assert len(backend.requests) == 10
    assert sorted(snapshot) == sorted(ref.lower() for ref in refs)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stock_lookup_retries_once_on_http_error(cart, backend, monkeypatch):
    monkeypatch.setattr(cart_module, "STOCK_RETRY_DELAY_SECONDS", 0)
    backend.route(
        "GET",
        "/api/stores/boutique-lina/stock/search",
        (503, {"error": "indisponible"}),
        (200, {"items": [stock_hit("A1", 4)]}),
    )

    snapshot = await cart.fetch_stock_snapshot(["A1"])

    assert snapshot["a1"].quantity == 4
    assert len(backend.requests) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stock_lookup_requires_exact_reference(cart, backend):
    backend.route(
        "GET",
        "/api/stores/boutique-lina/stock/search",
        (200, {"items": [stock_hit("A10", 4), stock_hit("A11", 1)]}),
    )

    snapshot = await cart.fetch_stock_snapshot(["A1", "X"])

    assert snapshot == {"a1": None, "x": None}
    assert len(backend.requests) == 1


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refresh_flags_missing_and_regulation_lines(cart, backend):
    wire_customer(backend)
    wire_stock(backend, {"A1": 2})
    backend.route(
        "GET",
        "/api/carts/summary",
        (
            200,
            summary(
                {"id": 1, "product_reference": "A1", "value": 10, "product_stripe_id": "prod_a1"},
                {"id": 2, "product_reference": "Z9", "value": 5, "product_stripe_id": "prod_z9"},
                {"id": 3, "product_reference": "R", "description": "Régulation livraison", "value": 4},
            ),
        ),
    )

    refreshed = await cart.refresh()

    assert refreshed.missing_refs == ["Z9"]
    assert refreshed.regulation_refs == ["R"]
    assert [it.id for it in cart.items] == [1, 2]
    assert cart.total == 15
    assert cart.stripe_customer_id == "cus_1"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refresh_without_group_for_store_empties_cart(cart, backend):
    wire_customer(backend)
    backend.route("GET", "/api/carts/summary", (200, summary(store_id=99)))
    cart.replace_items([item(1, "A1")])

    refreshed = await cart.refresh()

    assert refreshed.items == []
    assert cart.items == []
    assert cart.total == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_customer(cart, backend):
    backend.route("GET", "/api/stripe/get-customer-details", (200, {"customer": None}))

    with pytest.raises(CheckoutError) as exc:
        await cart.refresh()

    assert exc.value.message == "Client Stripe introuvable"


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_existing_reference_bumps_quantity(cart, backend):
    cart.replace_items([item(5, "A1", quantity=1)])
    backend.route(
        "PUT",
        "/api/carts/5",
        (200, {"item": {"id": 5, "product_reference": "A1", "quantity": 2, "value": 10}}),
    )

    updated = await cart.add_item(" a1 ", 10, "Robe")

    assert updated.quantity == 2
    assert backend.body(backend.requests[0]) == {"quantity": 2}
    assert backend.calls("POST", "/api/carts") == []
    assert cart.total == 20


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_new_reference(cart, backend):
    wire_customer(backend)
    backend.route(
        "POST",
        "/api/carts",
        (
            201,
            {"item": {"id": 9, "store_id": 1, "product_reference": "B2", "value": 25, "quantity": 1}},
        ),
    )

    created = await cart.add_item("B2", 25, "Jupe", weight=0.3)

    body = backend.body(backend.calls("POST", "/api/carts")[0])
    assert body["customer_stripe_id"] == "cus_1"
    assert body["weight"] == 0.3
    assert "payment_id" not in body
    assert created.id == 9
    assert cart.find("b2") is not None
    assert cart.total == 25


@pytest.mark.asyncio
@pytest.mark.unit
async def test_add_conflict_surfaces_server_message(cart, backend):
    wire_customer(backend)
    message = "Cette référence est déjà réservée par un autre client"
    backend.route("POST", "/api/carts", (409, {"message": message}))

    with pytest.raises(ConflictError) as exc:
        await cart.add_item("A1", 10, "Robe")

    assert exc.value.message == message
    assert cart.items == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_regulation_reference_is_refused(cart, backend):
    with pytest.raises(CheckoutError) as exc:
        await cart.add_item("REG", 4, "regulation livraison")

    assert exc.value.message == "Référence interdite"
    assert backend.requests == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_sold_out_stock_item_cannot_be_added(cart, backend):
    with pytest.raises(StockError):
        await cart.add_stock_item(StockItem(product_reference="A1", quantity=0))

    assert backend.requests == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_quantity_update_restores_confirmed_quantity(cart, backend):
    cart.replace_items([item(5, "A1", quantity=1, value=10)])
    backend.route("PUT", "/api/carts/5", (500, {"error": "Erreur serveur"}))

    with pytest.raises(ApiError):
        await cart.update_quantity(5, 3)

    assert cart.items[0].quantity == 1
    assert cart.total == 10


@pytest.mark.asyncio
@pytest.mark.unit
async def test_older_failed_update_keeps_newer_pending_quantity(cart, backend):
    cart.replace_items([item(5, "A1", quantity=1, value=10)])
    gates = {2: asyncio.Event(), 3: asyncio.Event()}

    async def put(request):
        quantity = backend.body(request)["quantity"]
        await gates[quantity].wait()
        if quantity == 2:
            return 500, {"error": "Erreur serveur"}
        return 200, {"item": {"id": 5, "product_reference": "A1", "quantity": 3, "value": 10}}

    backend.route("PUT", "/api/carts/5", put)

    older = asyncio.create_task(cart.update_quantity(5, 2))
    await asyncio.sleep(0)
    newer = asyncio.create_task(cart.update_quantity(5, 3))
    await asyncio.sleep(0)

    gates[2].set()
    with pytest.raises(ApiError):
        await older

    assert cart.items[0].quantity == 3

    gates[3].set()
    confirmed = await newer

    assert confirmed.quantity == 3
    assert cart.items[0].quantity == 3
    assert cart.total == 30


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_removal_puts_item_back_in_place(cart, backend):
    cart.replace_items([item(5, "A1"), item(6, "B2", value=25)])
    backend.route("DELETE", "/api/carts", (500, {"error": "Erreur serveur"}))

    with pytest.raises(ApiError):
        await cart.remove_item(5)

    assert [it.id for it in cart.items] == [5, 6]
    assert cart.total == 35


@pytest.mark.asyncio
@pytest.mark.unit
async def test_removal(cart, backend):
    cart.replace_items([item(5, "A1"), item(6, "B2", value=25)])
    backend.route("DELETE", "/api/carts", (200, {"success": True}))

    await cart.remove_item(5)

    assert backend.body(backend.requests[0]) == {"id": 5}
    assert [it.id for it in cart.items] == [6]
    assert cart.total == 25


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_item_cannot_be_updated(cart):
    with pytest.raises(CartConsistencyError):
        await cart.update_quantity(42, 2)


# ---------------------------------------------------------------------------
# Pre-payment verification
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_verify_rejects_duplicate_references(cart, backend):
    wire_customer(backend)
    wire_stock(backend, {})
    backend.route(
        "GET",
        "/api/carts/summary",
        (
            200,
            summary(
                {"id": 1, "product_reference": "A1", "value": 10},
                {"id": 2, "product_reference": "a1", "value": 10},
            ),
        ),
    )

    with pytest.raises(CartConsistencyError) as exc:
        await cart.verify_before_payment([])

    assert exc.value.message.startswith(
        "Vous avez la même référence plusieurs fois dans le panier."
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_verify_rejects_items_removed_server_side(cart, backend):
    wire_customer(backend)
    wire_stock(backend, {})
    backend.route(
        "GET", "/api/carts/summary", (200, summary({"id": 1, "product_reference": "A1"}))
    )

    with pytest.raises(CartConsistencyError) as exc:
        await cart.verify_before_payment([item(1, "A1"), item(2, "B2")])

    assert "B2" in exc.value.message


@pytest.mark.asyncio
@pytest.mark.unit
async def test_verify_rejects_empty_cart(cart, backend):
    wire_customer(backend)
    backend.route("GET", "/api/carts/summary", (200, summary()))

    with pytest.raises(CartConsistencyError) as exc:
        await cart.verify_before_payment([])

    assert exc.value.message == "Votre panier est vide"
