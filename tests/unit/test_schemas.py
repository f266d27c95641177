"""Unit tests for backend payload normalisation."""

import pytest
from services.checkout_service.models import DeliveryMethod
from services.checkout_service.schemas import (
    Address,
    CartItem,
    CheckoutSessionItem,
    CheckoutSessionRequest,
    CustomerData,
    OpenShipment,
    ParcelPoint,
    StockItem,
)


@pytest.mark.unit
def test_stock_item_from_search_hit():
    hit = {
        "stock": {
            "product_reference": " A1 ",
            "available_quantity": "3",
            "product_stripe_id": "prod_a1",
            "weight": "0.4",
        },
        "product": {"name": "Robe fleurie", "metadata": {"weight_kg": "0,5"}},
        "prices": [{"currency": "EUR", "unit_amount": 1250}],
    }

    item = StockItem.from_search_hit(hit)

    assert item.product_reference == "A1"
    assert item.ref_key == "a1"
    assert item.quantity == 3
    assert item.weight == 0.5
    assert item.unit_price == 12.5
    assert item.product_name == "Robe fleurie"


@pytest.mark.unit
def test_stock_item_without_quantity_or_product():
    item = StockItem.from_search_hit({"stock": {"product_reference": "B2", "weight": 1.2}})

    assert item.quantity is None
    assert item.weight == 1.2
    assert item.unit_price is None
    assert item.product_stripe_id is None


@pytest.mark.unit
def test_stock_item_price_skips_null_and_foreign_prices():
    hit = {
        "stock": {"product_reference": "C3"},
        "prices": [None, {"currency": "usd", "unit_amount": 900}, {"currency": "eur", "unit_amount": 750}],
    }

    assert StockItem.from_search_hit(hit).unit_price == 7.5


@pytest.mark.unit
def test_cart_item_normalises_loose_values():
    item = CartItem.model_validate(
        {
            "id": 4,
            "product_reference": " Ref-9 ",
            "value": "12.5",
            "quantity": "2.6",
            "payment_id": "",
            "product_stripe_id": "prod_9",
        }
    )

    assert item.product_reference == "Ref-9"
    assert item.quantity == 3
    assert item.line_total == 37.5
    assert item.payment_id is None
    assert item.has_stripe_product is True
    assert CartItem(id=5, product_reference="X", quantity=0).quantity == 1


@pytest.mark.unit
def test_parcel_point_opening_hours_and_wire_shape():
    point = ParcelPoint.model_validate(
        {
            "code": "MONR-0042",
            "name": "Tabac du Centre",
            "network": "MONR",
            "location": {
                "street": "3 place Bellecour",
                "city": "Lyon",
                "postalCode": "69002",
                "countryIsoCode": "FR",
                "position": {"latitude": "45.757", "longitude": 4.832},
            },
            "openingDays": {
                "MONDAY": [{"openingTime": "09:00", "closingTime": "18:00"}],
                "SATURDAY": [{"openingTime": "10:00", "closingTime": "12:00"}],
            },
        }
    )

    summary = point.opening_hours_summary()
    assert summary.startswith("Lun: 09:00-18:00, Mar: Fermé")
    assert summary.endswith("Sam: 10:00-12:00, Dim: Fermé")

    wire = point.to_wire()
    assert wire["location"]["postalCode"] == "69002"
    assert wire["location"]["position"] == {"latitude": 45.757, "longitude": 4.832}

    address = point.as_shipping_address()
    assert address.line1 == "3 place Bellecour"
    assert address.is_complete


@pytest.mark.unit
def test_customer_data_saved_delivery():
    customer = CustomerData.model_validate(
        {
            "id": "cus_1",
            "deliveryMethod": "pickup_point",
            "parcel_point": {"network": "MONR"},
            "metadata": {
                "delivery_network": " MONR-CpourToi ",
                "credit_balance": "1500",
            },
        }
    )

    assert customer.saved_delivery_method == DeliveryMethod.PICKUP_POINT
    assert customer.saved_delivery_network == "MONR-CpourToi"
    assert customer.parcel_point is None
    assert customer.credit_balance_cents == 1500


@pytest.mark.unit
def test_customer_data_unknown_delivery_method_falls_back_to_metadata():
    customer = CustomerData.model_validate(
        {
            "id": "cus_2",
            "delivery_method": "drone",
            "metadata": {"delivery_method": "home_delivery", "credit_balance": "abc"},
        }
    )

    assert customer.delivery_method is None
    assert customer.saved_delivery_method == DeliveryMethod.HOME_DELIVERY
    assert customer.credit_balance_cents == 0


@pytest.mark.unit
def test_open_shipment_row_id_must_be_positive():
    assert OpenShipment.model_validate({"id": "0", "payment_id": "pi_1"}).id is None
    assert OpenShipment.model_validate({"id": "12", "payment_id": " "}).payment_id is None


@pytest.mark.unit
def test_checkout_session_request_is_camel_cased_on_the_wire():
    request = CheckoutSessionRequest(
        amount=35.0,
        customer_name="Lina",
        customer_email="lina@example.com",
        store_name="Boutique Lina",
        items=[CheckoutSessionItem(reference="A1", price=10.0, quantity=1)],
        address=Address(line1="1 rue", city="Paris", postal_code="75001"),
        delivery_method=DeliveryMethod.HOME_DELIVERY,
        phone="+33612345678",
        cart_item_ids=[1],
        temp_credit_balance_cents=500,
    )

    wire = request.to_wire()

    assert wire["shippingHasBeenModified"] is False
    assert wire["openShipmentPaymentId"] == ""
    assert wire["customerEmail"] == "lina@example.com"
    assert wire["deliveryMethod"] == "home_delivery"
    assert wire["cartItemIds"] == [1]
    assert wire["tempCreditBalanceCents"] == 500
    assert wire["currency"] == "eur"
    assert wire["address"]["postal_code"] == "75001"
