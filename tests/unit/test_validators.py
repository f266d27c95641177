"""Unit tests for input checks (regulation lines, promo codes, phones)."""

import pytest
from services.checkout_service.exceptions import PromoCodeError
from services.checkout_service.validators import (
    expected_phone_country,
    is_delivery_regulation_text,
    normalise_phone,
    normalise_promo_code,
    validate_phone,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    "text,expected",
    [
        ("Régulation  livraison", True),
        ("REGULARISATION LIVRAISON 4,50€", True),
        ("frais de regulation livraison", True),
        ("livraison offerte", False),
        ("Robe regulation", False),
        (None, False),
    ],
)
def test_is_delivery_regulation_text(text, expected):
    assert is_delivery_regulation_text(text) is expected


@pytest.mark.unit
def test_promo_code_is_upper_cased():
    assert normalise_promo_code(" summer_10 ") == "SUMMER_10"
    assert normalise_promo_code("paylive-bienvenue") == "PAYLIVE-BIENVENUE"


@pytest.mark.unit
def test_credit_prefix_is_reserved():
    with pytest.raises(PromoCodeError) as exc:
        normalise_promo_code("credit-1200")
    assert exc.value.message == "Ce préfixe est réservé."


@pytest.mark.unit
def test_malformed_promo_code_is_refused():
    with pytest.raises(PromoCodeError) as exc:
        normalise_promo_code("promo 10%")
    assert exc.value.message == "Code promo invalide."


@pytest.mark.unit
@pytest.mark.parametrize(
    "phone,country,expected",
    [
        ("06 12 34 56 78", "FR", "+33612345678"),
        ("06.12.34.56.78", "fr", "+33612345678"),
        ("+33 6 12 34 56 78", "FR", "+33612345678"),
        ("0033612345678", "FR", "+33612345678"),
        ("+32 470 12 34 56", "BE", "+32470123456"),
        ("02 512 34 56", "BE", "+3225123456"),
        ("079 123 45 67", "CH", "+41791234567"),
        ("+33612345678", "BE", None),
        ("612345678", "FR", "+33612345678"),
        ("07 00 00 00 00", "FR", None),
        ("+41 79 123 45 67", "FR", None),
        ("06 12 34", "FR", None),
        ("", "FR", None),
        ("0612345678", "DE", None),
    ],
)
def test_normalise_phone(phone, country, expected):
    assert normalise_phone(phone, country) == expected


@pytest.mark.unit
def test_validate_phone_and_expected_country():
    assert validate_phone("0612345678", "FR") is True
    assert validate_phone("12345", "FR") is False
    assert expected_phone_country("be").label == "Belgique"
    assert expected_phone_country("DE") is None
