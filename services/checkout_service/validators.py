"""Input checks shared by the cart and checkout flows."""

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

import phonenumbers
from services.checkout_service.exceptions import PromoCodeError

_REGULATION_RE = re.compile(r"\b(?:regulation|regularisation)\s+livraison\b", re.IGNORECASE)
_PROMO_CHARS_RE = re.compile(r"^[A-Z0-9_-]+$")

RESERVED_PROMO_PREFIX = "CREDIT-"
PAYLIVE_PROMO_PREFIX = "PAYLIVE-"


def is_delivery_regulation_text(text: object) -> bool:
    """True for "régulation livraison" lines, which can never be paid for."""
    decomposed = unicodedata.normalize("NFD", str(text or ""))
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return bool(_REGULATION_RE.search(stripped.lower().strip()))


def normalise_promo_code(code: str) -> str:
    """Upper-case a promotion code, refusing reserved or malformed ones."""
    normalised = (code or "").strip().upper()
    if normalised.startswith(RESERVED_PROMO_PREFIX):
        raise PromoCodeError("Ce préfixe est réservé.")
    if not normalised.startswith(PAYLIVE_PROMO_PREFIX) and not _PROMO_CHARS_RE.match(normalised):
        raise PromoCodeError("Code promo invalide.")
    return normalised


@dataclass(frozen=True)
class PhoneCountry:
    country: str
    label: str


PHONE_COUNTRIES = {
    "FR": PhoneCountry("FR", "France"),
    "BE": PhoneCountry("BE", "Belgique"),
    "CH": PhoneCountry("CH", "Suisse"),
}


def expected_phone_country(country: object) -> Optional[PhoneCountry]:
    return PHONE_COUNTRIES.get(str(country or "").strip().upper())


def normalise_phone(phone: object, country: object) -> Optional[str]:
    """
    Return ``phone`` in E.164 form (``+33612345678``) or None when it is not
    a valid number of ``country``'s numbering plan.

    National (``06 12 34 56 78``) and international (``+33 6...``,
    ``0033 6...``) notations are both accepted.
    """
    country_rule = expected_phone_country(country)
    raw = str(phone or "").strip()
    if not country_rule or not raw:
        return None

    try:
        parsed = phonenumbers.parse(raw, country_rule.country)
    except phonenumbers.NumberParseException:
        return None

    if not phonenumbers.is_valid_number_for_region(parsed, country_rule.country):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def validate_phone(phone: object, country: object) -> bool:
    return normalise_phone(phone, country) is not None
