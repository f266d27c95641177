"""Static shipping configuration: carriers, prices per weight bracket and
country gating.

Prices are in euros, TTC, as displayed to the buyer.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

WEIGHT_BRACKETS: List[tuple] = [
    ("250g", 0.25),
    ("500g", 0.5),
    ("1kg", 1),
    ("2kg", 2),
    ("3kg", 3),
    ("5kg", 5),
    ("7kg", 7),
    ("10kg", 10),
    ("15kg", 15),
    ("20kg", 20),
    ("30kg", 30),
]
DEFAULT_WEIGHT_BRACKET = "250g"

SEARCH_NETWORKS = "SOGP,MONR,CHRP,COPR,UPSE,DHLE"
EXCLUDED_NETWORKS = frozenset({"UPSE", "DHLE"})

STORE_PICKUP_NETWORK = "STORE_PICKUP"


@dataclass(frozen=True)
class CarrierOption:
    """A pickup network or a home-delivery option."""

    key: str
    name: str
    delay: str
    prices: Dict[str, float] = field(default_factory=dict)

    def price_for(self, bracket: str) -> float:
        return self.prices.get(bracket, 0.0)


def _prices(*values: float) -> Dict[str, float]:
    return {label: value for (label, _), value in zip(WEIGHT_BRACKETS, values)}


PICKUP_NETWORKS: Dict[str, CarrierOption] = {
    "SOGP": CarrierOption(
        "SOGP",
        "Relais Colis",
        "3 à 5 jours",
        _prices(3.63, 3.63, 3.71, 5.24, 5.45, 7.67, 9.56, 10.96, 13.92, 16.32, 16.32),
    ),
    "MONR": CarrierOption(
        "MONR",
        "Mondial Relay",
        "3 à 4 jours",
        _prices(3.18, 3.26, 3.88, 5.0, 5.61, 9.1, 10.49, 10.92, 16.99, 16.99, 24.57),
    ),
    "CHRP": CarrierOption(
        "CHRP",
        "Chronopost",
        "2 à 4 jours",
        _prices(2.99, 3.1, 3.66, 4.63, 5.1, 7.21, 8.49, 10.42, 13.64, 16.86, 16.86),
    ),
    "COPR": CarrierOption(
        "COPR",
        "Colis Privé",
        "6 jours",
        _prices(3.54, 3.54, 4.09, 5.35, 5.58, 8.36, 10.33, 10.33, 12.55, 16.52, 16.52),
    ),
}

HOME_OPTIONS: Dict[str, CarrierOption] = {
    "COPR_HOME": CarrierOption(
        "COPR_HOME",
        "Colis Privé - Domicile Sans Signature",
        "6 jours",
        _prices(5.3, 6.08, 7.9, 8.84, 9.83, 11.83, 13.72, 16.61, 22.83, 29.67, 29.67),
    ),
    "COLI_HOME": CarrierOption(
        "COLI_HOME",
        "Colissimo - Domicile Sans Signature",
        "48h",
        _prices(7.24, 8.15, 9.87, 11.07, 12.15, 14.3, 16.01, 19.19, 24.0, 29.15, 39.09),
    ),
    "MONR_HOME": CarrierOption(
        "MONR_HOME",
        "Mondial Relay - Domicile",
        "5 jours",
        _prices(6.27, 6.83, 7.66, 8.91, 10.5, 12.61, 13.67, 16.81, 21.02, 34.7, 34.7),
    ),
    "CHRP_HOME": CarrierOption(
        "CHRP_HOME",
        "Chronopost - International Classic",
        "3 à 5 jours",
        _prices(14.9, 15.9, 17.5, 19.9, 22.5, 26.9, 31.5, 36.9, 45.9, 54.9, 69.9),
    ),
}

# (country, network) -> shipping offer code
PICKUP_OFFER_CODES: Dict[str, Dict[str, str]] = {
    "FR": {
        "SOGP": "SOGP-RelaisColis",
        "MONR": "MONR-CpourToi",
        "CHRP": "CHRP-Chrono2ShopDirect",
        "COPR": "COPR-CoprRelaisRelaisNat",
    },
    "BE": {
        "MONR": "MONR-CpourToiEurope",
        "CHRP": "CHRP-Chrono2ShopEurope",
    },
    "CH": {},
}

HOME_OFFER_CODES: Dict[str, Dict[str, str]] = {
    "FR": {
        "COPR_HOME": "COPR-CoprRelaisDomicileNat",
        "COLI_HOME": "POFR-ColissimoAccess",
        "MONR_HOME": "MONR-DomicileFrance",
    },
    "BE": {
        "MONR_HOME": "MONR-DomicileEurope",
    },
    "CH": {
        "CHRP_HOME": "CHRP-ChronoInternationalClassic",
    },
}

SUPPORTED_COUNTRIES = tuple(PICKUP_OFFER_CODES)


def normalise_country(country: Optional[str]) -> str:
    return (country or "").strip().upper() or "FR"


def pickup_networks_for(country: Optional[str]) -> List[str]:
    return list(PICKUP_OFFER_CODES.get(normalise_country(country), {}))


def home_options_for(country: Optional[str]) -> List[str]:
    return list(HOME_OFFER_CODES.get(normalise_country(country), {}))


def has_pickup_networks(country: Optional[str]) -> bool:
    return bool(pickup_networks_for(country))


def pickup_offer_code(country: Optional[str], network: str) -> Optional[str]:
    return PICKUP_OFFER_CODES.get(normalise_country(country), {}).get(network)


def home_offer_code(country: Optional[str], option_key: str) -> Optional[str]:
    return HOME_OFFER_CODES.get(normalise_country(country), {}).get(option_key)


def home_option_for_offer_code(country: Optional[str], offer_code: str) -> Optional[str]:
    """Reverse lookup used to preselect a saved home-delivery network."""
    for key, code in HOME_OFFER_CODES.get(normalise_country(country), {}).items():
        if code == offer_code:
            return key
    return None


def weight_bracket(weight_kg: Optional[float]) -> str:
    """Smallest bracket that can carry ``weight_kg``; heavier parcels stay at 30kg."""
    if not weight_kg or weight_kg <= 0:
        return DEFAULT_WEIGHT_BRACKET
    for label, limit in WEIGHT_BRACKETS:
        if weight_kg <= limit:
            return label
    return WEIGHT_BRACKETS[-1][0]


def _option(network: str, home: bool) -> Optional[CarrierOption]:
    if home:
        key = network if network.endswith("_HOME") else f"{network}_HOME"
        return HOME_OPTIONS.get(key)
    return PICKUP_NETWORKS.get(network)


def delivery_price(network: str, bracket: str, home: bool = False) -> float:
    option = _option(network, home)
    return option.price_for(bracket) if option else 0.0


def delivery_delay(network: str, home: bool = False) -> str:
    option = _option(network, home)
    return option.delay if option else ""
