"""
Delivery method reconciler.

Keeps the delivery type, the selected parcel point or home-delivery option and
the shipping offer code consistent with the buyer's address and country.
A parcel point and a home option are never selected at the same time.
"""

from typing import List, Optional, Protocol

from libs.common.logging import get_logger
from services.checkout_service.client import PayliveClient
from services.checkout_service.exceptions import ApiError, CheckoutError
from services.checkout_service.geocoding import Coordinates
from services.checkout_service.models import (
    DeliveryMethod,
    DeliveryType,
    MapMode,
    NetworkFilter,
)
from services.checkout_service.schemas import Address, ParcelPoint, ParcelPointHit
from services.checkout_service import shipping

logger = get_logger(__name__)


class Geocoder(Protocol):
    async def geocode(self, address: Address) -> Optional[Coordinates]: ...


class DeliveryReconciler:
    def __init__(
        self,
        client: PayliveClient,
        *,
        mode: MapMode = MapMode.DELIVERY,
        default_delivery_method: DeliveryMethod = DeliveryMethod.HOME_DELIVERY,
        initial_delivery_network: Optional[str] = None,
        geocoder: Optional[Geocoder] = None,
    ):
        self.client = client
        self.mode = mode
        self.geocoder = geocoder
        self.initial_delivery_network = (initial_delivery_network or "").strip() or None

        self.address: Optional[Address] = None
        self.country = "FR"
        self.delivery_type = (
            DeliveryType.PICKUP
            if default_delivery_method == DeliveryMethod.PICKUP_POINT
            else DeliveryType.HOME
        )
        self.selected_parcel_point: Optional[ParcelPoint] = None
        self.selected_home_option: Optional[str] = None
        self.shipping_offer_code: Optional[str] = None
        self.network_filter = NetworkFilter.ALL
        self.weight_bracket = shipping.DEFAULT_WEIGHT_BRACKET

        self.parcel_points: List[ParcelPointHit] = []
        self.coordinates: Optional[Coordinates] = None
        self.needs_refresh = False
        self.loading = False
        self.error: Optional[str] = None

        self._last_line1: Optional[str] = None
        self._apply_country(None)

    # ------------------------------------------------------------------
    # Address
    # ------------------------------------------------------------------

    @property
    def pickup_allowed(self) -> bool:
        return shipping.has_pickup_networks(self.country)

    async def set_address(self, address: Optional[Address]) -> None:
        """Track a new buyer address.

        Parcel points are fetched only when ``line1`` changes: immediately in
        return mode, otherwise on the next explicit ``refresh()``.
        """
        self.address = address
        self._apply_country(address.country if address else None)

        line1 = (address.line1 or "").strip() if address else ""
        if not line1:
            self._last_line1 = None
            self.parcel_points = []
            self.coordinates = None
            self.error = None
            self.needs_refresh = False
            return

        if line1 == self._last_line1:
            return
        self._last_line1 = line1

        if self.mode == MapMode.RETURN:
            await self.refresh()
        else:
            self.needs_refresh = True

    def _apply_country(self, country: Optional[str]) -> None:
        self.country = shipping.normalise_country(country)

        if self.selected_home_option and not shipping.home_offer_code(
            self.country, self.selected_home_option
        ):
            self.selected_home_option = None
            self.shipping_offer_code = None

        if not self.pickup_allowed and self.delivery_type == DeliveryType.PICKUP:
            logger.info(f"No pickup network for {self.country}, switching to home delivery")
            self.set_delivery_type(DeliveryType.HOME)

        self._preselect_initial_network()

    def _preselect_initial_network(self) -> None:
        if not self.initial_delivery_network or self.selected_home_option:
            return
        if self.delivery_type != DeliveryType.HOME:
            return
        key = shipping.home_option_for_offer_code(self.country, self.initial_delivery_network)
        if key:
            self.selected_home_option = key
            self.shipping_offer_code = self.initial_delivery_network

    # ------------------------------------------------------------------
    # Parcel points
    # ------------------------------------------------------------------

    async def refresh(self) -> List[ParcelPointHit]:
        """Geocode the address and search parcel points around it. Never retries."""
        address = self.address
        if not address or not address.is_complete:
            return self.parcel_points

        self.loading = True
        self.error = None
        self.needs_refresh = False
        try:
            if self.geocoder is not None:
                coordinates = await self.geocoder.geocode(address)
                if coordinates:
                    self.coordinates = coordinates
            self.parcel_points = await self.client.search_parcel_points(address)
        except ApiError as exc:
            logger.warning(f"Parcel point search failed: {exc.message}")
            self.error = exc.message
        finally:
            self.loading = False
        return self.parcel_points

    @property
    def filtered_parcel_points(self) -> List[ParcelPointHit]:
        hits = []
        for hit in self.parcel_points:
            network = hit.parcel_point.network
            if network in shipping.EXCLUDED_NETWORKS:
                continue
            if self.network_filter != NetworkFilter.ALL and network != self.network_filter.value:
                continue
            hits.append(hit)
        return hits

    def set_network_filter(self, network_filter: NetworkFilter) -> None:
        self.network_filter = NetworkFilter(network_filter)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_parcel_point(self, point: ParcelPoint) -> ParcelPoint:
        if not self.pickup_allowed:
            raise CheckoutError("Aucun point relais n'est disponible pour ce pays.")

        offer_code = shipping.pickup_offer_code(self.country, point.network)
        self.selected_parcel_point = point.model_copy(update={"shipping_offer_code": offer_code})
        self.shipping_offer_code = offer_code
        self.selected_home_option = None
        self.delivery_type = DeliveryType.PICKUP
        return self.selected_parcel_point

    def select_home_option(self, key: str) -> str:
        offer_code = shipping.home_offer_code(self.country, key)
        if not offer_code:
            raise CheckoutError("Cette option de livraison n'est pas disponible pour ce pays.")

        self.selected_home_option = key
        self.shipping_offer_code = offer_code
        self.selected_parcel_point = None
        self.delivery_type = DeliveryType.HOME
        return offer_code

    def set_delivery_type(self, delivery_type: DeliveryType) -> DeliveryType:
        delivery_type = DeliveryType(delivery_type)

        if delivery_type == DeliveryType.PICKUP and not self.pickup_allowed:
            delivery_type = DeliveryType.HOME

        if delivery_type == DeliveryType.HOME:
            self.selected_parcel_point = None
            self.shipping_offer_code = (
                shipping.home_offer_code(self.country, self.selected_home_option)
                if self.selected_home_option
                else None
            )
        else:
            self.selected_home_option = None
            self.shipping_offer_code = (
                self.selected_parcel_point.shipping_offer_code
                if self.selected_parcel_point
                else None
            )

        self.delivery_type = delivery_type
        return delivery_type

    def reset(self, delivery_type: DeliveryType) -> None:
        """Drop every selection and start over on ``delivery_type``."""
        self.selected_parcel_point = None
        self.selected_home_option = None
        self.shipping_offer_code = None
        self.set_delivery_type(delivery_type)

    def restore_saved_network(self, offer_code: str) -> None:
        """Re-apply a delivery network saved on the customer."""
        offer_code = (offer_code or "").strip()
        if not offer_code:
            return
        key = shipping.home_option_for_offer_code(self.country, offer_code)
        if key and self.delivery_type == DeliveryType.HOME:
            self.select_home_option(key)
        else:
            self.shipping_offer_code = offer_code

    # ------------------------------------------------------------------
    # Cost / completeness
    # ------------------------------------------------------------------

    def set_weight(self, weight_kg: Optional[float]) -> str:
        self.weight_bracket = shipping.weight_bracket(weight_kg)
        return self.weight_bracket

    @property
    def delivery_method(self) -> DeliveryMethod:
        if self.delivery_type == DeliveryType.PICKUP:
            return DeliveryMethod.PICKUP_POINT
        return DeliveryMethod.HOME_DELIVERY

    @property
    def delivery_cost(self) -> Optional[float]:
        if self.delivery_type == DeliveryType.PICKUP and self.selected_parcel_point:
            return shipping.delivery_price(
                self.selected_parcel_point.network, self.weight_bracket
            )
        if self.delivery_type == DeliveryType.HOME and self.selected_home_option:
            return shipping.delivery_price(
                self.selected_home_option, self.weight_bracket, home=True
            )
        return None

    def is_complete_for(
        self,
        method: DeliveryMethod,
        address: Optional[Address],
        store_address: Optional[Address],
    ) -> bool:
        if method == DeliveryMethod.HOME_DELIVERY:
            return bool(address and address.is_complete and self.shipping_offer_code)
        if method == DeliveryMethod.PICKUP_POINT:
            return self.selected_parcel_point is not None
        if method == DeliveryMethod.STORE_PICKUP:
            return store_address is not None
        return False
