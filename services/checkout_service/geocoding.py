"""Nominatim geocoding, used to centre parcel point searches."""

from typing import Optional, Tuple

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.checkout_service.schemas import Address

logger = get_logger(__name__)

Coordinates = Tuple[float, float]


class NominatimGeocoder:
    """Resolve an address to ``(latitude, longitude)``.

    Failures are logged and reported as "no coordinates": the parcel point
    search does not depend on them.
    """

    def __init__(
        self,
        base_url: str = None,
        user_agent: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.NOMINATIM_URL).rstrip("/")
        self.user_agent = user_agent or settings.NOMINATIM_USER_AGENT
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    async def geocode(self, address: Address) -> Optional[Coordinates]:
        query = address.one_line()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(
                    f"{self.base_url}/search",
                    params={"format": "json", "q": query, "limit": 1},
                    headers={"User-Agent": self.user_agent},
                )
            if not response.is_success:
                logger.warning(f"Geocoding failed ({response.status_code}) for {query!r}")
                return None
            results = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"Geocoding error for {query!r}: {exc}")
            return None

        if not results:
            return None
        try:
            return float(results[0]["lat"]), float(results[0]["lon"])
        except (KeyError, TypeError, ValueError):
            return None
