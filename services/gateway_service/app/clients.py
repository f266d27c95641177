"""HTTP clients for the upstream APIs the gateway fronts (Boxtal, INSEE, BCE)."""
import base64
import time
from typing import Any, Dict, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger, get_request_id
from libs.common.middleware import REQUEST_ID_HEADER

settings = get_settings()
logger = get_logger(__name__)


class UpstreamError(Exception):
    """Raised when an upstream API cannot be reached or refuses a call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UpstreamClient:
    """Base client for making HTTP requests to an upstream API.

    Responses are returned as-is so routes can pass upstream statuses through.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        headers = dict(headers or {})
        request_id = get_request_id()
        if request_id:
            headers.setdefault(REQUEST_ID_HEADER, request_id)
        return headers

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Make GET request to the upstream API."""
        async with self._client() as client:
            return await client.get(
                f"{self.base_url}{path}", params=params, headers=self._headers(headers)
            )

    async def post(
        self,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Make POST request to an absolute URL or a path on the upstream API."""
        if not url.startswith("http"):
            url = f"{self.base_url}{url}"
        async with self._client() as client:
            return await client.post(url, json=json, headers=self._headers(headers))


class BoxtalClient(UpstreamClient):
    """Boxtal API client holding a cached OAuth access token."""

    def __init__(
        self,
        base_url: str,
        auth_url: str,
        access_key: str,
        secret_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport)
        self.auth_url = auth_url
        self.access_key = access_key
        self.secret_key = secret_key
        self._token: Optional[str] = None
        self._token_expiry: float = 0.0

    @property
    def expires_in(self) -> int:
        """Seconds left before the cached token expires."""
        return max(int(self._token_expiry - time.time()), 0)

    async def get_token(self) -> str:
        """Return the cached token, requesting a new one once it has expired."""
        if self._token and time.time() < self._token_expiry:
            return self._token

        credentials = base64.b64encode(
            f"{self.access_key}:{self.secret_key}".encode()
        ).decode()
        try:
            response = await self.post(
                self.auth_url,
                headers={
                    "Authorization": f"Basic {credentials}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Unable to refresh Boxtal token: {e}")

        if not response.is_success:
            logger.error(f"Boxtal token refresh failed: {response.status_code} {response.text}")
            raise UpstreamError(
                f"Failed to refresh Boxtal token: {response.text}", response.status_code
            )

        data = response.json()
        self._token = data["accessToken"]
        self._token_expiry = time.time() + float(data.get("expiresIn") or 0)
        logger.info("New Boxtal token obtained")
        return self._token

    async def parcel_points(self, query: Dict[str, Any]) -> Any:
        """Search parcel points; ``query`` keys are sent as query parameters."""
        token = await self.get_token()
        params = {
            key: _query_value(value) for key, value in query.items() if value is not None
        }
        try:
            response = await self.get(
                "/shipping/v3.1/parcel-point",
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"API Boxtal error: {e}")

        if not response.is_success:
            logger.error(f"Boxtal parcel point error: {response.status_code} {response.text}")
            raise UpstreamError(f"API Boxtal error: {response.status_code}", response.status_code)
        return response.json()


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


# Client instances
boxtal_client = BoxtalClient(
    settings.BOXTAL_API_URL,
    auth_url=settings.BOXTAL_AUTH_URL,
    access_key=settings.BOXTAL_ACCESS_KEY,
    secret_key=settings.BOXTAL_SECRET_KEY,
    timeout=settings.HTTP_TIMEOUT_SECONDS,
)
insee_client = UpstreamClient(settings.INSEE_API_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)
bce_client = UpstreamClient(settings.BCE_API_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)
