import inspect
import json
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from services.checkout_service.client import ClientConfig, PayliveClient
from services.checkout_service.schemas import Store


class FakeBackend:
    """
    Paylive backend double with canned replies keyed by (method, path).

    A reply is a ``(status, json)`` tuple, an ``httpx.Response`` or a callable
    taking the request and returning one of those (it may be async or raise).
    When a route holds several replies they are used in order and the last
    one is repeated.
    """

    BASE_URL = "http://paylive.test"

    def __init__(self):
        self.routes: dict = {}
        self.requests: list[httpx.Request] = []

    def route(self, method: str, path: str, *replies) -> None:
        self.routes[(method, path)] = list(replies)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            raise AssertionError(f"Unexpected {request.method} {request.url.path}")

        replies = self.routes[key]
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if callable(reply):
            reply = reply(request)
            if inspect.isawaitable(reply):
                reply = await reply
        if isinstance(reply, httpx.Response):
            return reply
        status, body = reply
        return httpx.Response(status, json=body)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def body(request: httpx.Request):
        return json.loads(request.content or b"null")

    def client(self, **kwargs) -> PayliveClient:
        return PayliveClient(
            ClientConfig(base_url=self.BASE_URL),
            transport=httpx.MockTransport(self.handle),
            **kwargs,
        )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def paylive(backend) -> AsyncGenerator[PayliveClient, None]:
    client = backend.client()
    yield client
    await client.aclose()


@pytest.fixture
def store() -> Store:
    return Store(
        id=1,
        name="Boutique Lina",
        slug="boutique-lina",
        address={
            "line1": "12 rue des Lilas",
            "city": "Lyon",
            "postal_code": "69003",
            "country": "FR",
        },
    )


@pytest.fixture
def notifications() -> list:
    return []


@pytest.fixture
def notify(notifications):
    def _notify(message: str, level: str) -> None:
        notifications.append((level, message))

    return _notify
