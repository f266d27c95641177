import pytest
from services.gateway_service.app import clients
from services.gateway_service.app.tests.stubs import boxtal, make_response

TOKEN_PATH = "/iam/account-app/token"
PARCEL_POINT_PATH = "/shipping/v3.1/parcel-point"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_parcel_points_forward_body_as_query(client):
    content = {"content": [{"parcelPoint": {"code": "P1", "network": "MONR"}}]}
    clients.boxtal_client, transport = boxtal(
        {
            ("POST", TOKEN_PATH): make_response(200, {"accessToken": "tok", "expiresIn": 3600}),
            ("GET", PARCEL_POINT_PATH): make_response(200, content),
        }
    )
    body = {
        "street": "1 rue de Rivoli",
        "city": "Paris",
        "postalCode": "75001",
        "countryIsoCode": "FR",
        "searchNetworks": "MONR,CHRP",
        "number": None,
    }

    first = await client.post("/api/boxtal/parcel-points", json=body)
    second = await client.post("/api/boxtal/parcel-points", json=body)

    assert first.status_code == 200
    assert first.json() == content
    assert second.status_code == 200
    token_requests = [r for r in transport.requests if r.url.path == TOKEN_PATH]
    assert len(token_requests) == 1
    assert token_requests[0].headers["Authorization"] == "Basic YWNjZXNzOnNlY3JldA=="

    search = [r for r in transport.requests if r.url.path == PARCEL_POINT_PATH][0]
    assert search.headers["Authorization"] == "Bearer tok"
    assert search.url.params["postalCode"] == "75001"
    assert search.url.params["searchNetworks"] == "MONR,CHRP"
    assert "number" not in search.url.params


@pytest.mark.asyncio
@pytest.mark.integration
async def test_parcel_points_upstream_failure(client):
    clients.boxtal_client, _ = boxtal(
        {
            ("POST", TOKEN_PATH): make_response(200, {"accessToken": "tok", "expiresIn": 3600}),
            ("GET", PARCEL_POINT_PATH): make_response(503, text="unavailable"),
        }
    )

    response = await client.post("/api/boxtal/parcel-points", json={"city": "Paris"})

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to get parcel points",
        "message": "API Boxtal error: 503",
    }


@pytest.mark.asyncio
@pytest.mark.integration
async def test_auth_returns_token(client):
    clients.boxtal_client, _ = boxtal(
        {("POST", TOKEN_PATH): make_response(200, {"accessToken": "tok", "expiresIn": 3600})}
    )

    response = await client.post("/api/boxtal/auth")

    assert response.status_code == 200
    data = response.json()
    assert data["access_token"] == "tok"
    assert data["token_type"] == "Bearer"
    assert 3590 <= data["expires_in"] <= 3600


@pytest.mark.asyncio
@pytest.mark.integration
async def test_auth_failure(client):
    clients.boxtal_client, _ = boxtal(
        {("POST", TOKEN_PATH): make_response(401, {"message": "bad credentials"})}
    )

    response = await client.post("/api/boxtal/auth")

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to generate Boxtal token"}
