import pytest
from postgrest.exceptions import APIError
from services.gateway_service.app.main import app
from services.gateway_service.app.routers.forms import get_supabase
from services.gateway_service.app.tests.stubs import StubSupabase


@pytest.mark.asyncio
@pytest.mark.integration
async def test_form_response_is_stored(client):
    supabase = StubSupabase(rows=[{"id": 42}])
    app.dependency_overrides[get_supabase] = lambda: supabase

    response = await client.post(
        "/api/forms/responses",
        json={
            "email": "vendeuse@example.com",
            "activities": ["vetements", 3, "bijoux"],
            "volume_band": "20-50",
            "top_priority": "paiement",
            "obs_used": "yes",
            "answers": {"q1": "TikTok"},
        },
    )

    assert response.status_code == 201
    assert response.json() == {"success": True, "id": 42}
    table, payload = supabase.inserted[0]
    assert table == "form_responses"
    assert payload == {
        "email": "vendeuse@example.com",
        "activities": ["vetements", "bijoux"],
        "volume_band": "20-50",
        "top_priority": "paiement",
        "obs_used": None,
        "answers": {"q1": "TikTok"},
    }


@pytest.mark.asyncio
@pytest.mark.integration
async def test_invalid_volume_band(client):
    supabase = StubSupabase()
    app.dependency_overrides[get_supabase] = lambda: supabase

    response = await client.post("/api/forms/responses", json={"volume_band": "1000+"})

    assert response.status_code == 400
    assert response.json() == {"error": "volume_band invalide"}
    assert supabase.inserted == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_database_not_configured(client):
    app.dependency_overrides[get_supabase] = lambda: None

    response = await client.post("/api/forms/responses", json={})

    assert response.status_code == 500
    assert response.json() == {"error": "Database not configured"}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_insert_error_is_reported(client):
    error = APIError({"message": "permission denied for table form_responses"})
    app.dependency_overrides[get_supabase] = lambda: StubSupabase(error=error)

    response = await client.post("/api/forms/responses", json={"email": "a@b.fr"})

    assert response.status_code == 500
    assert response.json() == {"error": "permission denied for table form_responses"}
