from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from libs.common.config import get_settings
from libs.common.logging import get_logger
from postgrest.exceptions import APIError
from pydantic import BaseModel, field_validator
from supabase import Client, create_client

router = APIRouter(tags=["forms"])
logger = get_logger(__name__)

VOLUME_BANDS = {"0-20", "20-50", "50-100", "100+"}


@lru_cache
def get_supabase() -> Optional[Client]:
    """Return the Supabase client, or None when it is not configured."""
    settings = get_settings()
    key = settings.SUPABASE_SERVICE_ROLE_KEY or settings.SUPABASE_ANON_KEY
    if not settings.SUPABASE_URL or not key:
        return None
    return create_client(settings.SUPABASE_URL, key)


class FormResponseIn(BaseModel):
    """Seller questionnaire answers. Values of the wrong type are dropped."""

    email: Optional[str] = None
    activities: List[str] = []
    volume_band: Optional[str] = None
    top_priority: Optional[str] = None
    obs_used: Optional[bool] = None
    answers: Dict[str, Any] = {}

    @field_validator("email", "volume_band", "top_priority", mode="before")
    @classmethod
    def only_strings(cls, v):
        return v if isinstance(v, str) else None

    @field_validator("activities", mode="before")
    @classmethod
    def only_string_items(cls, v):
        if not isinstance(v, list):
            return []
        return [x for x in v if isinstance(x, str)]

    @field_validator("obs_used", mode="before")
    @classmethod
    def only_booleans(cls, v):
        return v if isinstance(v, bool) else None

    @field_validator("answers", mode="before")
    @classmethod
    def only_objects(cls, v):
        return v if isinstance(v, dict) else {}


@router.post("/responses", status_code=status.HTTP_201_CREATED)
async def create_form_response(
    payload: FormResponseIn,
    supabase: Optional[Client] = Depends(get_supabase),
):
    """Store a questionnaire response in ``form_responses``."""
    if supabase is None:
        raise HTTPException(status_code=500, detail="Database not configured")

    if payload.volume_band and payload.volume_band not in VOLUME_BANDS:
        raise HTTPException(status_code=400, detail="volume_band invalide")

    try:
        result = (
            supabase.table("form_responses")
            .insert(payload.model_dump())
            .execute()
        )
    except APIError as e:
        logger.error(f"Failed to store form response: {e.message}")
        raise HTTPException(status_code=500, detail=e.message or "Erreur interne")

    rows = result.data or []
    return {"success": True, "id": rows[0].get("id") if rows else None}
