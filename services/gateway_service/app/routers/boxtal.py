from typing import Any, Dict, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from libs.common.logging import get_logger
from services.gateway_service.app import clients

router = APIRouter(tags=["boxtal"])
logger = get_logger(__name__)


@router.post("/auth")
async def boxtal_auth():
    """Return the current Boxtal access token and its remaining lifetime."""
    boxtal = clients.boxtal_client
    try:
        token = await boxtal.get_token()
    except clients.UpstreamError as e:
        logger.error(f"Error in /api/boxtal/auth: {e.message}")
        return JSONResponse(
            status_code=500, content={"error": "Failed to generate Boxtal token"}
        )
    return {
        "access_token": token,
        "expires_in": boxtal.expires_in,
        "token_type": "Bearer",
    }


@router.post("/parcel-points")
async def parcel_points(payload: Optional[Dict[str, Any]] = None):
    """Search Boxtal parcel points around an address.

    The JSON body is forwarded as query parameters (null values dropped).
    """
    try:
        return await clients.boxtal_client.parcel_points(payload or {})
    except clients.UpstreamError as e:
        logger.error(f"Error in /api/boxtal/parcel-points: {e.message}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to get parcel points", "message": e.message},
        )
