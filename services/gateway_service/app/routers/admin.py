from typing import Optional

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Depends, HTTPException, Request
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.emails.prospect import send_prospect_email
from libs.common.logging import get_logger
from libs.common.rate_limit import email_limit
from pydantic import BaseModel

router = APIRouter(tags=["admin"])
logger = get_logger(__name__)


class ProspectRequest(BaseModel):
    email: Optional[str] = None


@router.post("/prospect")
@email_limit
async def send_prospect(
    request: Request,
    payload: ProspectRequest,
    current_user: AuthUser = Depends(get_current_user),
):
    """Send the prospecting email to a live seller (authenticated users only)."""
    try:
        to_email = validate_email(
            (payload.email or "").strip(), check_deliverability=False
        ).normalized
    except EmailNotValidError:
        raise HTTPException(status_code=400, detail="Email invalide")

    logger.info(f"Prospect email requested by {current_user.user_id} for {to_email}")
    sent = await send_prospect_email(to_email)
    if not sent:
        raise HTTPException(status_code=500, detail="Erreur lors de l'envoi de l'email")
    return {"success": True}
