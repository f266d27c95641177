"""Business registry lookups: French SIRET (INSEE Sirene) and Belgian BCE numbers."""
import re

import httpx
from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.gateway_service.app import clients

router = APIRouter(tags=["registry"])
insee_router = APIRouter(tags=["registry"])
logger = get_logger(__name__)

SIRET_PATTERN = re.compile(r"^\d{14}$")
BCE_PATTERN = re.compile(r"^\d{10}$")


def normalise_siret(raw: str) -> str:
    """Strip whitespace; raise 400 unless 14 digits remain."""
    raw = (raw or "").strip()
    siret = re.sub(r"\s+", "", raw)
    if not SIRET_PATTERN.match(siret):
        raise HTTPException(
            status_code=400,
            detail={
                "header": {
                    "statut": 400,
                    "message": f"Erreur de format de siret ({raw}) - Format attendu : 14 chiffres",
                }
            },
        )
    return siret


def normalise_bce(raw: str) -> str:
    """Strip spaces, a ``BE`` prefix and dots; raise 400 unless 10 digits remain."""
    raw = (raw or "").strip()
    number = re.sub(r"\s+", "", raw)
    number = re.sub(r"^BE", "", number, flags=re.IGNORECASE).replace(".", "")
    if not BCE_PATTERN.match(number):
        raise HTTPException(
            status_code=400,
            detail={
                "header": {
                    "statut": 400,
                    "message": (
                        f"Erreur de format de BCE ({raw}) - Format attendu : "
                        "10 chiffres (ex: 0123.456.789 ou BE0123456789)"
                    ),
                }
            },
        )
    return number


def registry_response(response: httpx.Response, label: str) -> JSONResponse:
    """Wrap a registry answer, passing its ``header.statut`` through on failure."""
    try:
        data = response.json()
    except ValueError:
        data = {"raw": response.text}

    if response.is_success:
        return JSONResponse(content={"success": True, "data": data})

    header = data.get("header") if isinstance(data, dict) else None
    if isinstance(header, dict) and isinstance(header.get("statut"), int):
        return JSONResponse(status_code=header["statut"], content={"header": header})

    return JSONResponse(
        status_code=response.status_code,
        content=data or {"error": f"{label} error {response.status_code}"},
    )


async def verify_siret(siret: str) -> JSONResponse:
    siret = normalise_siret(siret)
    api_key = get_settings().INSEE_API_KEY
    if not api_key:
        raise HTTPException(
            status_code=500,
            detail=(
                "Configuration INSEE manquante côté serveur (INSEE_API_KEY). "
                "Contactez l'administrateur."
            ),
        )

    try:
        response = await clients.insee_client.get(
            f"/api-sirene/3.11/siret/{siret}",
            headers={"X-INSEE-Api-Key-Integration": api_key},
        )
    except httpx.HTTPError as e:
        logger.error(f"INSEE verification failed for {siret}: {e}")
        raise HTTPException(
            status_code=500, detail="Erreur lors de la vérification du SIRET"
        )
    return registry_response(response, "INSEE")


@insee_router.get("/siret/{siret}")
async def insee_siret(siret: str):
    """Verify a SIRET number against the INSEE Sirene API."""
    return await verify_siret(siret)


@router.get("/siret/{siret}")
async def registry_siret(siret: str):
    """Verify a SIRET number against the INSEE Sirene API."""
    return await verify_siret(siret)


@router.get("/bce/{bce}")
async def registry_bce(bce: str):
    """Verify a Belgian company number (BCE/KBO)."""
    number = normalise_bce(bce)
    api_key = get_settings().BCE_API_KEY
    if not api_key:
        raise HTTPException(
            status_code=500,
            detail=(
                "Configuration BCE manquante côté serveur (BCE_API_KEY). "
                "Contactez l'administrateur."
            ),
        )

    try:
        response = await clients.bce_client.get(
            f"/api/v1/company/{number}",
            params={"lang": "fr"},
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )
    except httpx.HTTPError as e:
        logger.error(f"BCE verification failed for {number}: {e}")
        raise HTTPException(
            status_code=500, detail="Erreur lors de la vérification du BCE"
        )
    return registry_response(response, "BCE")
