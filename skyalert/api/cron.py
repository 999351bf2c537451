"""Cron trigger endpoints for the SkyAlert engine."""

import hashlib
import hmac
from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, Request, Depends, Query

from ..config.settings import Settings, get_settings

logger = structlog.get_logger()
router = APIRouter(prefix="/cron", tags=["cron"])


def _settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return None


def verify_signature(body: bytes, signature: str, signing_key: str) -> bool:
    """HMAC-SHA256 of the raw body, hex encoded (an optional 'sha256=' prefix is accepted)."""
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    expected = hmac.new(signing_key.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


async def verify_cron_request(request: Request) -> None:
    """Shared-secret or signed-request check for every cron endpoint."""
    settings = _settings(request)

    if settings.allows_unauthenticated_cron:
        return

    if settings.cron_api_key:
        provided = request.headers.get("x-api-key") or _bearer_token(request)
        if provided and hmac.compare_digest(provided, settings.cron_api_key):
            return

    if settings.cron_signing_key:
        signature = request.headers.get("x-signature")
        if signature:
            body = await request.body()
            if verify_signature(body, signature, settings.cron_signing_key):
                return

    logger.warning("cron_request_unauthorized",
        path=request.url.path,
        client=request.client.host if request.client else None
    )
    raise HTTPException(status_code=401, detail="Unauthorized")


def _monitor_agent(request: Request):
    agent = getattr(request.app.state, "monitor_agent", None)
    if agent is None:
        raise HTTPException(status_code=503, detail="Flight monitor is not configured")
    return agent


def _response(result, message: str) -> dict:
    if result.skipped:
        return {
            "success": True,
            "message": "Engine pass already running, skipped",
            "data": result.to_dict()
        }
    return {"success": True, "message": message, "data": result.to_dict()}


@router.api_route("/update-flights", methods=["GET", "POST"], dependencies=[Depends(verify_cron_request)])
async def update_flights(request: Request):
    """Run one full engine pass: direct-alert flights, then rules."""
    agent = _monitor_agent(request)

    try:
        result = await agent.run_pass()
    except Exception as e:
        logger.error("cron_update_flights_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=500, detail=f"Engine pass failed: {e}")

    return _response(result, "Flight updates processed")


@router.api_route("/process-rules", methods=["GET", "POST"], dependencies=[Depends(verify_cron_request)])
async def process_rules(request: Request):
    """Run the rule half of the engine only."""
    agent = _monitor_agent(request)

    try:
        result = await agent.process_rules()
    except Exception as e:
        logger.error("cron_process_rules_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=500, detail=f"Rule processing failed: {e}")

    return _response(result, "Rules processed")


@router.api_route("/tracked-flights", methods=["GET", "POST"], dependencies=[Depends(verify_cron_request)])
async def tracked_flights(
    request: Request,
    time_range: Optional[str] = Query(None, description="near-term, mid-term or long-term")
):
    """Run the direct-alert half, optionally for one departure bucket."""
    agent = _monitor_agent(request)

    try:
        result = await agent.poll_tracked_flights(time_range)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("cron_tracked_flights_failed",
            time_range=time_range,
            error=str(e),
            error_type=type(e).__name__
        )
        raise HTTPException(status_code=500, detail=f"Tracked flight polling failed: {e}")

    label = time_range or "all"
    return _response(result, f"Tracked flights processed ({label})")
