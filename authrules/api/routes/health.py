import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from authrules.core.config import settings
from authrules.core.db import get_async_engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def verify_health_token(x_health_token: Annotated[str | None, Header()] = None) -> None:
    """
    Verify the health check token if one is configured.

    When HEALTH_TOKEN is unset, health endpoints stay public so that
    liveness/readiness probes work without credentials.
    """
    expected_token = settings.health_token
    if not expected_token:
        return
    if not x_health_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Health token required",
        )
    if not hmac.compare_digest(x_health_token, expected_token):
        logger.warning(
            "Unauthorized health check attempt",
            extra={"security_event": True, "event_type": "HEALTH_ACCESS_DENIED"},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid health token",
        )


@router.get("/health", dependencies=[Depends(verify_health_token)])
def health() -> dict:
    """Basic health check endpoint."""
    return {"ok": True}


@router.get("/readyz", dependencies=[Depends(verify_health_token)])
async def readyz() -> JSONResponse:
    """Readiness probe: verifies database connectivity and the registry schema.

    Returns:
      - 200 when the database is reachable and the registry is installed
      - 503 otherwise
    """
    try:
        engine = get_async_engine()
        async with engine.connect() as conn:
            installed = await conn.scalar(
                text("SELECT to_regclass(:name) IS NOT NULL"),
                {"name": f"{settings.rules_schema}.claims"},
            )
    except (SQLAlchemyError, RuntimeError, OSError) as exc:
        logger.error(f"Readiness check failed: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "db": "unavailable"},
        )
    if not installed:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "db": "ok", "registry": "missing"},
        )
    return JSONResponse(
        status_code=status.HTTP_200_OK, content={"ok": True, "db": "ok", "registry": "ok"}
    )
