"""
FastAPI dependency injection utilities.

Provides the database session, the admin token check, and the registries
bound to the request's session.
"""

import hmac
import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from authrules.core.config import settings
from authrules.core.db import get_async_sessionmaker
from authrules.core.errors import UnauthorizedError
from authrules.repos.backend import SqlAlchemyBackend
from authrules.services.claims import ClaimRegistry
from authrules.services.lifecycle import ArtifactLifecycleManager
from authrules.services.rules import RuleRegistry

logger = logging.getLogger(__name__)


async def get_async_db_session() -> AsyncGenerator[AsyncSession]:
    """
    Async database session dependency for FastAPI endpoints.

    Endpoints commit explicitly; anything uncommitted is rolled back when
    the session closes.
    """
    session_maker = get_async_sessionmaker()
    async with session_maker() as session:
        yield session


AsyncDbSession = Annotated[AsyncSession, Depends(get_async_db_session)]


def require_admin(x_admin_token: Annotated[str | None, Header()] = None) -> None:
    """
    Verify the X-Admin-Token header.

    Without a configured ADMIN_TOKEN the admin API is closed entirely.
    """
    expected = settings.admin_token
    if not expected or not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        logger.warning(
            "Rejected admin API request",
            extra={"security_event": True, "event_type": "ADMIN_ACCESS_DENIED"},
        )
        raise UnauthorizedError("Admin token required")


def get_backend(db: AsyncDbSession) -> SqlAlchemyBackend:
    return SqlAlchemyBackend(db)


def get_lifecycle(
    backend: Annotated[SqlAlchemyBackend, Depends(get_backend)],
) -> ArtifactLifecycleManager:
    return ArtifactLifecycleManager.from_settings(backend, settings)


def get_claim_registry(
    lifecycle: Annotated[ArtifactLifecycleManager, Depends(get_lifecycle)],
) -> ClaimRegistry:
    return ClaimRegistry(lifecycle)


def get_rule_registry(
    lifecycle: Annotated[ArtifactLifecycleManager, Depends(get_lifecycle)],
) -> RuleRegistry:
    return RuleRegistry(lifecycle, strict_write_guards=settings.strict_write_guards)


Lifecycle = Annotated[ArtifactLifecycleManager, Depends(get_lifecycle)]
Claims = Annotated[ClaimRegistry, Depends(get_claim_registry)]
Rules = Annotated[RuleRegistry, Depends(get_rule_registry)]
