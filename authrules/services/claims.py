"""
Claims Registry.

A claim is a named, opaque query returning (user_id, <value column>, ...)
rows that describe who has access to what. Defining one compiles it
immediately into a derived relation in the claims schema.
"""

import logging

from authrules.compiler.validator import check_name
from authrules.core.errors import DefinitionError
from authrules.repos.interfaces import ClaimDefinition
from authrules.services.lifecycle import ArtifactLifecycleManager, CompileReport

logger = logging.getLogger(__name__)


class ClaimRegistry:
    def __init__(self, lifecycle: ArtifactLifecycleManager):
        self.lifecycle = lifecycle

    async def define_claim(
        self, name: str, query: str, value_column: str | None = None
    ) -> CompileReport:
        """
        Create or replace a claim (idempotent upsert by name).

        Args:
            name: Claim name; also the name of the derived relation
            query: SQL returning user_id plus the value column
            value_column: Column holding the claim values; derived from the
                          name when omitted ("org_ids" -> "org_id")

        Raises:
            DefinitionError: If the name is invalid or the query is rejected
        """
        name = check_name(name, "claim")
        if not isinstance(query, str) or not query.strip():
            raise DefinitionError("Claim query cannot be empty", details={"claim": name})
        return await self.lifecycle.define_claim(name, query, value_column)

    async def drop_claim(self, name: str) -> bool:
        """
        Remove a claim. Missing claims are a no-op (returns False).

        Raises:
            DependencyError: If rules still reference the claim
        """
        return await self.lifecycle.drop_claim(name)

    async def list_claims(self) -> list[ClaimDefinition]:
        """All claim definitions ordered by name."""
        return await self.lifecycle.backend.claims.list_all()

    async def get_claim(self, name: str) -> ClaimDefinition | None:
        return await self.lifecycle.backend.claims.get(name)
