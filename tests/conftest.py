"""
Pytest configuration and shared fixtures.

Provides:
- Test environment defaults (set before any authrules import)
- AnyIO backend selection
- In-memory backend, lifecycle manager and registries
- A file-sharing data set used by the registry and simulation tests

PostgreSQL integration tests live in test_integration_postgres.py and run
only when DATABASE_URL_TEST is set.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# NOTE: Tests do NOT auto-discover or default-load any .env files.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("OBSERVABILITY_STRUCTURED_LOGS", "false")

import pytest  # noqa: E402 (import after env setup)

from authrules.compiler.compiler import CompilerOptions  # noqa: E402
from authrules.repos.memory import MemoryBackend  # noqa: E402
from authrules.services.claims import ClaimRegistry  # noqa: E402
from authrules.services.lifecycle import ArtifactLifecycleManager  # noqa: E402
from authrules.services.rules import RuleRegistry  # noqa: E402

IDENTITY_SQL = "auth_rules.current_subject()"
ANONYMOUS = "00000000-0000-0000-0000-000000000000"


# =============================================================================
# AnyIO Backend Configuration
# =============================================================================
@pytest.fixture
def anyio_backend():
    return "asyncio"


# =============================================================================
# In-memory registry
# =============================================================================


@pytest.fixture
def options() -> CompilerOptions:
    return CompilerOptions()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def lifecycle(backend: MemoryBackend, options: CompilerOptions) -> ArtifactLifecycleManager:
    return ArtifactLifecycleManager(backend, options, IDENTITY_SQL)


@pytest.fixture
def claims(lifecycle: ArtifactLifecycleManager) -> ClaimRegistry:
    return ClaimRegistry(lifecycle)


@pytest.fixture
def rules(lifecycle: ArtifactLifecycleManager) -> RuleRegistry:
    return RuleRegistry(lifecycle)


# =============================================================================
# File sharing data set
# =============================================================================


@pytest.fixture
def sharing_data() -> dict:
    """
    Users alice, bob, carol, dave and eve; folders d1-d3; files f1-f6.

    alice owns f1, f2 (in d1) and f5 (in d2); bob owns f3; carol owns f4
    and f6. Nothing is shared yet; dave and eve own nothing.
    """
    return {
        "users": ["alice", "bob", "carol", "dave", "eve"],
        "groups": {"Engineering": ["alice", "bob"], "Sales": ["eve"]},
        "folders": [
            {"id": "d1", "owner_id": "alice"},
            {"id": "d2", "owner_id": "alice"},
            {"id": "d3", "owner_id": "carol"},
        ],
        "files": [
            {"id": "f1", "name": "plan.txt", "owner_id": "alice", "folder_id": "d1", "size": 10},
            {"id": "f2", "name": "notes.md", "owner_id": "alice", "folder_id": "d1", "size": 20},
            {"id": "f3", "name": "draft.doc", "owner_id": "bob", "folder_id": "d1", "size": 30},
            {"id": "f4", "name": "spec.pdf", "owner_id": "carol", "folder_id": "d3", "size": 40},
            {"id": "f5", "name": "photo.png", "owner_id": "alice", "folder_id": "d2", "size": 50},
            {"id": "f6", "name": "budget.xls", "owner_id": "carol", "folder_id": "d3", "size": 60},
        ],
        "file_shares": [],
        "group_shares": [],
        "folder_shares": [],
        "link_tokens": [],
    }


def accessible_file_rows(data: dict, link_token: str | None = None, now=None) -> list[dict]:
    """
    Resolve the accessible_file_ids claim the way its SQL query does.

    Ownership, direct shares, group shares and folder shares grant access to
    subjects; a valid, unexpired link token grants access to the anonymous
    subject.
    """
    rows = []

    def grant(user_id, file_id, permission):
        rows.append({"user_id": user_id, "accessible_file_id": file_id, "permission": permission})

    for f in data["files"]:
        grant(f["owner_id"], f["id"], "owner")
    for share in data["file_shares"]:
        grant(share["user_id"], share["file_id"], share["permission"])
    for share in data["group_shares"]:
        for member in data["groups"][share["group"]]:
            grant(member, share["file_id"], share["permission"])
    for share in data["folder_shares"]:
        for f in data["files"]:
            if f["folder_id"] == share["folder_id"]:
                grant(share["user_id"], f["id"], share["permission"])
    if link_token is not None:
        for token in data["link_tokens"]:
            expired = token["expires_at"] is not None and now is not None and token["expires_at"] <= now
            if token["token"] == link_token and not expired:
                grant(ANONYMOUS, token["file_id"], token["permission"])
    return rows


@pytest.fixture
def resolve_files():
    return accessible_file_rows
