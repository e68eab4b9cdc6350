"""Application configuration using Pydantic Settings.

Configuration is loaded from environment variables. Point `ENV_FILE` at a
local env file to load one explicitly; no `.env` file is read implicitly.
"""

import os
import re
from enum import Enum

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


class AppEnvironment(str, Enum):
    """Application environment values."""

    LOCAL = "local"
    TEST = "test"
    PROD = "prod"


def _normalize_driver(url: str, driver: str) -> str:
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return f"postgresql+{driver}://" + url[len(prefix) :]
    return url


class Settings(BaseSettings):
    """
    Application settings with type validation.

    Schema and role names end up inside generated DDL, so they are
    validated as plain SQL identifiers.
    """

    model_config = SettingsConfigDict(
        env_file=os.getenv("ENV_FILE") or None, env_prefix="", extra="ignore"
    )

    # Application
    app_env: AppEnvironment = AppEnvironment.LOCAL
    app_name: str = "authrules"
    app_log_level: str = "INFO"

    # Observability
    observability_enabled: bool = True
    observability_structured_logs: bool = True

    # Database - runtime user and admin user (DDL needs the admin user)
    database_url_app: str | None = None
    database_url_admin: str | None = None

    # Schema layout
    rules_schema: str = "auth_rules"
    claims_schema: str = "auth_rules_claims"
    api_schema: str = "data_api"
    source_schema: str = "public"

    # Caller identity inside generated SQL
    identity_sql: str = "auth_rules.current_subject()"
    subject_id_type: str = "uuid"
    anonymous_subject_id: str = "00000000-0000-0000-0000-000000000000"
    subject_setting: str = "auth_rules.subject_id"
    link_token_setting: str = "auth_rules.link_token"

    # Row key used by update/delete guards to target the affected row
    row_key_column: str = "id"

    # Roles granted access to generated objects (comma separated)
    reader_roles: str = "anon,authenticated"
    writer_roles: str = "authenticated"

    # Reject Or/And in write rules instead of ignoring them
    strict_write_guards: bool = False

    # Admin API
    admin_token: str | None = None
    metrics_token: str | None = None
    health_token: str | None = None

    @property
    def sync_url(self) -> str | None:
        """Admin URL (falls back to the app URL) with the psycopg v3 driver."""
        url = self.database_url_admin or self.database_url_app
        return _normalize_driver(url, "psycopg") if url else None

    @property
    def async_url(self) -> str | None:
        """Same as sync_url; psycopg v3 serves both sync and async engines."""
        return self.sync_url

    @property
    def reader_roles_list(self) -> list[str]:
        """Parse reader roles string into a list."""
        return [role.strip() for role in self.reader_roles.split(",") if role.strip()]

    @property
    def writer_roles_list(self) -> list[str]:
        """Parse writer roles string into a list."""
        return [role.strip() for role in self.writer_roles.split(",") if role.strip()]

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | AppEnvironment) -> AppEnvironment:
        """Validate and parse app_env to AppEnvironment enum."""
        if isinstance(v, AppEnvironment):
            return v
        try:
            return AppEnvironment(v.lower())
        except ValueError:
            raise ValueError(
                f"app_env must be one of {[e.value for e in AppEnvironment]}, got '{v}'"
            )

    @field_validator(
        "rules_schema", "claims_schema", "api_schema", "source_schema", "row_key_column"
    )
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Schema and column names must be plain SQL identifiers."""
        if not _IDENTIFIER_RE.match(v):
            raise ValueError(f"'{v}' is not a valid SQL identifier")
        return v

    @field_validator("reader_roles", "writer_roles")
    @classmethod
    def validate_roles(cls, v: str) -> str:
        """Every role in the list must be a plain SQL identifier."""
        for role in v.split(","):
            role = role.strip()
            if role and not _IDENTIFIER_RE.match(role):
                raise ValueError(f"'{role}' is not a valid role name")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Prevent insecure configurations from being deployed to production."""
        if self.app_env == AppEnvironment.PROD:
            if not self.admin_token or len(self.admin_token) < 32:
                raise ValueError("ADMIN_TOKEN must be set and at least 32 characters in production")
            if self.database_url_app and "sslmode=require" not in self.database_url_app:
                raise ValueError("DATABASE_URL_APP must use sslmode=require in production")
        return self


settings = Settings()
