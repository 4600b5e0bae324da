"""Configuration management for the release listener."""

import re
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Values shipped in the example .env; never acceptable at runtime.
PLACEHOLDER_SECRETS = frozenset({"your-webhook-secret", "your-github-token"})

_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Listener
    host: str = Field(default="0.0.0.0", description="Interface to bind")
    port: int = Field(default=3000, ge=1, le=65535, description="Port to listen on")
    max_body_bytes: int = Field(
        default=5 * 1024 * 1024, gt=0, description="Largest webhook body accepted"
    )

    # GitHub
    github_secret: SecretStr = Field(description="Webhook shared secret")
    github_token: SecretStr = Field(description="Token used to push to the package repo")
    upstream_repo: str = Field(
        default="braintree/braintree_ios",
        validation_alias=AliasChoices("upstream_repo", "braintree_repo"),
        description="Repository whose releases trigger the pipeline (owner/name)",
    )
    git_host: str = Field(default="github.com", description="Host the credential applies to")

    # Pipeline
    project_dir: str = Field(default=".", description="Working tree the pipeline mutates")
    update_script: str = Field(
        default="./update-framework.sh", description="Script invoked with the version"
    )
    sdk_name: str = Field(default="Braintree iOS SDK", description="Name used in commits")
    git_remote: str = Field(default="origin")
    git_branch: str = Field(default="main")
    git_config_scope: Literal["local", "global"] = Field(default="local")
    script_timeout_seconds: float = Field(default=900, gt=0)
    git_timeout_seconds: float = Field(default=120, gt=0)
    max_queued_runs: int = Field(
        default=4, ge=0, description="Deliveries allowed to wait behind an active run"
    )
    rollback_on_failure: bool = Field(default=True)

    # Application
    environment: str = Field(default="production", description="Environment name")
    debug: bool = Field(default=False, description="Verbose logging")

    @field_validator("github_secret", "github_token")
    @classmethod
    def validate_not_placeholder(cls, v: SecretStr) -> SecretStr:
        """Reject empty values and the documented placeholders."""
        value = v.get_secret_value().strip()
        if not value:
            raise ValueError("must not be empty")
        if value in PLACEHOLDER_SECRETS:
            raise ValueError("must be set to a real value, not the placeholder")
        return v

    @field_validator("upstream_repo")
    @classmethod
    def validate_repo(cls, v: str) -> str:
        """Validate owner/name format."""
        if not _REPO_RE.match(v):
            raise ValueError(f"Repository must be owner/name, got: {v}")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]
