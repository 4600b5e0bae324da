"""Data models for webhook deliveries and pipeline runs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# Release tags end up as a command argument and inside a git ref name.
_VERSION_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class ReleaseAsset:
    """A downloadable file attached to a release. Passed through unexamined."""

    name: str
    url: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReleaseAsset:
        if not isinstance(data, dict):
            raise ValueError("release asset must be an object")
        return cls(
            name=str(data.get("name") or ""),
            url=str(data.get("browser_download_url") or data.get("url") or ""),
        )

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "url": self.url}


@dataclass(frozen=True)
class ReleaseEvent:
    """An actionable "release published" event."""

    repository: str
    action: str
    version: str
    assets: tuple[ReleaseAsset, ...] = ()

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ReleaseEvent:
        """Build an event from a decoded webhook envelope.

        Raises:
            ValueError: If a required field is missing or has the wrong type.
        """
        repository = payload.get("repository")
        if not isinstance(repository, dict) or not isinstance(
            repository.get("full_name"), str
        ):
            raise ValueError("repository.full_name is required")

        action = payload.get("action")
        if not isinstance(action, str):
            raise ValueError("action is required")

        release = payload.get("release")
        if not isinstance(release, dict):
            raise ValueError("release is required")

        version = release.get("tag_name")
        if not isinstance(version, str) or not version:
            raise ValueError("release.tag_name is required")
        if not _VERSION_RE.match(version):
            raise ValueError(f"release.tag_name is not a valid version: {version!r}")

        raw_assets = release.get("assets") or []
        if not isinstance(raw_assets, list):
            raise ValueError("release.assets must be a list")

        return cls(
            repository=repository["full_name"],
            action=action,
            version=version,
            assets=tuple(ReleaseAsset.from_dict(a) for a in raw_assets),
        )


@dataclass
class PipelineRun:
    """One execution of the update → commit → tag → push sequence."""

    run_id: int
    version: str
    assets: tuple[ReleaseAsset, ...] = ()
    started_at: str = field(default_factory=_now_iso)

    @property
    def tag(self) -> str:
        return f"v{self.version}"


@dataclass
class CommandResult:
    """Outcome of a single external command."""

    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.error is None

    def describe(self) -> str:
        """Short human-readable failure description."""
        if self.timed_out:
            return "timed out"
        if self.error:
            return self.error
        return f"exit status {self.returncode}"


@dataclass
class PipelineResult:
    """Result of a pipeline run."""

    status: str  # "success", "failed", "rolled_back"
    version: str
    run_id: int | None = None
    previous_sha: str | None = None
    new_sha: str | None = None
    steps_completed: list[str] = field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None
    retryable: bool = True
    duration_seconds: float = 0.0
    started_at: str = field(default_factory=_now_iso)
    completed_at: str | None = None

    @property
    def tag(self) -> str:
        return f"v{self.version}"

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "version": self.version,
            "tag": self.tag,
            "run_id": self.run_id,
            "previous_sha": self.previous_sha,
            "new_sha": self.new_sha,
            "steps_completed": self.steps_completed,
            "failed_step": self.failed_step,
            "error": self.error,
            "retryable": self.retryable,
            "duration_seconds": self.duration_seconds,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }
