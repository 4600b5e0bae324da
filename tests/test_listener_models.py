"""Tests for release_listener.models: dataclasses and serialization."""

from __future__ import annotations

from datetime import datetime

import pytest

from release_listener.models import (
    CommandResult,
    PipelineResult,
    PipelineRun,
    ReleaseAsset,
    ReleaseEvent,
)

# ---------------------------------------------------------------------------
# TestReleaseAsset
# ---------------------------------------------------------------------------


class TestReleaseAsset:
    """Tests for ReleaseAsset."""

    def test_prefers_browser_download_url(self) -> None:
        asset = ReleaseAsset.from_dict(
            {"name": "a.zip", "browser_download_url": "https://dl/a.zip", "url": "https://api/a"}
        )
        assert asset == ReleaseAsset(name="a.zip", url="https://dl/a.zip")

    def test_falls_back_to_api_url(self) -> None:
        asset = ReleaseAsset.from_dict({"name": "a.zip", "url": "https://api/a"})
        assert asset.url == "https://api/a"

    def test_missing_fields_become_empty(self) -> None:
        assert ReleaseAsset.from_dict({}) == ReleaseAsset(name="", url="")

    def test_non_object_rejected(self) -> None:
        with pytest.raises(ValueError):
            ReleaseAsset.from_dict("a.zip")  # type: ignore[arg-type]

    def test_to_dict(self) -> None:
        assert ReleaseAsset("a", "b").to_dict() == {"name": "a", "url": "b"}


# ---------------------------------------------------------------------------
# TestReleaseEvent
# ---------------------------------------------------------------------------


class TestReleaseEvent:
    """Tests for ReleaseEvent.from_dict."""

    def test_from_dict_valid(self) -> None:
        event = ReleaseEvent.from_dict(
            {
                "action": "published",
                "repository": {"full_name": "org/repo"},
                "release": {"tag_name": "6.0.0-beta.1", "assets": [{"name": "x"}]},
            }
        )
        assert event.version == "6.0.0-beta.1"
        assert event.assets == (ReleaseAsset(name="x", url=""),)

    def test_from_dict_extra_fields_ignored(self) -> None:
        event = ReleaseEvent.from_dict(
            {
                "action": "published",
                "repository": {"full_name": "org/repo", "private": False},
                "release": {"tag_name": "1.0.0", "draft": False},
                "sender": {"login": "someone"},
            }
        )
        assert event.repository == "org/repo"

    def test_from_dict_missing_release(self) -> None:
        with pytest.raises(ValueError, match="release"):
            ReleaseEvent.from_dict({"action": "published", "repository": {"full_name": "o/r"}})

    def test_is_immutable(self) -> None:
        event = ReleaseEvent(repository="o/r", action="published", version="1.0.0")
        with pytest.raises(AttributeError):
            event.version = "2.0.0"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# TestPipelineRun
# ---------------------------------------------------------------------------


class TestPipelineRun:
    """Tests for PipelineRun."""

    def test_tag_derived_from_version(self) -> None:
        assert PipelineRun(run_id=1, version="4.2.0").tag == "v4.2.0"

    def test_started_at_is_iso(self) -> None:
        datetime.fromisoformat(PipelineRun(run_id=1, version="1").started_at)


# ---------------------------------------------------------------------------
# TestCommandResult
# ---------------------------------------------------------------------------


class TestCommandResult:
    """Tests for CommandResult."""

    def test_zero_exit_is_ok(self) -> None:
        assert CommandResult(returncode=0).ok is True

    def test_non_zero_exit(self) -> None:
        result = CommandResult(returncode=2)
        assert result.ok is False
        assert result.describe() == "exit status 2"

    def test_timeout(self) -> None:
        result = CommandResult(returncode=None, timed_out=True)
        assert result.ok is False
        assert result.describe() == "timed out"

    def test_exec_error(self) -> None:
        result = CommandResult(returncode=None, error="No such file or directory")
        assert result.ok is False
        assert result.describe() == "No such file or directory"


# ---------------------------------------------------------------------------
# TestPipelineResult
# ---------------------------------------------------------------------------


class TestPipelineResult:
    """Tests for PipelineResult."""

    def test_default_values(self) -> None:
        result = PipelineResult(status="failed", version="1.0.0")
        assert result.run_id is None
        assert result.previous_sha is None
        assert result.new_sha is None
        assert result.steps_completed == []
        assert result.failed_step is None
        assert result.error is None
        assert result.retryable is True
        assert result.duration_seconds == 0.0
        assert result.completed_at is None
        datetime.fromisoformat(result.started_at)

    def test_succeeded(self) -> None:
        assert PipelineResult(status="success", version="1").succeeded is True
        assert PipelineResult(status="rolled_back", version="1").succeeded is False

    def test_to_dict_full(self) -> None:
        result = PipelineResult(
            status="success",
            version="4.2.0",
            run_id=3,
            previous_sha="abc123",
            new_sha="def456",
            steps_completed=["update_script", "git_push"],
            retryable=False,
            duration_seconds=12.5,
            started_at="2026-01-01T00:00:00+00:00",
            completed_at="2026-01-01T00:00:12+00:00",
        )
        assert result.to_dict() == {
            "status": "success",
            "version": "4.2.0",
            "tag": "v4.2.0",
            "run_id": 3,
            "previous_sha": "abc123",
            "new_sha": "def456",
            "steps_completed": ["update_script", "git_push"],
            "failed_step": None,
            "error": None,
            "retryable": False,
            "duration_seconds": 12.5,
            "started_at": "2026-01-01T00:00:00+00:00",
            "completed_at": "2026-01-01T00:00:12+00:00",
        }

    def test_steps_completed_is_per_instance(self) -> None:
        r1 = PipelineResult(status="failed", version="1")
        r2 = PipelineResult(status="failed", version="1")
        r1.steps_completed.append("update_script")
        assert r2.steps_completed == []
