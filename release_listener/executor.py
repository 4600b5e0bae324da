"""Pipeline executor: republishes an upstream release into the package repo.

Lifecycle of a run:
1. Point git at the stored token for pushes to the hosting platform
2. Record HEAD as the rollback point and refuse versions already tagged
3. Run the update script with the version as its only argument
4. git add / commit / annotated tag / push branch and tags
5. On failure, restore the working tree to the recorded HEAD

Runs never overlap. Deliveries that arrive while a run is active queue behind
it in arrival order; once ``max_queued_runs`` are waiting, further deliveries
are rejected with ``PipelineBusyError`` so the caller can retry later.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import os
import signal
import time
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from release_listener.exceptions import PipelineBusyError
from release_listener.logging import get_logger
from release_listener.models import CommandResult, PipelineResult, PipelineRun, ReleaseAsset

if TYPE_CHECKING:
    from release_listener.config import Settings

log = get_logger("release_listener.executor")

_REDACTED = "***"
_OUTPUT_LOG_LIMIT = 2000

# Steps after which the working tree may differ from the recorded HEAD
_MUTATING_STEPS = frozenset({"update_script", "git_add", "git_commit", "git_tag", "git_push"})


class PipelineExecutor:
    """Executes pipeline runs one at a time against a single working tree."""

    def __init__(
        self,
        github_token: str,
        project_dir: str = ".",
        update_script: str = "./update-framework.sh",
        sdk_name: str = "Braintree iOS SDK",
        git_remote: str = "origin",
        git_branch: str = "main",
        git_host: str = "github.com",
        git_config_scope: str = "local",
        script_timeout: float = 900,
        git_timeout: float = 120,
        max_queued_runs: int = 4,
        rollback_on_failure: bool = True,
    ) -> None:
        self._github_token = github_token
        self._project_dir = project_dir
        self._update_script = update_script
        self._sdk_name = sdk_name
        self._git_remote = git_remote
        self._git_branch = git_branch
        self._git_host = git_host
        self._git_config_scope = git_config_scope
        self._script_timeout = script_timeout
        self._git_timeout = git_timeout
        self._max_queued_runs = max_queued_runs
        self._rollback_on_failure = rollback_on_failure
        self._lock = asyncio.Lock()
        self._pending = 0
        self._run_ids = itertools.count(1)
        self._state = "idle"
        self._current_operation: str | None = None
        self._last_result: PipelineResult | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineExecutor:
        return cls(
            github_token=settings.github_token.get_secret_value(),
            project_dir=settings.project_dir,
            update_script=settings.update_script,
            sdk_name=settings.sdk_name,
            git_remote=settings.git_remote,
            git_branch=settings.git_branch,
            git_host=settings.git_host,
            git_config_scope=settings.git_config_scope,
            script_timeout=settings.script_timeout_seconds,
            git_timeout=settings.git_timeout_seconds,
            max_queued_runs=settings.max_queued_runs,
            rollback_on_failure=settings.rollback_on_failure,
        )

    # ------------------------------------------------------------------
    # Public status surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        return self._state

    @property
    def current_operation(self) -> str | None:
        return self._current_operation

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @property
    def pending(self) -> int:
        """Number of runs waiting for the active one to finish."""
        return self._pending

    @property
    def last_result(self) -> PipelineResult | None:
        return self._last_result

    def commit_message(self, version: str) -> str:
        return f"Update to {self._sdk_name} {version}"

    # ------------------------------------------------------------------
    # Primary flow
    # ------------------------------------------------------------------

    async def apply_release(
        self,
        version: str,
        assets: Iterable[ReleaseAsset] = (),
    ) -> PipelineResult:
        """Run the pipeline for *version*, waiting for any active run first.

        Raises:
            PipelineBusyError: If the wait queue is already full.
        """
        if self._lock.locked() and self._pending >= self._max_queued_runs:
            log.warning("pipeline_busy", version=version, pending=self._pending)
            raise PipelineBusyError(f"{self._pending} runs already waiting")

        if self._lock.locked():
            log.info("pipeline_queued", version=version, position=self._pending + 1)

        self._pending += 1
        try:
            await self._lock.acquire()
        finally:
            self._pending -= 1

        try:
            run = PipelineRun(
                run_id=next(self._run_ids),
                version=version,
                assets=tuple(assets),
            )
            with structlog.contextvars.bound_contextvars(run_id=run.run_id, version=version):
                result = await self._do_run(run)
            self._last_result = result
            return result
        finally:
            self._lock.release()

    async def _do_run(self, run: PipelineRun) -> PipelineResult:
        start = time.monotonic()
        self._state = "running"

        result = PipelineResult(
            status="failed",
            version=run.version,
            run_id=run.run_id,
            started_at=run.started_at,
        )
        log.info("pipeline_started", tag=run.tag, assets=[a.name for a in run.assets])
        active_step: str | None = None

        try:
            self._current_operation = "Configuring git credentials"
            cmd = await self._configure_credentials()
            if not cmd.ok:
                return await self._fail(result, "configure_credentials", cmd)
            result.steps_completed.append("configure_credentials")

            head = await self._run_git("rev-parse", "HEAD")
            if not head.ok:
                return await self._fail(result, "rev_parse", head)
            result.previous_sha = head.stdout.strip()

            existing = await self._run_git("tag", "--list", run.tag)
            if not existing.ok:
                return await self._fail(result, "tag_check", existing)
            if existing.stdout.strip():
                result.failed_step = "tag_check"
                result.error = f"Tag {run.tag} already exists"
                result.retryable = False
                log.warning("pipeline_duplicate_release", tag=run.tag)
                return result

            active_step = "update_script"
            self._current_operation = f"Running {self._update_script} {run.version}"
            cmd = await self._run_cmd(
                [self._update_script, run.version],
                timeout=self._script_timeout,
            )
            if not cmd.ok:
                return await self._fail(result, "update_script", cmd)
            self._log_output("update_script", cmd)
            result.steps_completed.append("update_script")

            steps: list[tuple[str, tuple[str, ...]]] = [
                ("git_add", ("add", ".")),
                ("git_commit", ("commit", "-m", self.commit_message(run.version))),
                ("git_tag", ("tag", "-a", run.tag, "-m", f"Version {run.version}")),
                (
                    "git_push",
                    ("push", "--atomic", self._git_remote, self._git_branch, "--tags"),
                ),
            ]
            for step, args in steps:
                active_step = step
                self._current_operation = f"git {args[0]}"
                cmd = await self._run_git(*args)
                if not cmd.ok:
                    return await self._fail(result, step, cmd)
                self._log_output(step, cmd)
                result.steps_completed.append(step)
            # Pushed; nothing past this point may be undone
            active_step = None

            head = await self._run_git("rev-parse", "HEAD")
            result.new_sha = head.stdout.strip() if head.ok else None

            result.status = "success"
            result.retryable = False
            log.info("pipeline_succeeded", tag=run.tag, new_sha=result.new_sha)
            return result

        except Exception as exc:
            result.error = f"Unexpected error: {exc}"
            log.exception("pipeline_unexpected_error")
            if active_step not in _MUTATING_STEPS:
                return result
            return await self._rollback(result)
        except asyncio.CancelledError:
            result.failed_step = active_step
            result.error = "Cancelled"
            log.warning("pipeline_cancelled", step=active_step)
            if active_step in _MUTATING_STEPS:
                await asyncio.shield(self._rollback(result))
            raise
        finally:
            result.duration_seconds = round(time.monotonic() - start, 2)
            result.completed_at = datetime.now(UTC).isoformat()
            self._state = "idle"
            self._current_operation = None

    async def _fail(self, result: PipelineResult, step: str, cmd: CommandResult) -> PipelineResult:
        """Record a failed step, log the captured output and roll back."""
        result.failed_step = step
        result.error = f"{step} failed: {cmd.describe()}"

        if step == "git_tag" and "already exists" in cmd.stderr:
            result.retryable = False
            log.warning("pipeline_duplicate_release", tag=result.tag, stderr=cmd.stderr.strip())
        else:
            log.error(
                "pipeline_step_failed",
                step=step,
                reason=cmd.describe(),
                stderr=cmd.stderr.strip()[-_OUTPUT_LOG_LIMIT:],
            )
        self._log_output(step, cmd)
        if step not in _MUTATING_STEPS:
            return result
        return await self._rollback(result)

    async def _rollback(self, result: PipelineResult) -> PipelineResult:
        """Restore the working tree to the state before the run."""
        if not self._rollback_on_failure or not result.previous_sha:
            return result

        self._current_operation = f"Rolling back to {result.previous_sha[:12]}"
        log.info("pipeline_rolling_back", previous_sha=result.previous_sha)

        ok = True
        if "git_tag" in result.steps_completed:
            ok = (await self._run_git("tag", "-d", result.tag)).ok and ok
        ok = (await self._run_git("reset", "--hard", result.previous_sha)).ok and ok
        ok = (await self._run_git("clean", "-fd")).ok and ok

        if ok:
            result.status = "rolled_back"
            log.info("pipeline_rolled_back", previous_sha=result.previous_sha)
        else:
            log.error("pipeline_rollback_failed", previous_sha=result.previous_sha)
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _configure_credentials(self) -> CommandResult:
        """Rewrite platform URLs so remote operations carry the token."""
        base = f"https://{self._git_host}/"
        authed = f"https://x-access-token:{self._github_token}@{self._git_host}/"
        return await self._run_git(
            "config", f"--{self._git_config_scope}", f"url.{authed}.insteadOf", base
        )

    def _log_output(self, step: str, cmd: CommandResult) -> None:
        if cmd.stdout.strip():
            log.debug("pipeline_step_output", step=step, stdout=cmd.stdout[-_OUTPUT_LOG_LIMIT:])

    def _redact(self, text: str) -> str:
        if self._github_token:
            return text.replace(self._github_token, _REDACTED)
        return text

    async def _run_git(self, *args: str) -> CommandResult:
        return await self._run_cmd(["git", *args], timeout=self._git_timeout)

    async def _run_cmd(self, args: Sequence[str], timeout: float = 120) -> CommandResult:
        """Run a command in the project directory and capture its output."""
        display = self._redact(" ".join(args))
        log.debug("command_started", cmd=display)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._project_dir,
                start_new_session=True,
            )
        except OSError as exc:
            log.warning("command_error", cmd=display, error=str(exc))
            return CommandResult(returncode=None, error=str(exc))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            await self._kill(proc)
            log.warning("command_timed_out", cmd=display, timeout=timeout)
            return CommandResult(returncode=None, timed_out=True)
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        result = CommandResult(
            returncode=proc.returncode,
            stdout=self._redact(stdout.decode(errors="replace")),
            stderr=self._redact(stderr.decode(errors="replace")),
        )
        if not result.ok:
            log.warning(
                "command_failed",
                cmd=display,
                rc=proc.returncode,
                stderr=result.stderr.strip()[:500],
            )
        return result

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        """Kill the command and everything it spawned.

        Children inherit the output pipes, so waiting on the direct child
        alone would block until the slowest grandchild exits.
        """
        with contextlib.suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGKILL)
        await proc.wait()
