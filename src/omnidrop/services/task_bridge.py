"""
Bridge to the external task application.

The bridge script is opaque: it gets four positional arguments (title,
note, project, comma-joined tags) and prints something. Success is decided
from that text alone.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from omnidrop.config import ScriptResolutionError, Settings
from omnidrop.errors import DomainError, applescript_error
from omnidrop.metrics import MetricsSink
from omnidrop.schemas.task_schemas import TaskRequest

logger = logging.getLogger(__name__)

TASK_TIMEOUT_SECONDS = 30.0
SUCCESS_TOKENS = ("true", "ok", "success", "created", "done")


class ExecutionError(Exception):
    """The bridge process could not be run to completion."""

    def __init__(self, message: str, output: str = "", error_type: str = "exit_status"):
        super().__init__(message)
        self.output = output
        self.error_type = error_type


class Executor(Protocol):
    async def run(self, script: Path, args: Sequence[str], timeout: float) -> str:
        """Run `script` with `args`; return combined stdout/stderr or raise ExecutionError."""
        ...


class SubprocessExecutor:
    """Runs the script through an interpreter, `osascript` by default."""

    def __init__(self, interpreter: Sequence[str] = ("osascript",)):
        self.interpreter = tuple(interpreter)

    async def run(self, script: Path, args: Sequence[str], timeout: float) -> str:
        return await self._exec([*self.interpreter, str(script), *args], timeout)

    async def probe(self, timeout: float = 5.0) -> str:
        return await self._exec([*self.interpreter, "-e", 'return "ok"'], timeout)

    async def _exec(self, argv: List[str], timeout: float) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ExecutionError(str(e), error_type="spawn") from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _kill(process)
            raise ExecutionError(
                f"timed out after {timeout:g}s", error_type="timeout"
            ) from None
        except asyncio.CancelledError:
            await _kill(process)
            raise

        output = stdout.decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise ExecutionError(f"exit status {process.returncode}", output=output)
        return output


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


def is_success_output(output: str) -> bool:
    """
    The last non-empty line decides; if it is not a success token the whole
    output is searched for one as a fallback.
    """
    text = output.strip()
    if not text:
        return False
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if lines and lines[-1].lower() in SUCCESS_TOKENS:
        return True
    lowered = text.lower()
    return any(token in lowered for token in SUCCESS_TOKENS)


def build_arguments(task: TaskRequest) -> List[str]:
    return [
        task.title,
        task.note or "",
        task.project or "",
        ",".join(task.tags or []),
    ]


@dataclass
class HealthResult:
    applescript_accessible: bool = False
    script_path: str = ""
    errors: List[str] = field(default_factory=list)
    details: Dict[str, str] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.applescript_accessible and not self.errors


class TaskBridge:
    def __init__(
        self,
        settings: Settings,
        executor: Optional[Executor] = None,
        metrics: Optional[MetricsSink] = None,
        timeout: float = TASK_TIMEOUT_SECONDS,
    ):
        self.settings = settings
        self.executor = executor or SubprocessExecutor()
        self.metrics = metrics
        self.timeout = timeout

    async def create_task(self, task: TaskRequest) -> None:
        """Raises applescript_error when the bridge fails or reports failure."""
        start = time.perf_counter()
        try:
            await self._create_task(task)
        except DomainError:
            self._count("task_creations", status="error")
            raise
        finally:
            if self.metrics is not None:
                self.metrics.observe(
                    "task_creation_duration_seconds", time.perf_counter() - start
                )

        self._count("task_creations", status="success")
        if task.project:
            self._count("tasks_with_project")
        if task.tags:
            self._count("tasks_with_tags")
        logger.info("Task created", extra={"title": task.title, "project": task.project})

    async def _create_task(self, task: TaskRequest) -> None:
        try:
            script = self.settings.resolve_script_path()
        except ScriptResolutionError as e:
            self._count("applescript_errors", error_type="script_path")
            logger.error(f"Task bridge script unavailable: {e}")
            raise applescript_error(f"AppleScript file not found: {e}", cause=e)

        args = build_arguments(task)
        start = time.perf_counter()
        try:
            output = await self.executor.run(script, args, self.timeout)
        except ExecutionError as e:
            self._finish_execution("error", start)
            self._count("applescript_errors", error_type=e.error_type)
            reason = f"AppleScript execution failed: {e} - Output: {e.output.strip()}"
            logger.error(reason, extra={"script_path": str(script)})
            raise applescript_error(reason, cause=e)
        self._finish_execution("success", start)

        if not is_success_output(output):
            self._count("applescript_errors", error_type="unrecognized_output")
            reason = f"AppleScript returned: {output.strip()}"
            logger.error(reason, extra={"script_path": str(script)})
            raise applescript_error(reason)

    async def check_health(self) -> HealthResult:
        """Startup probe: can the script be found and can the interpreter run?"""
        result = HealthResult()
        try:
            script = self.settings.resolve_script_path()
            result.script_path = str(script)
        except ScriptResolutionError as e:
            result.errors.append(str(e))

        probe = getattr(self.executor, "probe", None)
        if probe is None:
            result.details["probe"] = "skipped"
            result.applescript_accessible = True
            return result
        try:
            result.details["probe"] = (await probe()).strip()
            result.applescript_accessible = True
        except ExecutionError as e:
            result.errors.append(f"interpreter probe failed: {e}")
        return result

    def _finish_execution(self, status: str, start: float) -> None:
        self._count("applescript_executions", status=status)
        if self.metrics is not None:
            self.metrics.observe(
                "applescript_execution_duration_seconds", time.perf_counter() - start
            )

    def _count(self, name: str, **labels: str) -> None:
        if self.metrics is not None:
            self.metrics.increment(name, **labels)
