"""Subprocess runner for the external code-modification tool."""

from __future__ import annotations

import codecs
import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO

from task_courier.models import TIMEOUT_EXIT_CODE, ExecutionResult, TaskType

logger = logging.getLogger(__name__)

MODE_FLAGS: dict[TaskType, str] = {
    TaskType.CODE: "code",
    TaskType.DEBUG: "debug",
    TaskType.TEST: "test",
    TaskType.DEPLOY: "deploy",
}
_SENSITIVE_SUFFIXES = ("_PASSWORD", "_PASS", "_SECRET", "_TOKEN", "_API_KEY")
_READ_CHUNK_BYTES = 4096
_TERMINATE_GRACE_SECONDS = 2.0
_READER_JOIN_SECONDS = 5.0

OUTCOME_EXITED = "exited"
OUTCOME_TIMED_OUT = "timed_out"


class ToolLaunchError(RuntimeError):
    """The external tool could not be started at all."""


def build_tool_command(
    *,
    tool_command: str,
    task_type: TaskType | None,
    work_dir: Path,
    description: str,
) -> list[str]:
    """Resolve argv deterministically from task type, workdir and description."""

    head = shlex.split(tool_command, posix=os.name != "nt")
    if not head:
        raise ToolLaunchError("Tool command is empty.")
    mode = MODE_FLAGS.get(task_type, MODE_FLAGS[TaskType.CODE])
    return [
        *head,
        "--mode",
        mode,
        "--project-dir",
        str(work_dir),
        "--task",
        description,
        "--output",
        "json",
    ]


def build_tool_env(
    *,
    base_env: Mapping[str, str],
    credential_env: str,
    credential: str,
    sensitive_names: tuple[str, ...] = (),
) -> dict[str, str]:
    """Copy the parent environment minus secrets, plus the tool credential."""

    env: dict[str, str] = {}
    for name, value in base_env.items():
        if name == credential_env:
            continue
        if name in sensitive_names or name.upper().endswith(_SENSITIVE_SUFFIXES):
            continue
        env[name] = value
    if credential:
        env[credential_env] = credential
    elif credential_env in base_env:
        env[credential_env] = base_env[credential_env]
    return env


class StreamSink:
    """Append-only text buffer for one output stream."""

    def __init__(self, name: str, on_chunk: Callable[[str], None] | None = None) -> None:
        self.name = name
        self._chunks: list[str] = []
        self._on_chunk = on_chunk

    def append(self, chunk: str) -> None:
        self._chunks.append(chunk)
        if self._on_chunk is not None:
            self._on_chunk(chunk)

    def text(self) -> str:
        return "".join(self._chunks)

    def pump(self, stream: BinaryIO) -> None:
        """Read ``stream`` until EOF, decoding UTF-8 across chunk boundaries."""

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            for block in iter(lambda: stream.read(_READ_CHUNK_BYTES), b""):
                text = decoder.decode(block)
                if text:
                    self.append(text)
            tail = decoder.decode(b"", final=True)
            if tail:
                self.append(tail)
        finally:
            stream.close()


class CompletionLatch:
    """Single-assignment terminal state; only the first claim wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outcome: str | None = None

    def claim(self, outcome: str) -> bool:
        with self._lock:
            if self._outcome is not None:
                return False
            self._outcome = outcome
            return True

    @property
    def outcome(self) -> str | None:
        with self._lock:
            return self._outcome


@dataclass(slots=True)
class ToolRunRequest:
    """Inputs for one tool process."""

    task_id: str
    argv: list[str]
    work_dir: Path
    env: dict[str, str]
    timeout_seconds: float


@dataclass(slots=True)
class PendingExecution:
    """Mutable run state owned by the runner until the process terminates."""

    request: ToolRunRequest
    stdout: StreamSink
    stderr: StreamSink
    latch: CompletionLatch = field(default_factory=CompletionLatch)
    start_time: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    start_monotonic: float = field(default_factory=time.monotonic)
    exit_code: int | None = None

    def finalize(self) -> ExecutionResult:
        end_time = datetime.now(tz=UTC)
        duration_ms = int((time.monotonic() - self.start_monotonic) * 1000)
        timed_out = self.latch.outcome == OUTCOME_TIMED_OUT
        if timed_out:
            error = (
                "timeout: tool execution exceeded "
                f"{_format_seconds(self.request.timeout_seconds)}"
            )
        elif self.exit_code != 0:
            error = f"tool exited with code {self.exit_code}"
        else:
            error = None
        return ExecutionResult(
            task_id=self.request.task_id,
            command=shlex.join(self.request.argv),
            work_dir=str(self.request.work_dir),
            start_time=self.start_time.isoformat(),
            end_time=end_time.isoformat(),
            duration_ms=duration_ms,
            exit_code=TIMEOUT_EXIT_CODE if timed_out else self.exit_code,
            stdout=self.stdout.text(),
            stderr=self.stderr.text(),
            timed_out=timed_out,
            error=error,
        )


class ToolRunner:
    """Runs one tool process with streamed capture and a hard deadline."""

    def run(self, request: ToolRunRequest) -> ExecutionResult:
        pending = PendingExecution(
            request=request,
            stdout=StreamSink("stdout", _live_logger(request.task_id, "stdout", logging.INFO)),
            stderr=StreamSink("stderr", _live_logger(request.task_id, "stderr", logging.WARNING)),
        )
        logger.info("Running command in %s: %s", request.work_dir, shlex.join(request.argv))
        try:
            process = subprocess.Popen(  # noqa: S603
                request.argv,
                cwd=request.work_dir,
                env=request.env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                start_new_session=os.name != "nt",
            )
        except FileNotFoundError as error:
            raise ToolLaunchError(f"Tool command not found: {request.argv[0]}") from error
        except OSError as error:
            raise ToolLaunchError(f"Tool failed to start: {error}") from error

        pending.start_time = datetime.now(tz=UTC)
        pending.start_monotonic = time.monotonic()
        readers = [
            threading.Thread(
                target=pending.stdout.pump,
                args=(process.stdout,),
                name=f"{request.task_id}-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=pending.stderr.pump,
                args=(process.stderr,),
                name=f"{request.task_id}-stderr",
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        deadline = threading.Timer(
            request.timeout_seconds,
            _on_deadline,
            args=(process, pending.latch, request.task_id),
        )
        deadline.daemon = True
        deadline.start()
        try:
            returncode = process.wait()
        finally:
            deadline.cancel()

        if pending.latch.claim(OUTCOME_EXITED):
            pending.exit_code = returncode
            logger.info("Process for task %s exited with code %s", request.task_id, returncode)
        else:
            # the kill escalation must reach the whole group before we report
            deadline.join(timeout=_TERMINATE_GRACE_SECONDS + _READER_JOIN_SECONDS)
            logger.warning(
                "Process for task %s terminated after timeout (late exit code %s ignored)",
                request.task_id,
                returncode,
            )

        for reader in readers:
            reader.join(timeout=_READER_JOIN_SECONDS)
        result = pending.finalize()
        logger.info("Execution time for task %s: %dms", request.task_id, result.duration_ms)
        return result


def _on_deadline(process: subprocess.Popen[bytes], latch: CompletionLatch, task_id: str) -> None:
    if not latch.claim(OUTCOME_TIMED_OUT):
        return
    logger.warning("Task %s hit the execution deadline, terminating tool", task_id)
    terminate_process_tree(process)


def terminate_process_tree(process: subprocess.Popen[bytes]) -> None:
    """Terminate the process and its session; escalate to kill after a grace period."""

    if os.name == "nt":
        _terminate_single(process)
        return

    _signal_group(process.pid, signal.SIGTERM)
    grace_deadline = time.monotonic() + _TERMINATE_GRACE_SECONDS
    while time.monotonic() < grace_deadline:
        if process.poll() is not None:
            break
        time.sleep(0.05)
    _signal_group(process.pid, signal.SIGKILL)


def _signal_group(pgid: int, signum: int) -> None:
    try:
        os.killpg(pgid, signum)
    except (ProcessLookupError, PermissionError):
        return


def _terminate_single(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return


def _live_logger(task_id: str, stream_name: str, level: int) -> Callable[[str], None]:
    def emit(chunk: str) -> None:
        logger.log(level, "[%s] %s: %s", task_id, stream_name.upper(), chunk.rstrip())

    return emit


def _format_seconds(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute" + ("" if minutes == 1 else "s")
    return f"{seconds:g} seconds"
