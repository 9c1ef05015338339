"""
Execution Session - one long-lived interpreter subprocess.

The session owns its process handle exclusively and runs at most one
execution at a time. Output framing works over the raw stdout stream: every
submission is wrapped so that it prints a per-call begin token, then its
output, then a per-call end marker, whatever happens inside. The caller reads
until the end marker shows up or the timeout fires, whichever comes first.

State machine: UNSTARTED -> STARTING -> READY -> (EXECUTING <-> READY) -> TERMINATED
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import secrets
import time

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from rsandbox.core.constants import (
    DEFAULT_EXECUTION_TIMEOUT,
    DEFAULT_MAX_MEMORY,
    DEFAULT_START_TIMEOUT,
    EXECUTION_TOKEN_BYTES,
    MAX_STDERR_BUFFER,
    START_POLL_INTERVAL,
    TERMINATE_GRACE_PERIOD,
)
from rsandbox.core.dialects import IMAGE_LINE_PREFIX, InterpreterDialect, RDialect
from rsandbox.core.exceptions import (
    ExecutionCancelledError,
    ExecutionFailedError,
    ExecutionTimeoutError,
    SessionBusyError,
    SessionNotStartedError,
    SessionStartError,
)

logger = logging.getLogger(__name__)

_READ_CHUNK_SIZE = 4096

# ============================================
# DATA CLASSES
# ============================================


class SessionState(str, Enum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    READY = "ready"
    EXECUTING = "executing"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class ExecutionResult:
    """Output of one completed execution.

    `success` reports that the sandbox ran the code to completion. Failures
    inside the interpreter show up as "ERROR:" lines in `output`.
    """

    success: bool
    output: str
    execution_time_ms: int
    stderr: str = ""

    @property
    def images(self) -> list[str]:
        """Inline plot data URIs embedded in the output."""
        return [
            line[len(IMAGE_LINE_PREFIX) :].strip()
            for line in self.output.splitlines()
            if line.startswith(IMAGE_LINE_PREFIX)
        ]

    @property
    def has_error(self) -> bool:
        return any(line.startswith("ERROR:") for line in self.output.splitlines())


def _new_token(kind: str) -> str:
    return f"<<RSBX-{kind}-{secrets.token_hex(EXECUTION_TOKEN_BYTES)}>>"


# ============================================
# SESSION
# ============================================


class ExecutionSession:
    """A single interpreter subprocess keyed by a caller-chosen session id."""

    def __init__(
        self,
        session_id: str,
        dialect: InterpreterDialect | None = None,
        executable: str | None = None,
        timeout: float = DEFAULT_EXECUTION_TIMEOUT,
        max_memory: str = DEFAULT_MAX_MEMORY,
        start_timeout: float = DEFAULT_START_TIMEOUT,
    ) -> None:
        self.session_id = session_id
        self.dialect = dialect or RDialect()
        self.executable = executable or self.dialect.default_executable
        self.timeout = timeout
        self.max_memory = max_memory
        self.start_timeout = start_timeout

        self.state = SessionState.UNSTARTED
        self.created_at = datetime.now(UTC)
        self.last_used = time.monotonic()
        self.busy = False
        self.execution_count = 0

        self._process: asyncio.subprocess.Process | None = None
        self._reader_tasks: list[asyncio.Task[None]] = []
        self._output_event = asyncio.Event()
        self._stdout = ""
        self._stderr = ""
        self._stderr_total = 0
        self._eof = False
        self._terminated = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the interpreter and wait until it is running.

        Raises:
            SessionStartError: If the executable cannot be spawned or the
                process is not running within `start_timeout`.
        """
        if self.state is not SessionState.UNSTARTED:
            raise SessionStartError(self.session_id, f"session is {self.state.value}")

        self.state = SessionState.STARTING
        argv = self.dialect.argv(self.executable)
        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.dialect.env(self.max_memory),
            )
        except OSError as e:
            self.state = SessionState.TERMINATED
            self._terminated = True
            raise SessionStartError(self.session_id, f"cannot spawn '{self.executable}': {e}", cause=e) from e

        self._reader_tasks = [
            asyncio.create_task(self._pump_stdout(), name=f"session-{self.session_id}-stdout"),
            asyncio.create_task(self._drain_stderr(), name=f"session-{self.session_id}-stderr"),
        ]

        try:
            await asyncio.wait_for(self._wait_until_running(), timeout=self.start_timeout)
        except asyncio.TimeoutError:
            await self.terminate()
            raise SessionStartError(
                self.session_id, f"interpreter not ready within {self.start_timeout:g}s"
            ) from None
        except BaseException:
            await self.terminate()
            raise

        self.state = SessionState.READY
        self.last_used = time.monotonic()
        logger.info(
            "Session %s started (%s, pid=%s)", self.session_id, self.dialect.display_name, self._process.pid
        )

    async def _wait_until_running(self) -> None:
        process = self._process
        while True:
            if process is None or process.returncode is not None or self._eof:
                code = process.returncode if process is not None else None
                raise SessionStartError(self.session_id, f"interpreter exited during start-up (code {code})")
            if process.pid:
                return
            await asyncio.sleep(START_POLL_INTERVAL)

    async def terminate(self) -> None:
        """Stop the subprocess and release the handle. Safe to call repeatedly.

        Any execute() waiting for output is woken and fails with
        ExecutionCancelledError.
        """
        self._terminated = True
        self.state = SessionState.TERMINATED
        self._output_event.set()

        process, self._process = self._process, None
        if process is not None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_PERIOD)
                except asyncio.TimeoutError:
                    logger.warning("Session %s did not exit on SIGTERM, killing", self.session_id)
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                    await process.wait()
            logger.info("Session %s terminated", self.session_id)

        tasks, self._reader_tasks = self._reader_tasks, []
        for task in tasks:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def is_alive(self) -> bool:
        """True while the process handle is held and the process is running."""
        return (
            self._process is not None
            and self._process.returncode is None
            and not self._eof
            and not self._terminated
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, code: str, timeout: float | None = None) -> ExecutionResult:
        """Run `code` in the interpreter and return its framed output.

        Args:
            code: Source to evaluate. Already validated by the caller.
            timeout: Wall-clock budget in seconds; defaults to the session's.

        Raises:
            SessionNotStartedError: No live process.
            SessionBusyError: Another execution is in flight.
            ExecutionTimeoutError: The code was not sent and its end marker
                read within the budget. The session stays usable.
            ExecutionFailedError: The interpreter died mid-execution.
            ExecutionCancelledError: terminate() was called mid-execution.
        """
        if not self.is_alive():
            raise SessionNotStartedError(self.session_id)
        if self.busy:
            raise SessionBusyError(self.session_id)

        budget = self.timeout if timeout is None else timeout
        begin = _new_token("BEGIN")
        end = _new_token("END")

        self.busy = True
        self.state = SessionState.EXECUTING
        self.last_used = time.monotonic()
        self._stdout = ""
        stderr_mark = self._stderr_total
        started = time.perf_counter()

        try:
            async with asyncio.timeout(budget):
                await self._send(self.dialect.wrap(code, begin, end))
                raw = await self._read_until(end)
        except asyncio.TimeoutError:
            logger.warning("Session %s execution timed out after %.1fs", self.session_id, budget)
            raise ExecutionTimeoutError(self.session_id, budget) from None
        finally:
            self.busy = False
            self.last_used = time.monotonic()
            if self.state is SessionState.EXECUTING:
                self.state = SessionState.READY

        self.execution_count += 1
        begin_at = raw.find(begin)
        if begin_at != -1:
            raw = raw[begin_at + len(begin) :]

        return ExecutionResult(
            success=True,
            output=raw.strip(),
            execution_time_ms=int((time.perf_counter() - started) * 1000),
            stderr=self._stderr_since(stderr_mark),
        )

    async def _send(self, payload: str) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise SessionNotStartedError(self.session_id)
        try:
            process.stdin.write(payload.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ExecutionFailedError(
                self.session_id, "interpreter stdin is closed", stderr=self._stderr, cause=e
            ) from e

    async def _read_until(self, end: str) -> str:
        """Wait until `end` appears on stdout; return everything before it."""
        scanned = 0
        while True:
            at = self._stdout.find(end, scanned)
            if at != -1:
                output, self._stdout = self._stdout[:at], ""
                return output
            scanned = max(0, len(self._stdout) - len(end))

            if self._terminated:
                raise ExecutionCancelledError(self.session_id)
            if self._eof:
                raise ExecutionFailedError(self.session_id, "interpreter exited", stderr=self._stderr)

            self._output_event.clear()
            await self._output_event.wait()

    # ------------------------------------------------------------------
    # Stream readers
    # ------------------------------------------------------------------

    async def _pump_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stream = self._process.stdout
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while chunk := await stream.read(_READ_CHUNK_SIZE):
            text = decoder.decode(chunk)
            # Output that arrives between executions belongs to nobody
            if self.busy:
                self._stdout += text
                self._output_event.set()

        self._eof = True
        self._output_event.set()
        if not self._terminated:
            self.state = SessionState.TERMINATED
            logger.warning("Session %s interpreter exited unexpectedly", self.session_id)

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stream = self._process.stderr
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while chunk := await stream.read(_READ_CHUNK_SIZE):
            text = decoder.decode(chunk)
            self._stderr_total += len(text)
            self._stderr = (self._stderr + text)[-MAX_STDERR_BUFFER:]

    def _stderr_since(self, mark: int) -> str:
        produced = self._stderr_total - mark
        if produced <= 0:
            return ""
        return self._stderr[-produced:].strip()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def idle_seconds(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_used

    def get_stats(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "busy": self.busy,
            "alive": self.is_alive(),
            "interpreter": self.dialect.name,
            "pid": self.pid,
            "created_at": self.created_at.isoformat(),
            "idle_seconds": round(self.idle_seconds(), 3),
            "execution_count": self.execution_count,
        }

    def __repr__(self) -> str:
        return f"ExecutionSession(id={self.session_id!r}, state={self.state.value}, busy={self.busy})"


__all__ = [
    "ExecutionResult",
    "ExecutionSession",
    "SessionState",
]
