"""
Session Pool - keyed collection of execution sessions.

Owns every ExecutionSession in the process. Sessions are created on first use
of a key, reused while alive, evicted least-recently-used when a new one is
needed at capacity, and reaped by a background task once idle. The pool is
the only entry point the gateway uses: it validates code before any
subprocess is touched and turns prompts into code through an injected
generator.

All mutation of the collection happens under one asyncio.Lock; subprocess I/O
(start, execute, terminate) happens outside it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from rsandbox.core.codegen import generate_r_code
from rsandbox.core.constants import (
    AVAILABILITY_CHECK_TIMEOUT,
    DEFAULT_EXECUTION_TIMEOUT,
    DEFAULT_MAX_MEMORY,
    DEFAULT_MAX_SESSIONS,
    DEFAULT_REAP_INTERVAL,
    DEFAULT_SESSION_TIMEOUT,
    DEFAULT_START_TIMEOUT,
    MAX_CODE_LENGTH,
)
from rsandbox.core.dialects import InterpreterDialect, RDialect
from rsandbox.core.exceptions import (
    ExecutionCancelledError,
    ExecutionFailedError,
    ExecutionTimeoutError,
    InterpreterUnavailableError,
    PoolSaturatedError,
    UnsafeCodeError,
)
from rsandbox.core.session import ExecutionResult, ExecutionSession
from rsandbox.core.validator import CodeValidator
from rsandbox.utils.metrics import (
    execution_duration_seconds,
    executions_total,
    sessions_active,
    sessions_reaped_total,
    validation_rejections_total,
)

logger = logging.getLogger(__name__)

#: Turns a natural-language prompt and a dataset into source code
CodeGenerator = Callable[[str, Sequence[Mapping[str, Any]]], str]

#: Builds an unstarted session for a key
SessionFactory = Callable[[str], ExecutionSession]

# ============================================
# DATA CLASSES
# ============================================


@dataclass
class ExecuteOptions:
    """Per-call execution options."""

    timeout: float | None = None
    data: list[dict[str, Any]] | None = None
    variable_name: str = "data"


@dataclass(frozen=True)
class PromptExecution:
    """A prompt run: the generated code (kept for audit) and its result."""

    code: str
    result: ExecutionResult


# ============================================
# SESSION POOL
# ============================================


class SessionPool:
    """Bounded pool of interpreter sessions keyed by client session id.

    Admission control: when a new session is needed and the pool is full, the
    least-recently-used non-busy session is evicted. If every session is busy
    the request fails with PoolSaturatedError and nothing is spawned.
    """

    def __init__(
        self,
        *,
        dialect: InterpreterDialect | None = None,
        max_code_length: int = MAX_CODE_LENGTH,
        code_generator: CodeGenerator = generate_r_code,
        executable: str | None = None,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
        reap_interval: float = DEFAULT_REAP_INTERVAL,
        execution_timeout: float = DEFAULT_EXECUTION_TIMEOUT,
        start_timeout: float = DEFAULT_START_TIMEOUT,
        max_memory: str = DEFAULT_MAX_MEMORY,
        session_factory: SessionFactory | None = None,
    ) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")

        self.dialect = dialect or RDialect()
        self.validator = CodeValidator(max_code_length=max_code_length, rules=self.dialect.rules)
        self.code_generator = code_generator
        self.executable = executable or self.dialect.default_executable
        self.max_sessions = max_sessions
        self.session_timeout = session_timeout
        self.reap_interval = reap_interval
        self.execution_timeout = execution_timeout
        self.start_timeout = start_timeout
        self.max_memory = max_memory
        self._session_factory = session_factory or self._new_session

        self._sessions: dict[str, ExecutionSession] = {}
        self._creation_locks: dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()
        self._available = False
        self._reaper_task: asyncio.Task[None] | None = None

    def _new_session(self, session_id: str) -> ExecutionSession:
        return ExecutionSession(
            session_id,
            dialect=self.dialect,
            executable=self.executable,
            timeout=self.execution_timeout,
            max_memory=self.max_memory,
            start_timeout=self.start_timeout,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Check for the interpreter and start the reaper.

        A missing interpreter leaves the pool unavailable; start-up carries on
        in degraded mode and every execution fails with
        InterpreterUnavailableError.
        """
        self._available = await self._check_interpreter()
        if self._available:
            logger.info(f"{self.dialect.display_name} interpreter available ({self.executable})")
            self.start_reaper()
        else:
            logger.warning(
                f"{self.dialect.display_name} interpreter not available ({self.executable}); "
                "running in degraded mode"
            )

    async def _check_interpreter(self) -> bool:
        argv = self.dialect.version_argv(self.executable)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning("Interpreter check failed to spawn %s: %s", argv[0], e)
            return False

        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=AVAILABILITY_CHECK_TIMEOUT)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            logger.warning("Interpreter check timed out")
            return False
        return returncode == 0

    def start_reaper(self) -> None:
        """Start the background task that removes idle and dead sessions."""
        if self._reaper_task is None:
            self._reaper_task = asyncio.create_task(self._reap_loop(), name="session-pool-reaper")
            logger.info(f"Session reaper started (interval: {self.reap_interval}s, idle: {self.session_timeout}s)")

    async def stop_reaper(self) -> None:
        if self._reaper_task:
            self._reaper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reaper_task
            self._reaper_task = None
            logger.info("Session reaper stopped")

    async def cleanup(self) -> None:
        """Stop the reaper and terminate every session, busy or not."""
        await self.stop_reaper()
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._creation_locks.clear()
            sessions_active.set(0)

        if sessions:
            logger.info(f"Terminating {len(sessions)} session(s)")
            await asyncio.gather(*(session.terminate() for session in sessions))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def get_or_create_session(self, session_id: str) -> ExecutionSession:
        """Return the live session for `session_id`, starting one if needed.

        Raises:
            PoolSaturatedError: The pool is full and every session is busy.
            SessionStartError: The interpreter could not be started.
        """
        dead: ExecutionSession | None = None
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                if session.is_alive():
                    return session
                dead = self._sessions.pop(session_id)
                sessions_reaped_total.labels(reason="dead").inc()
                sessions_active.set(len(self._sessions))
            creation_lock = self._creation_locks.setdefault(session_id, asyncio.Lock())

        if dead is not None:
            logger.info(f"Replacing dead session {session_id}")
            await dead.terminate()

        # One spawn per key; other keys proceed in parallel
        async with creation_lock:
            async with self._lock:
                session = self._sessions.get(session_id)
                if session is not None and session.is_alive():
                    return session
                if len(self._sessions) >= self.max_sessions and self._lru_idle_session() is None:
                    raise PoolSaturatedError(self.max_sessions)

            session = self._session_factory(session_id)
            try:
                await session.start()
            except asyncio.CancelledError:
                await session.terminate()
                raise

            evicted: ExecutionSession | None = None
            async with self._lock:
                if len(self._sessions) >= self.max_sessions:
                    evicted = self._lru_idle_session()
                    if evicted is not None:
                        del self._sessions[evicted.session_id]
                        sessions_reaped_total.labels(reason="evicted").inc()
                admitted = len(self._sessions) < self.max_sessions
                if admitted:
                    self._sessions[session_id] = session
                    sessions_active.set(len(self._sessions))

            # Every session went busy while this one was starting
            if not admitted:
                await session.terminate()
                raise PoolSaturatedError(self.max_sessions)

        if evicted is not None:
            logger.info(f"Evicted least recently used session {evicted.session_id}")
            await evicted.terminate()

        return session

    def _lru_idle_session(self) -> ExecutionSession | None:
        """Least recently used non-busy session; ties go to insertion order."""
        candidate: ExecutionSession | None = None
        for session in self._sessions.values():
            if session.busy:
                continue
            if candidate is None or session.last_used < candidate.last_used:
                candidate = session
        return candidate

    def get_session(self, session_id: str) -> ExecutionSession | None:
        return self._sessions.get(session_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_code(
        self,
        session_id: str,
        code: str,
        options: ExecuteOptions | None = None,
    ) -> ExecutionResult:
        """Validate `code` and run it in the session for `session_id`.

        The dataset in `options.data`, when given, is bound to
        `options.variable_name` ahead of the code.

        Raises:
            InterpreterUnavailableError: The pool is in degraded mode.
            UnsafeCodeError: The validator rejected the code. No subprocess
                was touched.
        """
        options = options or ExecuteOptions()
        if not self._available:
            raise InterpreterUnavailableError(self.dialect.display_name)

        verdict = self.validator.validate(code)
        if not verdict.safe:
            validation_rejections_total.labels(category=verdict.category or "unknown").inc()
            executions_total.labels(outcome="rejected").inc()
            logger.info(f"Rejected code for session {session_id}: {verdict.reason}")
            raise UnsafeCodeError(verdict.reason or "rejected by validator", verdict.category)

        program = code
        if options.data:
            program = f"{self.dialect.data_load(options.data, options.variable_name)}\n{code}"

        session = await self.get_or_create_session(session_id)
        try:
            result = await session.execute(program, timeout=options.timeout)
        except ExecutionTimeoutError:
            executions_total.labels(outcome="timeout").inc()
            raise
        except ExecutionCancelledError:
            executions_total.labels(outcome="cancelled").inc()
            raise
        except ExecutionFailedError:
            executions_total.labels(outcome="failed").inc()
            raise

        executions_total.labels(outcome="completed").inc()
        execution_duration_seconds.observe(result.execution_time_ms / 1000)
        return result

    async def execute_prompt(
        self,
        session_id: str,
        prompt: str,
        data: Sequence[Mapping[str, Any]],
        options: ExecuteOptions | None = None,
    ) -> PromptExecution:
        """Expand `prompt` into code against `data` and execute it."""
        options = options or ExecuteOptions()
        code = self.code_generator(prompt, data)
        run_options = ExecuteOptions(
            timeout=options.timeout,
            data=[dict(row) for row in data],
            variable_name=options.variable_name,
        )
        result = await self.execute_code(session_id, code, run_options)
        return PromptExecution(code=code, result=result)

    async def cancel_execution(self, session_id: str) -> bool:
        """Terminate and drop the session; an in-flight execute fails as cancelled.

        Returns:
            True if a session existed for the key.
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            sessions_active.set(len(self._sessions))
        if session is None:
            return False

        sessions_reaped_total.labels(reason="cancelled").inc()
        logger.info(f"Cancelling session {session_id}")
        await session.terminate()
        return True

    # ------------------------------------------------------------------
    # Reaper
    # ------------------------------------------------------------------

    async def _reap_loop(self) -> None:
        while True:
            await asyncio.sleep(self.reap_interval)
            try:
                await self.reap_idle_sessions()
            except Exception:
                logger.exception("Session reaper sweep failed")

    async def reap_idle_sessions(self) -> int:
        """Remove dead sessions and non-busy sessions idle past the timeout.

        Returns:
            Number of sessions removed.
        """
        now = time.monotonic()
        reaped: list[tuple[ExecutionSession, str]] = []

        async with self._lock:
            for session_id, session in list(self._sessions.items()):
                if session.busy:
                    continue
                if not session.is_alive():
                    reason = "dead"
                elif session.idle_seconds(now) > self.session_timeout:
                    reason = "idle"
                else:
                    continue
                del self._sessions[session_id]
                reaped.append((session, reason))

            for session_id, lock in list(self._creation_locks.items()):
                if session_id not in self._sessions and not lock.locked():
                    del self._creation_locks[session_id]
            sessions_active.set(len(self._sessions))

        for session, reason in reaped:
            sessions_reaped_total.labels(reason=reason).inc()
            logger.info(f"Reaping {reason} session {session.session_id}")
            await session.terminate()
        return len(reaped)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return self._available

    def get_active_session_count(self) -> int:
        return len(self._sessions)

    def get_session_stats(self) -> dict[str, Any]:
        return {
            "available": self._available,
            "interpreter": self.dialect.name,
            "active_sessions": len(self._sessions),
            "max_sessions": self.max_sessions,
            "busy_sessions": sum(1 for session in self._sessions.values() if session.busy),
            "session_timeout": self.session_timeout,
            "sessions": [session.get_stats() for session in self._sessions.values()],
        }


__all__ = [
    "CodeGenerator",
    "ExecuteOptions",
    "PromptExecution",
    "SessionFactory",
    "SessionPool",
]
