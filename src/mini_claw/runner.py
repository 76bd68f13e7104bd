from __future__ import annotations

import asyncio
import codecs
import inspect
import logging
import os
import signal
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Union

from claw_core.config import (
    DEFAULT_AGENT_COMMAND,
    DEFAULT_AGENT_TIMEOUT_SECONDS,
    DEFAULT_THINKING_LEVEL,
    parse_thinking_level,
)
from claw_core.paths import default_agent_dir

from .activity import ACTIVITY_WORKING, ActivityEvent, classify
from .locks import ConversationLockTable
from .transcript import transcript_line_count

LOGGER = logging.getLogger("mini_claw.runner")

ConversationKey = Union[int, str]
ActivitySink = Callable[[ActivityEvent], Union[Awaitable[None], None]]

NO_OUTPUT_PLACEHOLDER = "(no output)"
ERROR_OUTPUT_PLACEHOLDER = "Error occurred"
SPAWN_FAILURE_PREFIX = "Failed to start Pi: "
TIMEOUT_ERROR = "Timeout: Pi took too long"

REASON_EXIT = "exit"
REASON_NONZERO_EXIT = "nonzero_exit"
REASON_SPAWN_FAILURE = "spawn_failure"
REASON_TIMEOUT = "timeout"

AGENT_DIR_ENV = "PI_AGENT_DIR"
ATTACHMENT_PREFIX = "@"
HEARTBEAT_INTERVAL_SECONDS = 5.0
HEARTBEAT_IDLE_SECONDS = 5
TERMINATE_GRACE_SECONDS = 5.0
READ_CHUNK_BYTES = 4096

SHELL_TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class RunRequest:
    key: ConversationKey
    prompt: str
    workspace: Path
    transcript_path: Path
    attachments: tuple[Path, ...] = ()
    thinking: str = DEFAULT_THINKING_LEVEL
    timeout: float = DEFAULT_AGENT_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        object.__setattr__(self, "workspace", Path(self.workspace))
        object.__setattr__(self, "transcript_path", Path(self.transcript_path))
        object.__setattr__(self, "attachments", tuple(Path(item) for item in self.attachments))
        object.__setattr__(self, "thinking", parse_thinking_level(self.thinking, label="thinking"))


@dataclass(frozen=True)
class RunResult:
    output: str
    error: str | None = None
    reason: str = REASON_EXIT
    transcript_offset: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ShellResult:
    stdout: str
    stderr: str
    code: int | None


class _ActivityStream:
    """Ordered delivery of activity events to one observer.

    Producers stamp and enqueue synchronously; a single dispatcher awaits the
    observer, so delivery order is enqueue order.
    """

    def __init__(self, sink: ActivitySink | None, *, started_at: float, clock: Callable[[], float]) -> None:
        self._sink = sink
        self._started_at = started_at
        self._clock = clock
        self._queue: asyncio.Queue[ActivityEvent | None] = asyncio.Queue()
        self._closed = False
        self.last_classified: ActivityEvent | None = None
        self._dispatcher = asyncio.create_task(self._dispatch())

    def elapsed(self) -> int:
        return int(self._clock() - self._started_at)

    def classified(self, line: str) -> None:
        event = classify(line)
        if event is None or self._closed:
            return
        stamped = event.at(self.elapsed())
        self.last_classified = stamped
        self._queue.put_nowait(stamped)

    def heartbeat(self) -> None:
        if self._closed:
            return
        elapsed = self.elapsed()
        last = self.last_classified
        if last is None or elapsed - last.elapsed > HEARTBEAT_IDLE_SECONDS:
            self._queue.put_nowait(ActivityEvent(category=ACTIVITY_WORKING, detail="", elapsed=elapsed))

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)
        await self._dispatcher

    async def _dispatch(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            if self._sink is None:
                continue
            try:
                outcome = self._sink(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                LOGGER.warning(
                    "Activity observer failed for %s event",
                    event.category,
                    exc_info=True,
                    extra={"component": "runner", "operation": "activity", "result": "observer_error"},
                )


class PiRunner:
    """Runs the agent once per turn under the conversation lock."""

    def __init__(
        self,
        *,
        locks: ConversationLockTable,
        command: str = DEFAULT_AGENT_COMMAND,
        agent_dir: Path | None = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        terminate_grace: float = TERMINATE_GRACE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._locks = locks
        self._command = str(command)
        self._agent_dir = Path(agent_dir) if agent_dir is not None else default_agent_dir()
        self._heartbeat_interval = float(heartbeat_interval)
        self._terminate_grace = float(terminate_grace)
        self._clock = clock
        self._reapers: set[asyncio.Task[Any]] = set()

    @property
    def locks(self) -> ConversationLockTable:
        return self._locks

    def build_command(self, request: RunRequest) -> list[str]:
        args = [
            self._command,
            "--session",
            str(request.transcript_path),
            "--print",
            "--thinking",
            request.thinking,
        ]
        for attachment in request.attachments:
            args.append(f"{ATTACHMENT_PREFIX}{attachment}")
        args.append(request.prompt)
        return args

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env[AGENT_DIR_ENV] = str(self._agent_dir)
        return env

    async def run(self, request: RunRequest, on_activity: ActivitySink | None = None) -> RunResult:
        async with self._locks.hold(request.key):
            started_at = self._clock()
            LOGGER.info(
                "Agent run started",
                extra={"chat_id": str(request.key), "component": "runner", "operation": "agent_run", "result": "started"},
            )
            watermark = transcript_line_count(request.transcript_path)
            result = await self._run_locked(request, on_activity, started_at=started_at)
            result = replace(result, transcript_offset=watermark)
            duration_ms = int((self._clock() - started_at) * 1000)
            log_extra = {
                "chat_id": str(request.key),
                "component": "runner",
                "operation": "agent_run",
                "result": result.reason,
                "duration_ms": duration_ms,
                "error_class": "" if result.ok else result.reason,
            }
            if result.ok:
                LOGGER.info("Agent run finished", extra=log_extra)
            else:
                LOGGER.warning("Agent run failed: %s", result.error, extra=log_extra)
            return result

    async def _run_locked(
        self,
        request: RunRequest,
        on_activity: ActivitySink | None,
        *,
        started_at: float,
    ) -> RunResult:
        try:
            request.transcript_path.parent.mkdir(parents=True, exist_ok=True)
            process = await asyncio.create_subprocess_exec(
                *self.build_command(request),
                cwd=str(request.workspace),
                env=self.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            return RunResult(output="", error=f"{SPAWN_FAILURE_PREFIX}{exc}", reason=REASON_SPAWN_FAILURE)

        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[RunResult] = loop.create_future()
        stream = _ActivityStream(on_activity, started_at=started_at, clock=self._clock)
        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        # Pieces of the current unterminated line.
        pending: list[str] = []

        def settle(result: RunResult) -> None:
            if not outcome.done():
                outcome.set_result(result)

        async def pump_stdout() -> None:
            assert process.stdout is not None
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while True:
                chunk = await process.stdout.read(READ_CHUNK_BYTES)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                stdout_parts.append(text)
                if "\n" not in text:
                    pending.append(text)
                    continue
                lines = text.split("\n")
                pending.append(lines[0])
                stream.classified("".join(pending))
                pending.clear()
                for line in lines[1:-1]:
                    stream.classified(line)
                if lines[-1]:
                    pending.append(lines[-1])
            tail = decoder.decode(b"", final=True)
            if tail:
                stdout_parts.append(tail)
                pending.append(tail)

        async def pump_stderr() -> None:
            assert process.stderr is not None
            data = await process.stderr.read()
            stderr_parts.append(data.decode("utf-8", errors="replace"))

        async def heartbeat() -> None:
            while True:
                await asyncio.sleep(self._heartbeat_interval)
                stream.heartbeat()

        heartbeat_task = asyncio.create_task(heartbeat())

        async def await_exit() -> None:
            await asyncio.gather(pump_stdout(), pump_stderr())
            code = await process.wait()
            if outcome.done():
                return
            heartbeat_task.cancel()
            if pending:
                stream.classified("".join(pending))
                pending.clear()
            stdout = "".join(stdout_parts)
            stderr = "".join(stderr_parts)
            if code != 0 and stderr:
                settle(RunResult(output=stdout or ERROR_OUTPUT_PLACEHOLDER, error=stderr, reason=REASON_NONZERO_EXIT))
                return
            if stderr:
                LOGGER.warning(
                    "Agent exited with code %s and wrote to stderr: %s",
                    code,
                    stderr.strip()[:500],
                    extra={"chat_id": str(request.key), "component": "runner", "operation": "agent_run"},
                )
            settle(RunResult(output=stdout or NO_OUTPUT_PLACEHOLDER, reason=REASON_EXIT))

        exit_task = asyncio.create_task(await_exit())
        remaining = max(0.0, float(request.timeout) - (self._clock() - started_at))
        try:
            await asyncio.wait({outcome, exit_task}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            if exit_task.done() and not outcome.done():
                # Pipe or wait failure surfaced from the exit watcher.
                exit_task.result()
            if not outcome.done():
                self._terminate(process)
                heartbeat_task.cancel()
                settle(RunResult(output="".join(stdout_parts), error=TIMEOUT_ERROR, reason=REASON_TIMEOUT))
                self._reap_in_background(process, exit_task, key=request.key)
        finally:
            heartbeat_task.cancel()
            if not outcome.done():
                self._terminate(process)
                self._reap_in_background(process, exit_task, key=request.key)
            await stream.close()
        return outcome.result()

    def _terminate(self, process: asyncio.subprocess.Process) -> None:
        _signal_process_group(process, signal.SIGTERM)

    def _reap_in_background(
        self,
        process: asyncio.subprocess.Process,
        exit_task: asyncio.Task[None],
        *,
        key: ConversationKey,
    ) -> None:
        task = asyncio.create_task(
            _kill_after_grace(
                process,
                exit_task,
                grace=self._terminate_grace,
                log_extra={"chat_id": str(key), "component": "runner", "operation": "reap"},
            )
        )
        self._reapers.add(task)
        task.add_done_callback(self._reapers.discard)

    async def drain(self) -> None:
        """Wait for processes terminated after a timeout to be reaped."""
        while self._reapers:
            await asyncio.gather(*list(self._reapers), return_exceptions=True)


def _signal_process_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    # Children share the leader's session, so signalling the group reaches them too.
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        return
    except PermissionError:
        if process.returncode is None:
            process.send_signal(sig)


async def _kill_after_grace(
    process: asyncio.subprocess.Process,
    exited: asyncio.Task[Any],
    *,
    grace: float,
    log_extra: dict[str, Any],
) -> None:
    """Wait for a SIGTERMed process group to exit, escalating to SIGKILL after ``grace`` seconds."""
    try:
        await asyncio.wait_for(asyncio.shield(exited), timeout=grace)
    except asyncio.TimeoutError:
        LOGGER.warning(
            "pid %s ignored SIGTERM for %ss; sending SIGKILL",
            process.pid,
            grace,
            extra={**log_extra, "result": "killed"},
        )
        _signal_process_group(process, signal.SIGKILL)
        await exited


_SHELL_REAPERS: set[asyncio.Task[Any]] = set()


async def probe_agent(command: str = DEFAULT_AGENT_COMMAND) -> bool:
    """Return True when ``<command> --version`` exits 0."""
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        LOGGER.warning(
            "Agent probe failed to start: %s",
            exc,
            extra={"component": "runner", "operation": "probe", "result": "spawn_failure"},
        )
        return False
    await process.communicate()
    return process.returncode == 0


async def run_shell(
    command: str,
    cwd: Path,
    timeout: float,
    *,
    shell: Sequence[str] = ("bash", "-c"),
    terminate_grace: float = TERMINATE_GRACE_SECONDS,
) -> ShellResult:
    try:
        process = await asyncio.create_subprocess_exec(
            *shell,
            command,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        return ShellResult(stdout="", stderr=str(exc), code=1)

    stdout_parts: list[bytes] = []
    stderr_parts: list[bytes] = []

    async def collect(stream: asyncio.StreamReader | None, parts: list[bytes]) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                return
            parts.append(chunk)

    async def finish() -> int:
        await asyncio.gather(collect(process.stdout, stdout_parts), collect(process.stderr, stderr_parts))
        return await process.wait()

    finish_task = asyncio.create_task(finish())
    done, _ = await asyncio.wait({finish_task}, timeout=timeout)
    stdout = b"".join(stdout_parts).decode("utf-8", errors="replace")
    stderr = b"".join(stderr_parts).decode("utf-8", errors="replace")
    if finish_task in done:
        return ShellResult(stdout=stdout, stderr=stderr, code=finish_task.result())

    _signal_process_group(process, signal.SIGTERM)
    LOGGER.warning(
        "Shell command timed out after %ss",
        timeout,
        extra={"component": "runner", "operation": "shell", "result": "timeout"},
    )
    reaper = asyncio.create_task(
        _kill_after_grace(
            process,
            finish_task,
            grace=terminate_grace,
            log_extra={"component": "runner", "operation": "shell"},
        )
    )
    _SHELL_REAPERS.add(reaper)
    reaper.add_done_callback(_SHELL_REAPERS.discard)
    return ShellResult(stdout=stdout, stderr=f"{stderr}\n(timeout)", code=SHELL_TIMEOUT_EXIT_CODE)


async def drain_shell_commands() -> None:
    """Wait until timed-out shell commands have been killed and reaped."""
    while _SHELL_REAPERS:
        await asyncio.gather(*list(_SHELL_REAPERS), return_exceptions=True)


__all__ = [
    "ActivitySink",
    "ConversationKey",
    "ERROR_OUTPUT_PLACEHOLDER",
    "NO_OUTPUT_PLACEHOLDER",
    "PiRunner",
    "REASON_EXIT",
    "REASON_NONZERO_EXIT",
    "REASON_SPAWN_FAILURE",
    "REASON_TIMEOUT",
    "RunRequest",
    "RunResult",
    "SHELL_TIMEOUT_EXIT_CODE",
    "SPAWN_FAILURE_PREFIX",
    "ShellResult",
    "TIMEOUT_ERROR",
    "drain_shell_commands",
    "probe_agent",
    "run_shell",
]
