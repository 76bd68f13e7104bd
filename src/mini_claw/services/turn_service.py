from __future__ import annotations

import asyncio
import logging
from collections.abc import Hashable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from claw_core.errors import RateLimitedError
from claw_core.paths import RelayPaths

from mini_claw import file_detector
from mini_claw.file_detector import DetectedFile
from mini_claw.rate_limiter import RateLimiter
from mini_claw.runner import ActivitySink, PiRunner, RunRequest, RunResult, ShellResult, run_shell
from mini_claw.store import WorkspaceStore
from mini_claw.transcript import ExtractedImage, extract_images

LOGGER = logging.getLogger("mini_claw.turns")


@dataclass(frozen=True)
class TurnOutcome:
    result: RunResult
    images: list[ExtractedImage] = field(default_factory=list)
    files: list[DetectedFile] = field(default_factory=list)


class TurnService:
    """One conversation turn: snapshot, run under the lock, then collect side effects."""

    def __init__(
        self,
        *,
        runner: PiRunner,
        workspaces: WorkspaceStore,
        rate_limiter: RateLimiter,
        paths: RelayPaths,
        thinking: str,
        timeout_seconds: float,
        shell_timeout_seconds: float,
    ) -> None:
        self._runner = runner
        self._workspaces = workspaces
        self._rate_limiter = rate_limiter
        self._paths = paths
        self._thinking = thinking
        self._timeout_seconds = float(timeout_seconds)
        self._shell_timeout_seconds = float(shell_timeout_seconds)

    @property
    def workspaces(self) -> WorkspaceStore:
        return self._workspaces

    def transcript_path(self, chat_id: Hashable) -> Path:
        return self._paths.transcript_path(chat_id)

    def check_rate_limit(self, chat_id: Hashable) -> None:
        decision = self._rate_limiter.check(chat_id)
        if not decision.allowed:
            raise RateLimitedError(
                f"Please wait {decision.retry_after:.1f}s before sending another message.",
                retry_after_seconds=decision.retry_after,
            )

    def build_request(
        self,
        chat_id: Hashable,
        prompt: str,
        *,
        thinking: str | None = None,
        timeout_seconds: float | None = None,
        attachments: Sequence[Path | str] = (),
    ) -> RunRequest:
        return RunRequest(
            key=chat_id,
            prompt=prompt,
            workspace=self._workspaces.get(chat_id),
            transcript_path=self.transcript_path(chat_id),
            attachments=tuple(Path(item) for item in attachments),
            thinking=thinking or self._thinking,
            timeout=self._timeout_seconds if timeout_seconds is None else float(timeout_seconds),
        )

    async def run_turn(self, request: RunRequest, on_activity: ActivitySink | None = None) -> TurnOutcome:
        before = await asyncio.to_thread(file_detector.snapshot, request.workspace)
        result = await self._runner.run(request, on_activity)
        images = await asyncio.to_thread(extract_images, request.transcript_path, result.transcript_offset)
        files = await asyncio.to_thread(file_detector.detect_files, result.output, request.workspace, before)
        LOGGER.info(
            "Turn collected %s images and %s files",
            len(images),
            len(files),
            extra={"chat_id": str(request.key), "component": "turns", "operation": "collect", "result": result.reason},
        )
        return TurnOutcome(result=result, images=images, files=files)

    async def run_shell(self, chat_id: Hashable, command: str) -> ShellResult:
        return await run_shell(command, self._workspaces.get(chat_id), self._shell_timeout_seconds)


__all__ = ["TurnOutcome", "TurnService"]
