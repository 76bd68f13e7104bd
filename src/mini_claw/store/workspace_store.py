from __future__ import annotations

import json
import logging
from collections.abc import Hashable
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock

from claw_core.errors import NotADirectoryWorkspaceError, WorkspaceNotFoundError

LOGGER = logging.getLogger("mini_claw.store")


def format_path(path: Path | str, *, home: Path | None = None) -> str:
    resolved_home = str(home or Path.home())
    text = str(path)
    if text == resolved_home:
        return "~"
    if text.startswith(f"{resolved_home}/"):
        return f"~{text[len(resolved_home):]}"
    return text


class WorkspaceStore:
    """Per-conversation working directory, persisted as a JSON object keyed by chat id."""

    def __init__(
        self,
        *,
        state_file: Path,
        default_workspace: Path,
        home: Path | None = None,
    ) -> None:
        self.state_file = Path(state_file)
        self._default_workspace = Path(default_workspace)
        self._home = Path(home) if home is not None else Path.home()
        self._lock = Lock()
        self._state: dict[str, str] | None = None

    def get(self, chat_id: Hashable) -> Path:
        state = self._load()
        configured = state.get(str(chat_id))
        if configured and Path(configured).is_dir():
            return Path(configured)
        return self._default_workspace

    def set(self, chat_id: Hashable, path: str) -> Path:
        raw = str(path or "").strip() or "~"
        if raw.startswith("~"):
            resolved = self._home / raw[1:].lstrip("/")
        elif raw.startswith("/"):
            resolved = Path(raw)
        else:
            resolved = self.get(chat_id) / raw
        resolved = resolved.resolve()
        if not resolved.exists():
            raise WorkspaceNotFoundError(f"Directory not found: {resolved}")
        if not resolved.is_dir():
            raise NotADirectoryWorkspaceError(f"Not a directory: {resolved}")

        state = self._load()
        with self._lock:
            state[str(chat_id)] = str(resolved)
            self._save_locked(state)
        return resolved

    def _load(self) -> dict[str, str]:
        with self._lock:
            if self._state is not None:
                return self._state
            self._state = {}
            if not self.state_file.exists():
                return self._state
            try:
                loaded = json.loads(self.state_file.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                self._preserve_corrupt_state_file_locked()
                return self._state
            if isinstance(loaded, dict):
                self._state = {str(key): str(value) for key, value in loaded.items() if isinstance(value, str)}
            else:
                self._preserve_corrupt_state_file_locked()
            return self._state

    def _save_locked(self, state: dict[str, str]) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        with self.state_file.open("w", encoding="utf-8") as fp:
            json.dump(state, fp, indent=2)

    def _preserve_corrupt_state_file_locked(self) -> Path | None:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        base_name = f"{self.state_file.name}.corrupt-{timestamp}"
        preserved_path = self.state_file.with_name(base_name)
        suffix = 1
        while preserved_path.exists():
            preserved_path = self.state_file.with_name(f"{base_name}.{suffix}")
            suffix += 1
        try:
            self.state_file.replace(preserved_path)
        except OSError as exc:
            LOGGER.warning(
                "Failed to preserve corrupt workspace state %s: %s",
                self.state_file,
                exc,
                extra={"component": "store", "operation": "load", "result": "corrupt"},
            )
            return None
        LOGGER.warning(
            "Workspace state was corrupt and was moved to %s",
            preserved_path,
            extra={"component": "store", "operation": "load", "result": "corrupt"},
        )
        return preserved_path
