from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

TRANSCRIPT_PREFIX = "telegram-"
TRANSCRIPT_SUFFIX = ".jsonl"


@dataclass(frozen=True)
class RelayPaths:
    data_dir: Path
    workspace: Path
    session_dir: Path

    @property
    def workspaces_file(self) -> Path:
        return self.data_dir / "workspaces.json"

    def transcript_path(self, chat_id: int | str) -> Path:
        return self.session_dir / transcript_filename(chat_id)


def transcript_filename(chat_id: int | str) -> str:
    return f"{TRANSCRIPT_PREFIX}{chat_id}{TRANSCRIPT_SUFFIX}"


def default_data_dir(home: Path | None = None) -> Path:
    resolved_home = (home or Path.home()).expanduser()
    return resolved_home / ".mini-claw"


def default_workspace_dir(home: Path | None = None) -> Path:
    resolved_home = (home or Path.home()).expanduser()
    return resolved_home / "mini-claw-workspace"


def default_agent_dir(home: Path | None = None) -> Path:
    resolved_home = (home or Path.home()).expanduser()
    return resolved_home / ".pi" / "agent"


def _configured_path(values: Mapping[str, Any] | None, key: str) -> Path | None:
    if values is None:
        return None
    configured = str(values.get(key) or "").strip()
    if not configured:
        return None
    return Path(configured).expanduser().resolve()


def resolve_relay_paths(paths_values: Mapping[str, Any] | None, *, home: Path | None = None) -> RelayPaths:
    data_dir = _configured_path(paths_values, "data_dir") or default_data_dir(home)
    workspace = _configured_path(paths_values, "workspace") or default_workspace_dir(home)
    session_dir = _configured_path(paths_values, "session_dir") or data_dir / "sessions"
    return RelayPaths(data_dir=data_dir, workspace=workspace, session_dir=session_dir)
