from __future__ import annotations

from .config import (
    DEFAULT_THINKING_LEVEL,
    THINKING_LEVEL_CHOICES,
    RelayConfig,
    load_relay_config,
    load_relay_config_dict,
    parse_thinking_level,
)
from .errors import (
    ConfigError,
    NotADirectoryWorkspaceError,
    RateLimitedError,
    TypedRelayError,
    WorkspaceNotFoundError,
)
from .paths import RelayPaths, default_data_dir, resolve_relay_paths, transcript_filename

__all__ = [
    "ConfigError",
    "DEFAULT_THINKING_LEVEL",
    "NotADirectoryWorkspaceError",
    "RateLimitedError",
    "RelayConfig",
    "RelayPaths",
    "THINKING_LEVEL_CHOICES",
    "TypedRelayError",
    "WorkspaceNotFoundError",
    "default_data_dir",
    "load_relay_config",
    "load_relay_config_dict",
    "parse_thinking_level",
    "resolve_relay_paths",
    "transcript_filename",
]
