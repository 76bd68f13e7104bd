from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11
    import tomli as tomllib

from claw_core.errors import ConfigError
from claw_core.paths import RelayPaths, default_agent_dir, resolve_relay_paths


_SECTION_KEYS = ("agent", "paths", "limits", "logging")
THINKING_LEVEL_LOW = "low"
THINKING_LEVEL_MEDIUM = "medium"
THINKING_LEVEL_HIGH = "high"
THINKING_LEVEL_CHOICES = (
    THINKING_LEVEL_LOW,
    THINKING_LEVEL_MEDIUM,
    THINKING_LEVEL_HIGH,
)
DEFAULT_THINKING_LEVEL = THINKING_LEVEL_LOW
DEFAULT_AGENT_COMMAND = "pi"
DEFAULT_AGENT_TIMEOUT_SECONDS = 5 * 60.0
DEFAULT_SHELL_TIMEOUT_SECONDS = 60.0
DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS = 5.0


def _ensure_dict(value: object, *, label: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{label} must be a table/object.")
    return dict(value)


def _ensure_optional_str(value: object, *, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{label} must be a string.")
    return value


def _ensure_positive_seconds(value: object, *, label: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{label} must be a number of seconds.")
    if value <= 0:
        raise ConfigError(f"{label} must be greater than zero.")
    return float(value)


def _ensure_non_negative_seconds(value: object, *, label: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{label} must be a number of seconds.")
    if value < 0:
        raise ConfigError(f"{label} must not be negative.")
    return float(value)


def parse_thinking_level(value: object, *, label: str = "agent.thinking") -> str:
    if value is None:
        return DEFAULT_THINKING_LEVEL
    if not isinstance(value, str):
        raise ConfigError(f"{label} must be one of: {', '.join(THINKING_LEVEL_CHOICES)}.")
    resolved = value.strip().lower()
    if resolved not in THINKING_LEVEL_CHOICES:
        raise ConfigError(f"{label} must be one of: {', '.join(THINKING_LEVEL_CHOICES)}.")
    return resolved


@dataclass(frozen=True)
class AgentConfig:
    command: str = DEFAULT_AGENT_COMMAND
    thinking: str = DEFAULT_THINKING_LEVEL
    timeout_seconds: float = DEFAULT_AGENT_TIMEOUT_SECONDS
    shell_timeout_seconds: float = DEFAULT_SHELL_TIMEOUT_SECONDS
    agent_dir: Path = field(default_factory=default_agent_dir)


@dataclass(frozen=True)
class LimitsConfig:
    rate_limit_cooldown_seconds: float = DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS


@dataclass(frozen=True)
class LoggingConfig:
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RelayConfig:
    agent: AgentConfig = field(default_factory=AgentConfig)
    paths: RelayPaths = field(default_factory=lambda: resolve_relay_paths(None))
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | dict[str, Any]) -> "RelayConfig":
        if not isinstance(payload, Mapping):
            raise ConfigError("Config payload root must be a table/object.")

        raw = dict(payload)
        paths_raw = _ensure_dict(raw.get("paths"), label="section 'paths'")
        for key, value in paths_raw.items():
            _ensure_optional_str(value, label=f"paths.{key}")
        logging = LoggingConfig(values=_ensure_dict(raw.get("logging"), label="section 'logging'"))

        extras = {k: v for k, v in raw.items() if k not in _SECTION_KEYS}
        return cls(
            agent=_parse_agent(raw),
            paths=resolve_relay_paths(paths_raw),
            limits=_parse_limits(raw),
            logging=logging,
            extras=extras,
        )

    @classmethod
    def from_toml_path(cls, path: str | Path) -> "RelayConfig":
        config_path = Path(path)
        try:
            raw = config_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Unable to read config file {config_path}: {exc}") from exc
        try:
            parsed = tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc
        return cls.from_dict(parsed)


def _parse_agent(raw_root: dict[str, Any]) -> AgentConfig:
    agent_raw = _ensure_dict(raw_root.get("agent"), label="section 'agent'")
    command = _ensure_optional_str(agent_raw.get("command"), label="agent.command")
    if command is not None and not command.strip():
        raise ConfigError("agent.command must not be empty.")
    agent_dir = _ensure_optional_str(agent_raw.get("agent_dir"), label="agent.agent_dir")
    return AgentConfig(
        command=(command or DEFAULT_AGENT_COMMAND).strip(),
        thinking=parse_thinking_level(agent_raw.get("thinking")),
        timeout_seconds=_ensure_positive_seconds(
            agent_raw.get("timeout_seconds"),
            label="agent.timeout_seconds",
            default=DEFAULT_AGENT_TIMEOUT_SECONDS,
        ),
        shell_timeout_seconds=_ensure_positive_seconds(
            agent_raw.get("shell_timeout_seconds"),
            label="agent.shell_timeout_seconds",
            default=DEFAULT_SHELL_TIMEOUT_SECONDS,
        ),
        agent_dir=Path(agent_dir).expanduser() if agent_dir and agent_dir.strip() else default_agent_dir(),
    )


def _parse_limits(raw_root: dict[str, Any]) -> LimitsConfig:
    limits_raw = _ensure_dict(raw_root.get("limits"), label="section 'limits'")
    return LimitsConfig(
        rate_limit_cooldown_seconds=_ensure_non_negative_seconds(
            limits_raw.get("rate_limit_cooldown_seconds"),
            label="limits.rate_limit_cooldown_seconds",
            default=DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS,
        )
    )


def load_relay_config(path: str | Path) -> RelayConfig:
    return RelayConfig.from_toml_path(path)


def load_relay_config_dict(payload: Mapping[str, Any] | dict[str, Any]) -> RelayConfig:
    return RelayConfig.from_dict(payload)


__all__ = [
    "AgentConfig",
    "DEFAULT_AGENT_COMMAND",
    "DEFAULT_AGENT_TIMEOUT_SECONDS",
    "DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS",
    "DEFAULT_SHELL_TIMEOUT_SECONDS",
    "DEFAULT_THINKING_LEVEL",
    "LimitsConfig",
    "LoggingConfig",
    "RelayConfig",
    "THINKING_LEVEL_CHOICES",
    "THINKING_LEVEL_HIGH",
    "THINKING_LEVEL_LOW",
    "THINKING_LEVEL_MEDIUM",
    "load_relay_config",
    "load_relay_config_dict",
    "parse_thinking_level",
]
