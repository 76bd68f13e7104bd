from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import click
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from claw_core import ConfigError, RelayConfig, load_relay_config
from claw_core import logging as core_logging
from claw_core.errors import TypedRelayError
from claw_core.paths import resolve_relay_paths
from mini_claw.api import register_relay_routes
from mini_claw.locks import ConversationLockTable
from mini_claw.rate_limiter import RateLimiter
from mini_claw.runner import PiRunner, probe_agent
from mini_claw.services.turn_service import TurnService
from mini_claw.store import WorkspaceStore

LOGGER = logging.getLogger("mini_claw")
LOGGER.addHandler(logging.NullHandler())

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8787


def _configure_relay_logging(level: str) -> None:
    core_logging.configure_structured_logger(LOGGER, level=core_logging.normalize_log_level(level))


def _resolve_log_level(log_level: str | None, config: RelayConfig | None) -> str:
    cli_value = str(log_level or "").strip()
    if cli_value:
        return core_logging.normalize_log_level(cli_value)
    config_value = ""
    if config is not None and isinstance(config.logging.values, dict):
        config_value = str(config.logging.values.get("level") or "").strip()
    if config_value:
        return core_logging.normalize_log_level(config_value)
    return "info"


def _configure_domain_log_levels(config: RelayConfig | None) -> None:
    if config is None or not isinstance(config.logging.values, dict):
        return
    core_logging.configure_domain_log_levels(
        domains=config.logging.values.get("domains"),
        logger_prefix="mini_claw",
    )


def _core_error_payload(exc: BaseException) -> tuple[int, dict[str, Any]]:
    if isinstance(exc, TypedRelayError):
        return exc.http_status, exc.payload()
    return 500, {"error_code": "INTERNAL_ERROR", "detail": str(exc)}


def _http_error_code(status_code: int) -> str:
    status = int(status_code or 500)
    if status == 400:
        return "BAD_REQUEST"
    if status == 404:
        return "NOT_FOUND"
    if status == 409:
        return "CONFLICT"
    if status == 422:
        return "UNPROCESSABLE_ENTITY"
    if status == 429:
        return "RATE_LIMITED"
    return "INTERNAL_ERROR"


def build_turn_service(config: RelayConfig, *, locks: ConversationLockTable | None = None) -> TurnService:
    runner = PiRunner(
        locks=locks or ConversationLockTable(),
        command=config.agent.command,
        agent_dir=config.agent.agent_dir,
    )
    return TurnService(
        runner=runner,
        workspaces=WorkspaceStore(
            state_file=config.paths.workspaces_file,
            default_workspace=config.paths.workspace,
        ),
        rate_limiter=RateLimiter(cooldown_seconds=config.limits.rate_limit_cooldown_seconds),
        paths=config.paths,
        thinking=config.agent.thinking,
        timeout_seconds=config.agent.timeout_seconds,
        shell_timeout_seconds=config.agent.shell_timeout_seconds,
    )


def create_app(config: RelayConfig, *, turns: TurnService | None = None) -> FastAPI:
    app = FastAPI()
    resolved_turns = turns or build_turn_service(config)
    app.state.turns = resolved_turns

    @app.exception_handler(TypedRelayError)
    async def _handle_typed_relay_error(_request: Request, exc: TypedRelayError) -> JSONResponse:
        status, payload = _core_error_payload(exc)
        return JSONResponse(status_code=status, content=payload, headers=exc.headers())

    @app.exception_handler(HTTPException)
    async def _handle_http_exception(_request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=int(exc.status_code or 500),
            content={"error_code": _http_error_code(int(exc.status_code or 500)), "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    async def _probe() -> bool:
        return await probe_agent(config.agent.command)

    register_relay_routes(app, turns=resolved_turns, logger=LOGGER, probe_agent=_probe)
    return app


def _load_config(config_file: Path | None, data_dir: Path | None) -> RelayConfig:
    if config_file is None:
        config = RelayConfig()
    else:
        config = load_relay_config(config_file)
    if data_dir is None:
        return config
    paths = resolve_relay_paths(
        {
            "data_dir": str(data_dir),
            "workspace": str(config.paths.workspace),
            "session_dir": str(data_dir / "sessions"),
        }
    )
    return RelayConfig(
        agent=config.agent,
        paths=paths,
        limits=config.limits,
        logging=config.logging,
        extras=config.extras,
    )


@click.command(help="Relay chat messages to the pi coding agent.")
@click.option("--config-file", default=None, type=click.Path(exists=True, dir_okay=False, path_type=Path), help="TOML config file.")
@click.option("--data-dir", default=None, type=click.Path(file_okay=False, path_type=Path), help="Directory for relay state and transcripts.")
@click.option("--host", default=DEFAULT_HOST, show_default=True)
@click.option("--port", default=DEFAULT_PORT, show_default=True, type=int)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(core_logging.LOG_LEVEL_CHOICES, case_sensitive=False),
    help="Overrides [logging].level from the config file.",
)
@click.option("--skip-probe", is_flag=True, default=False, help="Start even if the agent --version probe fails.")
def main(
    config_file: Path | None,
    data_dir: Path | None,
    host: str,
    port: int,
    log_level: str | None,
    skip_probe: bool,
) -> None:
    try:
        config = _load_config(config_file, data_dir)
    except ConfigError as exc:
        click.echo(
            json.dumps(
                {
                    "event": "mini_claw_config_load_error",
                    "config_path": str(config_file or ""),
                    "error": str(exc),
                },
                sort_keys=True,
            ),
            err=True,
        )
        raise click.ClickException(str(exc)) from exc

    normalized_log_level = _resolve_log_level(log_level, config)
    _configure_relay_logging(normalized_log_level)
    _configure_domain_log_levels(config)

    for directory in (config.paths.workspace, config.paths.session_dir):
        directory.mkdir(parents=True, exist_ok=True)
    LOGGER.info(
        "Workspace: %s session dir: %s",
        config.paths.workspace,
        config.paths.session_dir,
        extra={"component": "startup", "operation": "paths", "result": "resolved"},
    )

    if not skip_probe and not asyncio.run(probe_agent(config.agent.command)):
        raise click.ClickException(
            f"{config.agent.command} is not installed or not authenticated. "
            f"Run '{config.agent.command} /login' to authenticate with an AI provider."
        )

    LOGGER.info(
        "Starting mini-claw host=%s port=%s log_level=%s",
        host,
        port,
        normalized_log_level,
        extra={"component": "startup", "operation": "relay_start", "result": "started"},
    )
    app = create_app(config)
    uvicorn.run(app, host=host, port=port, log_level=normalized_log_level)


if __name__ == "__main__":
    main()
