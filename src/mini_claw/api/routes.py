from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
from collections.abc import AsyncIterator, Awaitable
from typing import Any, Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from mini_claw.activity import ActivityEvent, format_status
from mini_claw.services.turn_service import TurnOutcome, TurnService
from mini_claw.store import format_path

NDJSON_MEDIA_TYPE = "application/x-ndjson"
REASON_INTERNAL_ERROR = "internal_error"
_INTEGER_KEY_RE = re.compile(r"^-?\d+$")


def conversation_key(chat_id: str) -> int | str:
    value = str(chat_id or "").strip()
    if _INTEGER_KEY_RE.match(value):
        return int(value)
    if not value:
        raise HTTPException(status_code=400, detail="chat id is required.")
    return value


def activity_payload(event: ActivityEvent) -> dict[str, Any]:
    return {
        "type": "activity",
        "category": event.category,
        "detail": event.detail,
        "elapsed": event.elapsed,
        "status": format_status(event),
    }


def outcome_payload(outcome: TurnOutcome) -> dict[str, Any]:
    result = outcome.result
    return {
        "type": "result",
        "output": result.output,
        "error": result.error,
        "reason": result.reason,
        "images": [
            {"mime_type": image.mime_type, "data_base64": base64.b64encode(image.data).decode("ascii")}
            for image in outcome.images
        ],
        "files": [
            {"path": detected.path, "filename": detected.filename, "category": detected.category}
            for detected in outcome.files
        ],
    }


def failure_payload(exc: BaseException) -> dict[str, Any]:
    return {
        "type": "result",
        "output": "",
        "error": str(exc) or type(exc).__name__,
        "reason": REASON_INTERNAL_ERROR,
        "images": [],
        "files": [],
    }


async def _json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload.") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload.")
    return payload


def _optional_timeout(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise HTTPException(status_code=400, detail="timeout_seconds must be a positive number.")
    return float(value)


def _attachments(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) and item.strip() for item in value):
        raise HTTPException(status_code=400, detail="attachments must be a list of file paths.")
    return [item.strip() for item in value]


def register_relay_routes(
    app: FastAPI,
    *,
    turns: TurnService,
    logger: logging.Logger,
    probe_agent: Callable[[], Awaitable[bool]],
) -> None:
    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        return {"agent_ready": bool(await probe_agent())}

    @app.get("/api/chats/{chat_id}/workspace")
    def api_get_workspace(chat_id: str) -> dict[str, Any]:
        workspace = turns.workspaces.get(conversation_key(chat_id))
        return {"path": str(workspace), "display": format_path(workspace)}

    @app.put("/api/chats/{chat_id}/workspace")
    async def api_set_workspace(chat_id: str, request: Request) -> dict[str, Any]:
        payload = await _json_object(request)
        workspace = turns.workspaces.set(conversation_key(chat_id), str(payload.get("path") or ""))
        return {"path": str(workspace), "display": format_path(workspace)}

    @app.post("/api/chats/{chat_id}/shell")
    async def api_run_shell(chat_id: str, request: Request) -> dict[str, Any]:
        payload = await _json_object(request)
        command = str(payload.get("command") or "").strip()
        if not command:
            raise HTTPException(status_code=400, detail="command is required.")
        result = await turns.run_shell(conversation_key(chat_id), command)
        return {"stdout": result.stdout, "stderr": result.stderr, "code": result.code}

    @app.post("/api/chats/{chat_id}/messages")
    async def api_send_message(chat_id: str, request: Request) -> StreamingResponse:
        key = conversation_key(chat_id)
        payload = await _json_object(request)
        prompt = str(payload.get("prompt") or "").strip()
        if not prompt:
            raise HTTPException(status_code=400, detail="prompt is required.")
        run_request = turns.build_request(
            key,
            prompt,
            thinking=payload.get("thinking"),
            timeout_seconds=_optional_timeout(payload.get("timeout_seconds")),
            attachments=_attachments(payload.get("attachments")),
        )
        turns.check_rate_limit(key)
        logger.debug(
            "Accepted message for chat %s",
            key,
            extra={"chat_id": str(key), "component": "api", "operation": "send_message", "result": "accepted"},
        )

        async def stream() -> AsyncIterator[bytes]:
            events: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

            async def on_activity(event: ActivityEvent) -> None:
                await events.put(activity_payload(event))

            async def drive() -> None:
                try:
                    outcome = await turns.run_turn(run_request, on_activity)
                except Exception as exc:
                    logger.error(
                        "Turn for chat %s failed: %s",
                        key,
                        exc,
                        exc_info=True,
                        extra={
                            "chat_id": str(key),
                            "component": "api",
                            "operation": "send_message",
                            "result": "failed",
                            "error_class": type(exc).__name__,
                        },
                    )
                    await events.put(failure_payload(exc))
                else:
                    await events.put(outcome_payload(outcome))
                finally:
                    await events.put(None)

            task = asyncio.create_task(drive())
            try:
                while True:
                    item = await events.get()
                    if item is None:
                        break
                    yield (json.dumps(item) + "\n").encode("utf-8")
                await task
            finally:
                if not task.done():
                    task.cancel()

        return StreamingResponse(stream(), media_type=NDJSON_MEDIA_TYPE)
