from __future__ import annotations

import math
from typing import Any


class TypedRelayError(RuntimeError):
    """Relay failure with a stable code, shown to chat users and returned to HTTP clients."""

    error_code = "INTERNAL_ERROR"
    failure_class = "internal"
    user_message = "An internal error occurred."
    http_status = 500

    def payload(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "failure_class": self.failure_class,
            "user_message": self.user_message,
            "detail": str(self),
        }

    def headers(self) -> dict[str, str]:
        return {}


class ConfigError(TypedRelayError):
    """Configuration or request option failed validation."""

    error_code = "CONFIG_ERROR"
    failure_class = "configuration"
    user_message = "Configuration is invalid."
    http_status = 400


class WorkspaceNotFoundError(TypedRelayError):
    error_code = "WORKSPACE_NOT_FOUND"
    failure_class = "filesystem"
    user_message = "Directory not found."
    http_status = 404


class NotADirectoryWorkspaceError(TypedRelayError):
    error_code = "WORKSPACE_NOT_A_DIRECTORY"
    failure_class = "filesystem"
    user_message = "Path is not a directory."
    http_status = 400


class RateLimitedError(TypedRelayError):
    """Conversation sent a message before its cooldown elapsed."""

    error_code = "RATE_LIMITED"
    failure_class = "rate_limit"
    user_message = "Please wait before sending another message."
    http_status = 429

    def __init__(self, message: str, *, retry_after_seconds: float) -> None:
        super().__init__(message)
        self.retry_after_seconds = max(0.0, float(retry_after_seconds))

    def payload(self) -> dict[str, Any]:
        payload = super().payload()
        payload["retry_after_seconds"] = round(self.retry_after_seconds, 3)
        return payload

    def headers(self) -> dict[str, str]:
        # Retry-After only carries whole seconds.
        return {"Retry-After": str(max(1, math.ceil(self.retry_after_seconds)))}


__all__ = [
    "ConfigError",
    "NotADirectoryWorkspaceError",
    "RateLimitedError",
    "TypedRelayError",
    "WorkspaceNotFoundError",
]
