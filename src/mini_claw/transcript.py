from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger("mini_claw.transcript")

DEFAULT_IMAGE_MIME_TYPE = "image/png"
TOOL_RESULT_ROLE = "toolResult"


@dataclass(frozen=True)
class ExtractedImage:
    data: bytes
    mime_type: str

    @property
    def extension(self) -> str:
        subtype = self.mime_type.split("/", 1)[1] if "/" in self.mime_type else ""
        return subtype or "png"


def _read_lines(transcript_path: Path) -> list[str]:
    try:
        content = Path(transcript_path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return []
    stripped = content.strip()
    if not stripped:
        return []
    return stripped.split("\n")


def transcript_line_count(transcript_path: Path) -> int:
    """Line watermark for a transcript; a missing or unreadable file counts as 0."""
    return len(_read_lines(transcript_path))


def _decode_base64(payload: Any) -> bytes | None:
    if not isinstance(payload, str) or not payload:
        return None
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError):
        return None


def _image_from_item(item: Any) -> ExtractedImage | None:
    if not isinstance(item, dict) or item.get("type") != "image":
        return None
    mime_type = item.get("mimeType")
    if item.get("data") and mime_type:
        data = _decode_base64(item.get("data"))
        if data is None:
            return None
        return ExtractedImage(data=data, mime_type=str(mime_type))
    source = item.get("source")
    if isinstance(source, dict) and source.get("type") == "base64" and source.get("data"):
        data = _decode_base64(source.get("data"))
        if data is None:
            return None
        return ExtractedImage(data=data, mime_type=str(source.get("media_type") or DEFAULT_IMAGE_MIME_TYPE))
    return None


def images_from_record(record: Any) -> list[ExtractedImage]:
    if not isinstance(record, dict) or record.get("type") != "message":
        return []
    message = record.get("message")
    if not isinstance(message, dict) or message.get("role") != TOOL_RESULT_ROLE:
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    images: list[ExtractedImage] = []
    for item in content:
        image = _image_from_item(item)
        if image is not None:
            images.append(image)
    return images


def extract_images(transcript_path: Path, after_line: int = 0) -> list[ExtractedImage]:
    """Collect tool-result images from transcript lines at index >= ``after_line``."""
    images: list[ExtractedImage] = []
    skipped = 0
    for line in _read_lines(transcript_path)[max(0, int(after_line)):]:
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        images.extend(images_from_record(record))
    if skipped:
        LOGGER.debug(
            "Skipped %s malformed transcript lines in %s",
            skipped,
            transcript_path,
            extra={"component": "transcript", "operation": "extract_images", "result": "skipped"},
        )
    return images


__all__ = [
    "DEFAULT_IMAGE_MIME_TYPE",
    "ExtractedImage",
    "extract_images",
    "images_from_record",
    "transcript_line_count",
]
