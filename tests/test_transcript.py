from __future__ import annotations

import json
from pathlib import Path

import pytest

from mini_claw.transcript import (
    ExtractedImage,
    extract_images,
    images_from_record,
    transcript_line_count,
)


def _tool_result(*content: dict) -> dict:
    return {"type": "message", "message": {"role": "toolResult", "content": list(content)}}


def _write_transcript(path: Path, records: list[object]) -> Path:
    lines = [record if isinstance(record, str) else json.dumps(record) for record in records]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_extract_images_honors_line_offset(tmp_path: Path) -> None:
    transcript = _write_transcript(
        tmp_path / "telegram-1.jsonl",
        [
            {"type": "session", "id": "abc"},
            {"type": "message", "message": {"role": "user", "content": [{"type": "text", "text": "draw"}]}},
            _tool_result({"type": "image", "data": "AA==", "mimeType": "image/png"}),
            {"type": "message", "message": {"role": "assistant", "content": [{"type": "text", "text": "done"}]}},
        ],
    )

    assert extract_images(transcript, after_line=0) == [ExtractedImage(data=b"\x00", mime_type="image/png")]
    assert extract_images(transcript, after_line=2) == [ExtractedImage(data=b"\x00", mime_type="image/png")]
    assert extract_images(transcript, after_line=3) == []
    assert extract_images(transcript, after_line=4) == []


def test_source_shaped_image_defaults_to_png(tmp_path: Path) -> None:
    transcript = _write_transcript(
        tmp_path / "t.jsonl",
        [
            _tool_result(
                {"type": "image", "source": {"type": "base64", "data": "aGk="}},
                {"type": "image", "source": {"type": "base64", "data": "aGk=", "media_type": "image/jpeg"}},
                {"type": "image", "source": {"type": "url", "url": "https://example.invalid/x.png"}},
            )
        ],
    )

    images = extract_images(transcript)

    assert [(image.data, image.mime_type) for image in images] == [(b"hi", "image/png"), (b"hi", "image/jpeg")]
    assert [image.extension for image in images] == ["png", "jpeg"]


def test_malformed_lines_are_skipped(tmp_path: Path) -> None:
    transcript = _write_transcript(
        tmp_path / "t.jsonl",
        [
            "{not json",
            _tool_result({"type": "image", "data": "AA==", "mimeType": "image/gif"}),
            "",
            "[1, 2",
        ],
    )

    assert extract_images(transcript) == [ExtractedImage(data=b"\x00", mime_type="image/gif")]


@pytest.mark.parametrize(
    "record",
    [
        {"type": "message", "message": {"role": "assistant", "content": [{"type": "image", "data": "AA==", "mimeType": "image/png"}]}},
        {"type": "message", "message": {"role": "user", "content": [{"type": "image", "data": "AA==", "mimeType": "image/png"}]}},
        {"type": "tool", "message": {"role": "toolResult", "content": [{"type": "image", "data": "AA==", "mimeType": "image/png"}]}},
        {"type": "message", "message": {"role": "toolResult", "content": "AA=="}},
        {"type": "message", "message": {"role": "toolResult", "content": [{"type": "text", "text": "ok"}]}},
        {"type": "message", "message": {"role": "toolResult", "content": [{"type": "image", "data": "AA=="}]}},
        {"type": "message"},
        ["not", "a", "record"],
    ],
)
def test_records_without_tool_result_images_yield_nothing(record: object) -> None:
    assert images_from_record(record) == []


def test_missing_transcript_yields_nothing(tmp_path: Path) -> None:
    missing = tmp_path / "missing.jsonl"

    assert extract_images(missing) == []
    assert transcript_line_count(missing) == 0


def test_line_count_ignores_trailing_newline(tmp_path: Path) -> None:
    transcript = tmp_path / "t.jsonl"
    transcript.write_text('{"a": 1}\n{"b": 2}\n', encoding="utf-8")
    assert transcript_line_count(transcript) == 2

    transcript.write_text("", encoding="utf-8")
    assert transcript_line_count(transcript) == 0
