from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

FILE_CATEGORY_PHOTO = "photo"
FILE_CATEGORY_DOCUMENT = "document"

PHOTO_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp"})
DOCUMENT_EXTENSIONS = frozenset({".pdf", ".txt", ".md", ".json", ".csv", ".html", ".xml", ".yaml", ".yml"})

# Matches "Created: /x.pdf", "saved to '/x.png'" and "output: /x.json" style mentions.
OUTPUT_FILE_PATTERNS = (
    re.compile(r"(?:Created|Saved to|Wrote|Output|File saved|Generated|Exported):\s*([^\s]+\.\w+)", re.IGNORECASE),
    re.compile(r"(?:saved|wrote|created|generated|exported)\s+(?:to\s+)?[\"']?([^\s\"']+\.\w+)[\"']?", re.IGNORECASE),
    re.compile(r"(?:file|output):\s*[\"']?([^\s\"']+\.\w+)[\"']?", re.IGNORECASE),
)

WorkspaceSnapshot = dict[str, float]


@dataclass(frozen=True)
class DetectedFile:
    path: str
    filename: str
    category: str


def snapshot(directory: Path) -> WorkspaceSnapshot:
    """Modification times of regular files directly inside ``directory``."""
    files: WorkspaceSnapshot = {}
    try:
        entries = list(os.scandir(directory))
    except OSError:
        return files
    for entry in entries:
        try:
            if not entry.is_file():
                continue
            files[os.path.join(str(directory), entry.name)] = entry.stat().st_mtime
        except OSError:
            continue
    return files


def diff(directory: Path, before: WorkspaceSnapshot) -> list[str]:
    changed: list[str] = []
    for path, mtime in snapshot(directory).items():
        previous = before.get(path)
        if previous is None or mtime > previous:
            changed.append(path)
    return changed


def scan_text(output: str) -> list[str]:
    found: dict[str, None] = {}
    for pattern in OUTPUT_FILE_PATTERNS:
        for match in pattern.finditer(output or ""):
            candidate = match.group(1)
            if candidate and candidate.startswith("/"):
                found.setdefault(candidate, None)
    return list(found)


def categorize(paths: list[str]) -> list[DetectedFile]:
    detected: list[DetectedFile] = []
    for path in paths:
        extension = os.path.splitext(path)[1].lower()
        filename = path.rsplit("/", 1)[-1] or path
        if extension in PHOTO_EXTENSIONS:
            detected.append(DetectedFile(path=path, filename=filename, category=FILE_CATEGORY_PHOTO))
        elif extension in DOCUMENT_EXTENSIONS:
            detected.append(DetectedFile(path=path, filename=filename, category=FILE_CATEGORY_DOCUMENT))
    return detected


def detect_files(output: str, directory: Path, before: WorkspaceSnapshot) -> list[DetectedFile]:
    combined: dict[str, None] = {}
    for path in scan_text(output):
        combined.setdefault(path, None)
    for path in diff(directory, before):
        combined.setdefault(path, None)
    return categorize(list(combined))


__all__ = [
    "DOCUMENT_EXTENSIONS",
    "DetectedFile",
    "FILE_CATEGORY_DOCUMENT",
    "FILE_CATEGORY_PHOTO",
    "PHOTO_EXTENSIONS",
    "WorkspaceSnapshot",
    "categorize",
    "detect_files",
    "diff",
    "scan_text",
    "snapshot",
]
