from __future__ import annotations

import os
from pathlib import Path

import pytest

from mini_claw.file_detector import (
    FILE_CATEGORY_DOCUMENT,
    FILE_CATEGORY_PHOTO,
    DetectedFile,
    categorize,
    detect_files,
    diff,
    scan_text,
    snapshot,
)


def test_snapshot_lists_regular_files_only(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "b.txt").write_text("b", encoding="utf-8")

    files = snapshot(tmp_path)

    assert list(files) == [os.path.join(str(tmp_path), "a.txt")]


def test_snapshot_of_missing_directory_is_empty(tmp_path: Path) -> None:
    assert snapshot(tmp_path / "missing") == {}


def test_diff_reports_new_and_modified_files(tmp_path: Path) -> None:
    unchanged = tmp_path / "unchanged.txt"
    modified = tmp_path / "modified.txt"
    unchanged.write_text("x", encoding="utf-8")
    modified.write_text("x", encoding="utf-8")
    os.utime(unchanged, (1_000_000, 1_000_000))
    os.utime(modified, (1_000_000, 1_000_000))
    before = snapshot(tmp_path)

    os.utime(modified, (2_000_000, 2_000_000))
    (tmp_path / "new.png").write_bytes(b"\x89PNG")

    assert sorted(diff(tmp_path, before)) == sorted(
        [os.path.join(str(tmp_path), "modified.txt"), os.path.join(str(tmp_path), "new.png")]
    )


def test_diff_ignores_deleted_files(tmp_path: Path) -> None:
    doomed = tmp_path / "doomed.txt"
    doomed.write_text("x", encoding="utf-8")
    before = snapshot(tmp_path)
    doomed.unlink()

    assert diff(tmp_path, before) == []


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("Created: /tmp/report.pdf", ["/tmp/report.pdf"]),
        ("I saved to '/home/u/chart.png' for you", ["/home/u/chart.png"]),
        ('Wrote "/srv/data.json"', ["/srv/data.json"]),
        ("output: /var/out.csv", ["/var/out.csv"]),
        ("Created: relative/report.pdf", []),
        ("nothing to see here", []),
        ("Created: /tmp/a.md and file: /tmp/a.md", ["/tmp/a.md"]),
    ],
)
def test_scan_text_finds_absolute_paths(output: str, expected: list[str]) -> None:
    assert scan_text(output) == expected


def test_categorize_by_lowercased_extension() -> None:
    detected = categorize(["/x/A.PNG", "/x/notes.Md", "/x/archive.zip", "/x/photo.webp", "/x/noext"])

    assert detected == [
        DetectedFile(path="/x/A.PNG", filename="A.PNG", category=FILE_CATEGORY_PHOTO),
        DetectedFile(path="/x/notes.Md", filename="notes.Md", category=FILE_CATEGORY_DOCUMENT),
        DetectedFile(path="/x/photo.webp", filename="photo.webp", category=FILE_CATEGORY_PHOTO),
    ]


def test_detect_files_merges_mentions_and_workspace_changes(tmp_path: Path) -> None:
    before = snapshot(tmp_path)
    chart = tmp_path / "chart.png"
    chart.write_bytes(b"\x89PNG")
    (tmp_path / "scratch.bin").write_bytes(b"\x00")

    detected = detect_files(f"Created: {chart}\nSaved to /tmp/summary.txt", tmp_path, before)

    assert detected == [
        DetectedFile(path=str(chart), filename="chart.png", category=FILE_CATEGORY_PHOTO),
        DetectedFile(path="/tmp/summary.txt", filename="summary.txt", category=FILE_CATEGORY_DOCUMENT),
    ]
