from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Callable

ACTIVITY_THINKING = "thinking"
ACTIVITY_READING = "reading"
ACTIVITY_WRITING = "writing"
ACTIVITY_RUNNING = "running"
ACTIVITY_SEARCHING = "searching"
ACTIVITY_WORKING = "working"
ACTIVITY_CATEGORIES = (
    ACTIVITY_THINKING,
    ACTIVITY_READING,
    ACTIVITY_WRITING,
    ACTIVITY_RUNNING,
    ACTIVITY_SEARCHING,
    ACTIVITY_WORKING,
)
RUNNING_DETAIL_MAX_CHARS = 50

ACTIVITY_EMOJI = {
    ACTIVITY_THINKING: "🧠",
    ACTIVITY_READING: "📖",
    ACTIVITY_WRITING: "✍️",
    ACTIVITY_RUNNING: "⚡",
    ACTIVITY_SEARCHING: "🔍",
    ACTIVITY_WORKING: "🔄",
}


@dataclass(frozen=True)
class ActivityEvent:
    category: str
    detail: str = ""
    elapsed: int = 0

    def at(self, elapsed: int) -> "ActivityEvent":
        return replace(self, elapsed=int(elapsed))


@dataclass(frozen=True)
class ActivityRule:
    pattern: re.Pattern[str]
    category: str
    detail: Callable[[re.Match[str]], str]


def _remainder(fallback: str, *, limit: int | None = None) -> Callable[[re.Match[str]], str]:
    def extract(match: re.Match[str]) -> str:
        text = match.group("rest") or ""
        if limit is not None:
            text = text[:limit]
        return text or fallback

    return extract


def _constant(value: str) -> Callable[[re.Match[str]], str]:
    return lambda _match: value


# Ordered; the first matching rule wins.
ACTIVITY_RULES: tuple[ActivityRule, ...] = (
    ActivityRule(
        re.compile(r"^(?:Reading|Read)\s+(?P<rest>.+)", re.IGNORECASE),
        ACTIVITY_READING,
        _remainder("file"),
    ),
    ActivityRule(
        re.compile(r"^(?:Writing|Wrote|Creating|Created)\s+(?P<rest>.+)", re.IGNORECASE),
        ACTIVITY_WRITING,
        _remainder("file"),
    ),
    ActivityRule(
        re.compile(r"^(?:Running|Executing|>\s*\$)\s*(?P<rest>.*)", re.IGNORECASE),
        ACTIVITY_RUNNING,
        _remainder("command", limit=RUNNING_DETAIL_MAX_CHARS),
    ),
    ActivityRule(
        re.compile(r"^(?:Searching|Search|Looking|Finding)", re.IGNORECASE),
        ACTIVITY_SEARCHING,
        _constant("codebase"),
    ),
    ActivityRule(
        re.compile(r"^(?:Thinking|Analyzing|Processing)", re.IGNORECASE),
        ACTIVITY_THINKING,
        _constant(""),
    ),
)


def classify(line: str) -> ActivityEvent | None:
    """Map one line of agent output to an activity, or None when nothing matches."""
    trimmed = line.strip()
    if not trimmed:
        return None
    for rule in ACTIVITY_RULES:
        match = rule.pattern.match(trimmed)
        if match is not None:
            return ActivityEvent(category=rule.category, detail=rule.detail(match))
    return None


def format_status(event: ActivityEvent) -> str:
    emoji = ACTIVITY_EMOJI.get(event.category, ACTIVITY_EMOJI[ACTIVITY_WORKING])
    detail = f"\n└─ {event.detail}" if event.detail else ""
    return f"{emoji} Working... ({event.elapsed}s){detail}"
