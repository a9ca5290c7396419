"""Markdown rendering of conversation transcripts."""

from __future__ import annotations

from typing import Iterable, List, Optional

from .models import Role, TranscriptEntry

ROLE_LABELS = {Role.USER: "You", Role.MODEL: "Assistant"}


def _yaml_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f"\"{escaped}\""


def _clean_text(value: str) -> str:
    return " ".join(value.split())


def format_entry(entry: TranscriptEntry) -> str:
    return f"{ROLE_LABELS.get(entry.role, entry.role.value)}: {_clean_text(entry.text)}"


def render_transcript(
    entries: Iterable[TranscriptEntry],
    title: str,
    date: str,
    turn_count: Optional[int] = None,
    voice: Optional[str] = None,
    model: Optional[str] = None,
    started_at: Optional[str] = None,
    ended_at: Optional[str] = None,
    error: Optional[str] = None,
) -> str:
    entries = list(entries)
    lines: List[str] = []
    lines.append("---")
    lines.append("schema: 1")
    lines.append(f"title: {_yaml_quote(title)}")
    lines.append(f"date: {_yaml_quote(date)}")
    if started_at:
        lines.append(f"started_at: {_yaml_quote(started_at)}")
    if ended_at:
        lines.append(f"ended_at: {_yaml_quote(ended_at)}")
    if turn_count is not None:
        lines.append(f"user_turns: {turn_count}")
    if voice:
        lines.append(f"voice: {_yaml_quote(voice)}")
    if model:
        lines.append(f"model: {_yaml_quote(model)}")
    lines.append("---")
    lines.append("")
    lines.append(f"# {_clean_text(title)}")
    lines.append("")
    if error:
        lines.append(f"> Session ended with an error: {_clean_text(error)}")
        lines.append("")
    lines.append("## Transcript")
    lines.append("")
    if not entries:
        lines.append("_No speech was transcribed._")
    for entry in entries:
        lines.append(f"- **{ROLE_LABELS.get(entry.role, entry.role.value)}:** {_clean_text(entry.text)}")
    lines.append("")
    return "\n".join(lines)
