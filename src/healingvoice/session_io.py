"""Transcript persistence."""

from __future__ import annotations

import json
from typing import Iterable, List

from .models import Role, TranscriptEntry


def save_transcript(path: str, entries: Iterable[TranscriptEntry]) -> None:
    payload = [{"role": entry.role.value, "text": entry.text} for entry in entries]
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)


def load_transcript(path: str) -> List[TranscriptEntry]:
    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    return [TranscriptEntry(role=Role(item["role"]), text=item["text"]) for item in payload]
