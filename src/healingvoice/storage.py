"""Output directories and file naming."""

from __future__ import annotations

import os
from datetime import datetime


def timestamp_slug(dt: datetime | None = None) -> str:
    now = dt or datetime.now()
    return now.strftime("%Y-%m-%d")


def build_session_basename(title: str, dt: datetime | None = None) -> str:
    now = dt or datetime.now()
    slug = "-".join(title.split()) if title and title.strip() else "Conversation"
    return f"{timestamp_slug(now)}--{now.strftime('%H%M%S')}--{slug}"


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def ensure_structure(base_dir: str) -> dict:
    root = base_dir or os.getcwd()
    paths = {
        "root": root,
        "transcripts": os.path.join(root, "Transcripts"),
        "notes": os.path.join(root, "Notes"),
        "logs": os.path.join(root, "Logs"),
    }
    for path in paths.values():
        ensure_dir(path)
    return paths
