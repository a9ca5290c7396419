import os
import tempfile
from datetime import datetime

from healingvoice.models import Role, TranscriptEntry
from healingvoice.session_io import load_transcript, save_transcript
from healingvoice.storage import build_session_basename, ensure_structure, timestamp_slug


def test_timestamp_slug_format():
    slug = timestamp_slug()
    assert len(slug) == 10
    assert slug.count("-") == 2


def test_build_session_basename():
    name = build_session_basename("Evening Check In", datetime(2026, 1, 13, 21, 5, 9))
    assert name == "2026-01-13--210509--Evening-Check-In"
    assert build_session_basename("  ").endswith("--Conversation")


def test_ensure_structure_creates_folders():
    with tempfile.TemporaryDirectory() as tmp:
        paths = ensure_structure(tmp)
        assert all(os.path.isdir(path) for path in paths.values())


def test_transcript_save_and_load_keeps_order():
    entries = [
        TranscriptEntry(role=Role.USER, text="Je me sens mieux"),
        TranscriptEntry(role=Role.MODEL, text="That's good to hear."),
    ]
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "talk.transcript.json")
        save_transcript(path, entries)
        assert load_transcript(path) == entries
