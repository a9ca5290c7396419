from healingvoice.models import Role, TranscriptEntry
from healingvoice.renderer import format_entry, render_transcript


def test_render_transcript_includes_frontmatter():
    entries = [
        TranscriptEntry(role=Role.USER, text="I feel anxious today"),
        TranscriptEntry(role=Role.MODEL, text="Thank you for  sharing that."),
    ]
    note = render_transcript(
        entries,
        title="Evening check-in",
        date="2026-01-13",
        turn_count=1,
        voice="Zephyr",
    )
    assert 'title: "Evening check-in"' in note
    assert "user_turns: 1" in note
    assert 'voice: "Zephyr"' in note
    assert "## Transcript" in note
    assert "- **You:** I feel anxious today" in note
    assert "- **Assistant:** Thank you for sharing that." in note


def test_render_empty_transcript_and_error():
    note = render_transcript([], title="Check-in", date="2026-01-13", error="Connection error.")
    assert "_No speech was transcribed._" in note
    assert "> Session ended with an error: Connection error." in note


def test_format_entry_labels_roles():
    assert format_entry(TranscriptEntry(role=Role.USER, text="hi")) == "You: hi"
    assert format_entry(TranscriptEntry(role=Role.MODEL, text="hello")) == "Assistant: hello"
