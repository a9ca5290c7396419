"""Data models for Healing Voice."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

import numpy as np


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class TranscriptEntry:
    role: Role
    text: str


@dataclass(frozen=True)
class SessionSnapshot:
    state: ConnectionState
    transcript: Tuple[TranscriptEntry, ...] = ()
    turn_count: int = 0
    error: Optional[str] = None
    queued_chunks: int = 0
    playing: bool = False

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.OPEN

    @property
    def is_connecting(self) -> bool:
        return self.state == ConnectionState.CONNECTING


# Inbound events from the remote session.


@dataclass
class AudioChunkReceived:
    samples: np.ndarray


@dataclass
class TranscriptReceived:
    role: Role
    text: str


@dataclass
class Interrupted:
    pass


@dataclass
class TurnComplete:
    pass


@dataclass
class RemoteClosed:
    reason: str = ""


@dataclass
class RemoteFailed:
    message: str = ""
    error: Optional[BaseException] = None


# Events raised by local audio devices.


@dataclass
class CaptureBlock:
    samples: np.ndarray


@dataclass
class PlaybackFinished:
    chunk_id: int


@dataclass
class SubscriptionStatus:
    is_premium: bool = False
    has_used_trial: bool = False
    expires_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "isPremium": self.is_premium,
            "hasUsedTrial": self.has_used_trial,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }
