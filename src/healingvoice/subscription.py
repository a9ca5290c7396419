"""Subscription status, trial gating and persistence."""

from __future__ import annotations

import calendar
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Protocol

from .config import SubscriptionConfig
from .errors import ConfigurationError
from .models import SubscriptionStatus

logger = logging.getLogger("healingvoice")

RENEWAL_MONTHS = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(dt: datetime, months: int = RENEWAL_MONTHS) -> datetime:
    """Calendar-month step; the day is clamped to the target month's length."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def _status(flag: bool, has_used_trial: bool, expires_at: Optional[datetime], now: datetime) -> SubscriptionStatus:
    active = bool(flag and expires_at is not None and expires_at > now)
    return SubscriptionStatus(
        is_premium=active, has_used_trial=has_used_trial, expires_at=expires_at
    )


class SubscriptionStore(Protocol):
    def get_status(self, user_id: str, now: Optional[datetime] = None) -> SubscriptionStatus: ...

    def mark_trial_used(self, user_id: str) -> bool: ...

    def grant_premium(self, user_id: str, now: Optional[datetime] = None) -> SubscriptionStatus: ...


@dataclass
class SubscriptionRecord:
    is_premium: bool = False
    has_used_trial: bool = False
    expires_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InMemorySubscriptionStore:
    """Single-process store; state is lost on restart."""

    def __init__(self) -> None:
        self._db: Dict[str, SubscriptionRecord] = {}

    def get_status(self, user_id: str, now: Optional[datetime] = None) -> SubscriptionStatus:
        rec = self._db.get(user_id)
        if rec is None:
            return SubscriptionStatus()
        return _status(rec.is_premium, rec.has_used_trial, rec.expires_at, now or utcnow())

    def mark_trial_used(self, user_id: str) -> bool:
        rec = self._db.setdefault(user_id, SubscriptionRecord())
        rec.has_used_trial = True
        rec.updated_at = utcnow()
        return True

    def grant_premium(self, user_id: str, now: Optional[datetime] = None) -> SubscriptionStatus:
        now = now or utcnow()
        rec = self._db.setdefault(user_id, SubscriptionRecord())
        rec.is_premium = True
        rec.expires_at = add_months(now)
        rec.updated_at = now
        return self.get_status(user_id, now)


SCHEMA = """
CREATE TABLE IF NOT EXISTS subscriptions (
    userId TEXT PRIMARY KEY,
    isPremium INTEGER DEFAULT 0,
    hasUsedTrial INTEGER DEFAULT 0,
    expiresAt TEXT,
    updatedAt TEXT DEFAULT CURRENT_TIMESTAMP
)
"""


class SqliteSubscriptionStore:
    def __init__(self, db_path: str = "database.sqlite") -> None:
        self.db_path = db_path
        conn = self._connect()
        try:
            with conn:
                conn.execute(SCHEMA)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def get_status(self, user_id: str, now: Optional[datetime] = None) -> SubscriptionStatus:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE userId = ?", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return SubscriptionStatus()
        expires_at = datetime.fromisoformat(row["expiresAt"]) if row["expiresAt"] else None
        return _status(row["isPremium"] == 1, row["hasUsedTrial"] == 1, expires_at, now or utcnow())

    def mark_trial_used(self, user_id: str) -> bool:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO subscriptions (userId, hasUsedTrial)
                    VALUES (?, 1)
                    ON CONFLICT(userId) DO UPDATE SET
                        hasUsedTrial = 1,
                        updatedAt = CURRENT_TIMESTAMP
                    """,
                    (user_id,),
                )
        finally:
            conn.close()
        return True

    def grant_premium(self, user_id: str, now: Optional[datetime] = None) -> SubscriptionStatus:
        now = now or utcnow()
        expires = add_months(now).isoformat()
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO subscriptions (userId, isPremium, expiresAt)
                    VALUES (?, 1, ?)
                    ON CONFLICT(userId) DO UPDATE SET
                        isPremium = 1,
                        expiresAt = excluded.expiresAt,
                        updatedAt = CURRENT_TIMESTAMP
                    """,
                    (user_id, expires),
                )
        finally:
            conn.close()
        logger.info("Premium granted to user %s until %s", user_id, expires)
        return self.get_status(user_id, now)


def open_store(config: SubscriptionConfig) -> SubscriptionStore:
    if config.backend == "memory":
        return InMemorySubscriptionStore()
    if config.backend == "sqlite":
        return SqliteSubscriptionStore(config.db_path)
    raise ConfigurationError(f"Unknown subscription backend: {config.backend!r}")


class Access(str, Enum):
    PREMIUM = "premium"
    TRIAL = "trial"
    PAYWALL = "paywall"


@dataclass(frozen=True)
class AccessDecision:
    access: Access
    status: SubscriptionStatus

    @property
    def allowed(self) -> bool:
        return self.access != Access.PAYWALL


def begin_conversation(
    store: SubscriptionStore, user_id: str, now: Optional[datetime] = None
) -> AccessDecision:
    """Decide whether a conversation may start; consumes the free trial on first use.

    Turn counts play no part here: the trial is spent when a conversation starts.
    """
    status = store.get_status(user_id, now)
    if status.is_premium:
        return AccessDecision(Access.PREMIUM, status)
    if status.has_used_trial:
        return AccessDecision(Access.PAYWALL, status)
    store.mark_trial_used(user_id)
    logger.info("Trial consumed by user %s", user_id)
    return AccessDecision(Access.TRIAL, store.get_status(user_id, now))
