import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from healingvoice.config import SubscriptionConfig
from healingvoice.errors import ConfigurationError
from healingvoice.subscription import (
    Access,
    InMemorySubscriptionStore,
    SqliteSubscriptionStore,
    add_months,
    begin_conversation,
    open_store,
)

NOW = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)


def test_add_months_clamps_day():
    assert add_months(NOW) == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)
    assert add_months(datetime(2026, 12, 15, tzinfo=timezone.utc)).year == 2027


def test_unknown_user_has_no_access_flags():
    status = InMemorySubscriptionStore().get_status("nobody")
    assert status.as_dict() == {"isPremium": False, "hasUsedTrial": False, "expiresAt": None}


def test_premium_expires():
    store = InMemorySubscriptionStore()
    store.grant_premium("u1", NOW)
    assert store.get_status("u1", NOW + timedelta(days=27)).is_premium
    expired = store.get_status("u1", NOW + timedelta(days=29))
    assert not expired.is_premium
    assert expired.expires_at == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)


def test_trial_is_consumed_at_conversation_start():
    store = InMemorySubscriptionStore()
    first = begin_conversation(store, "u1", NOW)
    second = begin_conversation(store, "u1", NOW)
    assert first.access == Access.TRIAL and first.allowed
    assert second.access == Access.PAYWALL and not second.allowed


def test_premium_bypasses_trial():
    store = InMemorySubscriptionStore()
    store.mark_trial_used("u1")
    store.grant_premium("u1", NOW)
    decision = begin_conversation(store, "u1", NOW + timedelta(days=1))
    assert decision.access == Access.PREMIUM


def test_sqlite_store_persists_status():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "subs.sqlite")
        store = SqliteSubscriptionStore(path)
        assert store.mark_trial_used("u1") is True
        store.grant_premium("u1", NOW)

        reopened = SqliteSubscriptionStore(path)
        status = reopened.get_status("u1", NOW)
        later = reopened.get_status("u1", NOW + timedelta(days=40))

    assert status.is_premium
    assert status.has_used_trial
    assert status.expires_at == add_months(NOW)
    assert not later.is_premium


def test_sqlite_regrant_extends_from_grant_instant():
    with tempfile.TemporaryDirectory() as tmp:
        store = SqliteSubscriptionStore(os.path.join(tmp, "subs.sqlite"))
        store.grant_premium("u1", NOW)
        renewed_at = NOW + timedelta(days=10)
        status = store.grant_premium("u1", renewed_at)
    assert status.expires_at == add_months(renewed_at)


def test_open_store_rejects_unknown_backend():
    assert isinstance(open_store(SubscriptionConfig(backend="memory")), InMemorySubscriptionStore)
    with pytest.raises(ConfigurationError):
        open_store(SubscriptionConfig(backend="mongo"))
