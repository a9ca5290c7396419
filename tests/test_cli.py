import json
import os
from unittest.mock import MagicMock, patch

import yaml

from healingvoice.cli import main
from healingvoice.payments import compute_signature
from healingvoice.subscription import SqliteSubscriptionStore


def _write_config(tmp_path):
    path = tmp_path / "healingvoice_config.yml"
    data = {
        "base_dir": str(tmp_path),
        "subscription": {"backend": "sqlite", "db_path": str(tmp_path / "subs.sqlite")},
    }
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


def test_config_command_writes_defaults(tmp_path, capsys):
    path = str(tmp_path / "cfg.yml")
    assert main(["--config", path, "config"]) == 0
    assert os.path.exists(path)
    assert main(["--config", path, "config"]) == 1
    assert "--force" in capsys.readouterr().out


def test_status_reports_subscription(tmp_path, capsys):
    path = _write_config(tmp_path)
    SqliteSubscriptionStore(str(tmp_path / "subs.sqlite")).mark_trial_used("u1")
    assert main(["--config", path, "status", "--user", "u1"]) == 0
    out = capsys.readouterr().out
    assert "Premium: no" in out
    assert "Trial used: yes" in out


def test_talk_is_paywalled_after_trial(tmp_path, capsys):
    path = _write_config(tmp_path)
    SqliteSubscriptionStore(str(tmp_path / "subs.sqlite")).mark_trial_used("u1")
    assert main(["--config", path, "talk", "--user", "u1"]) == 2
    assert "healingvoice pay" in capsys.readouterr().out


def test_pay_without_secret_fails_cleanly(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("PAYSTACK_SECRET_KEY", raising=False)
    path = _write_config(tmp_path)
    assert main(["--config", path, "pay", "--user", "u1", "--email", "a@b.c"]) == 1
    assert "Failed to start payment process" in capsys.readouterr().out


def test_verify_grants_premium_after_checkout(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("PAYSTACK_SECRET_KEY", "sk_test_secret")
    path = _write_config(tmp_path)
    resp = MagicMock()
    resp.json.return_value = {"status": True, "data": {"status": "success"}}
    with patch("healingvoice.payments.requests.get", return_value=resp):
        code = main(["--config", path, "verify", "--user", "u1", "--reference", "ref1"])
    assert code == 0
    assert "payment_success=true" in capsys.readouterr().out
    status = SqliteSubscriptionStore(str(tmp_path / "subs.sqlite")).get_status("u1")
    assert status.is_premium


def test_verify_without_secret_reports_server_config(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("PAYSTACK_SECRET_KEY", raising=False)
    path = _write_config(tmp_path)
    assert main(["--config", path, "verify", "--user", "u1", "--reference", "ref1"]) == 1
    assert "payment_error=server_config" in capsys.readouterr().out


def test_webhook_command_grants_premium(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("PAYSTACK_SECRET_KEY", "sk_test_secret")
    path = _write_config(tmp_path)
    body = json.dumps(
        {"event": "charge.success", "data": {"metadata": {"user_id": "u2"}}}
    ).encode("utf-8")
    body_path = tmp_path / "webhook.json"
    body_path.write_bytes(body)
    signature = compute_signature("sk_test_secret", body)

    assert main(["--config", path, "webhook", "--body", str(body_path), "--signature", signature]) == 0
    assert "Premium granted: u2" in capsys.readouterr().out
    assert SqliteSubscriptionStore(str(tmp_path / "subs.sqlite")).get_status("u2").is_premium

    assert main(["--config", path, "webhook", "--body", str(body_path), "--signature", "bad"]) == 1
    assert "Webhook rejected" in capsys.readouterr().out
