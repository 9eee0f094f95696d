"""
Unit tests for session cookie persistence and recovery checkpoints
"""

import json
from datetime import datetime, timezone

import pytest

from railbooker.exceptions import PersistenceError
from railbooker.models.session import RecoveryCheckpoint, SessionCookie
from railbooker.services.recovery_service import RecoveryStore
from railbooker.services.session_service import SessionStore

NOW = 1_800_000_000.0


def cookie(name="JSESSIONID", expires=0.0):
    return SessionCookie(name=name, value="v", domain=".irctc.co.in", expires=expires)


class TestSessionCookie:

    def test_session_cookie_never_expires(self):
        assert not cookie(expires=0).is_expired(NOW)

    def test_expiry_is_inclusive(self):
        assert cookie(expires=NOW).is_expired(NOW)
        assert not cookie(expires=NOW + 1).is_expired(NOW)

    def test_playwright_session_cookie_maps_to_zero(self):
        parsed = SessionCookie.from_playwright({
            "name": "a", "value": "b", "domain": "d", "path": "/", "expires": -1,
            "httpOnly": True, "secure": True, "sameSite": "Lax",
        })

        assert parsed.expires == 0
        assert parsed.http_only and parsed.secure
        assert parsed.same_site == "Lax"
        assert "expires" not in parsed.to_playwright()

    def test_record_format(self):
        record = cookie(expires=NOW).to_record()

        assert record["expirationDate"] == NOW
        assert SessionCookie.from_record(record) == cookie(expires=NOW)

    def test_unknown_same_site_becomes_none(self):
        record = dict(cookie().to_record(), sameSite="no_restriction")

        assert SessionCookie.from_record(record).same_site == "None"


class TestSessionStore:
    """Test class for SessionStore"""

    @pytest.fixture(autouse=True)
    def _store(self, tmp_path):
        self.cookie_file = tmp_path / "cookies" / "robot.json"
        self.store = SessionStore(self.cookie_file)

    def test_save_and_load(self):
        self.store.save([cookie(), cookie("TOKEN", NOW + 60)])

        loaded = self.store.load()

        assert [c.name for c in loaded] == ["JSESSIONID", "TOKEN"]
        assert not self.cookie_file.with_suffix(".tmp").exists()

    def test_load_missing_file_returns_none(self):
        assert self.store.load() is None

    def test_load_corrupt_file_returns_none(self):
        self.cookie_file.parent.mkdir(parents=True)
        self.cookie_file.write_text("{not json", encoding="utf-8")

        assert self.store.load() is None

    def test_clear(self):
        self.store.save([cookie()])
        self.store.clear()

        assert not self.cookie_file.exists()
        self.store.clear()

    @pytest.mark.parametrize("cookies,valid", [
        (None, False),
        ([], False),
        ([cookie()], True),
        ([cookie(), cookie("old", NOW - 1)], False),
        ([cookie("fresh", NOW + 3600)], True),
    ])
    def test_is_valid(self, cookies, valid):
        assert SessionStore.is_valid(cookies, NOW) is valid

    def test_prepare_for_run_returns_playwright_cookies(self):
        self.store.save([cookie()])

        prepared = self.store.prepare_for_run(proxy_enabled=False)

        assert prepared == [cookie().to_playwright()]

    def test_prepare_for_run_with_proxy_discards_session(self):
        self.store.save([cookie()])

        assert self.store.prepare_for_run(proxy_enabled=True) is None
        assert not self.cookie_file.exists()

    def test_prepare_for_run_with_expired_cookies(self):
        self.store.save([cookie(expires=1.0)])

        assert self.store.prepare_for_run(proxy_enabled=False) is None

    def test_save_from_browser(self):
        self.store.save_from_browser([
            {"name": "JSESSIONID", "value": "abc", "domain": ".irctc.co.in", "expires": -1}
        ])

        records = json.loads(self.cookie_file.read_text(encoding="utf-8"))
        assert records[0]["name"] == "JSESSIONID"
        assert records[0]["expirationDate"] == 0

    def test_save_failure_raises_persistence_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory", encoding="utf-8")
        store = SessionStore(blocker / "robot.json")

        with pytest.raises(PersistenceError) as exc_info:
            store.save([cookie()])
        assert exc_info.value.error_code == "PERSISTENCE_ERROR"


class TestRecoveryStore:
    """Test class for RecoveryStore"""

    @pytest.fixture(autouse=True)
    def _store(self, tmp_path):
        self.checkpoint_file = tmp_path / "recovery" / "last_state.json"
        self.store = RecoveryStore(self.checkpoint_file)

    def checkpoint(self, **overrides):
        values = dict(
            request={"TRAIN_NO": "12951", "PASSWORD": "***"},
            current_state="SelectingItem",
            timestamp=datetime(2026, 11, 4, 10, 0, tzinfo=timezone.utc),
            attempt_count=6,
            last_error=None,
        )
        values.update(overrides)
        return RecoveryCheckpoint(**values)

    def test_save_and_load(self):
        self.store.save_checkpoint(self.checkpoint(last_error="Train 12951 with coach SL not found on the page"))

        loaded = self.store.load_checkpoint()

        assert loaded == self.checkpoint(last_error="Train 12951 with coach SL not found on the page")

    def test_on_disk_format(self):
        self.store.save_checkpoint(self.checkpoint())

        data = json.loads(self.checkpoint_file.read_text(encoding="utf-8"))

        assert set(data) == {"config", "currentState", "timestamp", "attemptCount", "lastError"}
        assert data["currentState"] == "SelectingItem"
        assert data["attemptCount"] == 6

    def test_latest_checkpoint_wins(self):
        self.store.save_checkpoint(self.checkpoint(current_state="Searching"))
        self.store.save_checkpoint(self.checkpoint(current_state="Payment"))

        assert self.store.load_checkpoint().current_state == "Payment"

    def test_missing_or_corrupt_checkpoint(self):
        assert self.store.load_checkpoint() is None

        self.checkpoint_file.parent.mkdir(parents=True)
        self.checkpoint_file.write_text('{"config": {}}', encoding="utf-8")
        assert self.store.load_checkpoint() is None

    def test_clear(self):
        self.store.save_checkpoint(self.checkpoint())
        self.store.clear()

        assert self.store.load_checkpoint() is None
