from datetime import timedelta

from conftest import GRANTEE, OWNER, RECORD
from grant_engine.config import Settings
from grant_engine.db import MedicalRecord, Person
from grant_engine.engine import GrantEngine
from grant_engine.notifier import LoggingNotifier


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("GRANT_ENGINE_DEFAULT_DURATION_HOURS", "6")
    monkeypatch.setenv("GRANT_ENGINE_WARN_ONCE", "false")
    monkeypatch.setenv("GRANT_ENGINE_EXPIRY_INTERVAL_SECONDS", "60")

    s = Settings(_env_file=None)
    assert s.default_duration_hours == 6
    assert s.warn_once is False
    assert s.expiry_interval_seconds == 60
    assert s.warning_interval_seconds == 3600
    assert s.warning_window_hours == 2.0


def test_engine_from_settings(t0):
    settings = Settings(_env_file=None, database_url="sqlite://", default_duration_hours=6, start_sweeper=False)
    grants = GrantEngine.from_settings(settings)

    assert isinstance(grants.notifier, LoggingNotifier)
    assert grants.sweeper.warning_window == timedelta(hours=2)

    db = grants.store._session_factory()
    try:
        db.add(Person(id=OWNER, display_name="Owner", email="owner@example.com"))
        db.add(MedicalRecord(id=RECORD, owner_id=OWNER, title="Lab panel"))
        db.commit()
    finally:
        db.close()

    g = grants.grant(OWNER, GRANTEE, RECORD, now=t0)
    assert g.expires_at == t0 + timedelta(hours=6)
