from datetime import datetime, timedelta, timezone

import pytest

from grant_engine.catalog import SqlCatalog
from grant_engine.config import Settings
from grant_engine.db import create_db_engine, create_session_factory
from grant_engine.engine import GrantEngine
from grant_engine.errors import NotificationFailure
from grant_engine.notifier import Notifier
from grant_engine.seed_demo import seed_demo
from grant_engine.store import GrantStore

OWNER = 1
GRANTEE = 2
RECORD = 10
OTHER_RECORD = 11
OTHER_OWNER = 3
OTHER_GRANTEE = 4
OTHER_OWNERS_RECORD = 20


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []
        self.fail = False

    def notify(self, event):
        if self.fail:
            raise NotificationFailure("smtp down")
        self.events.append(event)

    def kinds(self):
        return [e.kind.value for e in self.events]


@pytest.fixture
def t0():
    return datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def hours(t0):
    def at(h):
        return t0 + timedelta(hours=h)
    return at


@pytest.fixture
def db_engine():
    engine = create_db_engine("sqlite://")
    seed_demo(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def settings():
    return Settings(_env_file=None, database_url="sqlite://", start_sweeper=False, warn_once=True)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store(session_factory):
    return GrantStore(session_factory)


@pytest.fixture
def grants(session_factory, notifier, settings):
    return GrantEngine(GrantStore(session_factory), SqlCatalog(session_factory), notifier, settings)
