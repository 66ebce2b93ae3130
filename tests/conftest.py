"""Shared fixtures: temporary stores and an in-memory remote."""

from datetime import date
from decimal import Decimal

import pytest

from subtrackr.db import Database
from subtrackr.exceptions import SyncUnavailableError
from subtrackr.models import MonthlyCycle, PullResult, PushResult, SyncEnvelope
from subtrackr.money import Money
from subtrackr.store import LocalStore


class InMemoryRemote:
    """A remote document store kept in a dict, with integer cursors."""

    def __init__(self):
        self.documents: dict[str, tuple[int, SyncEnvelope]] = {}
        self.version = 0
        self.offline = False
        self.fail_push = False
        self.after_pull = None  # called once a pull has been served
        self.pull_calls = 0
        self.push_calls = 0

    def pull(self, cursor: str | None) -> PullResult:
        self.pull_calls += 1
        if self.offline:
            raise SyncUnavailableError("remote offline")
        since = int(cursor) if cursor else 0
        changed = sorted(
            (item for item in self.documents.values() if item[0] > since),
            key=lambda item: item[0],
        )
        result = PullResult(
            envelopes=[env.model_copy(deep=True) for _, env in changed],
            cursor=str(self.version),
        )
        if self.after_pull is not None:
            self.after_pull()
        return result

    def push(self, envelopes: list[SyncEnvelope]) -> PushResult:
        self.push_calls += 1
        if self.offline or self.fail_push:
            raise SyncUnavailableError("remote offline")
        before = str(self.version)
        for envelope in envelopes:
            self.version += 1
            self.documents[envelope.id] = (self.version, envelope.model_copy(deep=True))
        return PushResult(cursor_before=before, cursor_after=str(self.version))

    def write_foreign(self, envelope: SyncEnvelope):
        """Simulate another device writing directly to the remote."""
        self.version += 1
        self.documents[envelope.id] = (self.version, envelope.model_copy(deep=True))

    def snapshot(self) -> dict:
        return {
            record_id: (version, env.model_dump())
            for record_id, (version, env) in self.documents.items()
        }


def make_store(tmp_path, name: str, **kwargs) -> LocalStore:
    """Create a LocalStore on its own database file."""
    db = Database(tmp_path / f"{name}.db")
    return LocalStore(db, device_id=name, **kwargs)


@pytest.fixture
def store(tmp_path):
    """A LocalStore for device 'device-x'."""
    store = make_store(tmp_path, "device-x")
    yield store
    store.db.close()


@pytest.fixture
def device_x(tmp_path):
    store = make_store(tmp_path, "device-x")
    yield store
    store.db.close()


@pytest.fixture
def device_y(tmp_path):
    store = make_store(tmp_path, "device-y")
    yield store
    store.db.close()


@pytest.fixture
def remote():
    return InMemoryRemote()


@pytest.fixture
def usd_999():
    return Money(amount=Decimal("9.99"), currency="USD")


@pytest.fixture
def netflix(store, usd_999):
    """A monthly subscription renewing on the 15th."""
    return store.create(
        name="Netflix",
        cost=usd_999,
        billing_cycle=MonthlyCycle(day_of_month=15),
        anchor_date=date(2025, 1, 15),
    )


@pytest.fixture
def store_factory(tmp_path):
    """Build extra stores on their own database files."""
    stores = []

    def factory(name: str, **kwargs) -> LocalStore:
        store = make_store(tmp_path, name, **kwargs)
        stores.append(store)
        return store

    yield factory
    for store in stores:
        store.db.close()
