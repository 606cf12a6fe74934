import os

# Must be set before fieldservice.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"

import copy

import pytest

from fieldservice.exceptions import BackendError, RecordNotFoundError
from fieldservice.models import generate_id
from fieldservice.services.backend import DataBackend
from fieldservice.services.notifications import Notifier
from fieldservice.services.realtime import ChangeFeed
from fieldservice.services.sync import DataSyncLayer, SessionInfo

# relationship name -> (foreign key, table)
RELATIONS = {
    "client": ("client_id", "clients"),
    "sub_client": ("sub_client_id", "sub_clients"),
    "model": ("model_id", "equipment_models"),
    "type": ("type_id", "equipment_types"),
    "equipment": ("equipment_id", "equipment_inventory"),
}

TABLES = (
    "clients", "sub_clients", "equipment_types", "equipment_models", "equipment_inventory",
    "service_orders", "reagent_types", "reagent_deliveries", "pending_reagent_deliveries", "reminders",
)


class InMemoryBackend(DataBackend):
    """DataBackend double: dict rows, call log and failure injection"""

    def __init__(self):
        self.rows = {table: [] for table in TABLES}
        self.feed = ChangeFeed()
        self.calls = []
        self._failures = {}

    # ============ Failure injection ============

    def fail(self, operation, collection, error=None, times=None):
        """Make operation on collection raise error; times=None means every call"""
        self._failures[(operation, collection)] = [error or BackendError(f"{operation} {collection} failed"), times]

    def heal(self, operation=None, collection=None):
        if operation is None:
            self._failures.clear()
        else:
            self._failures.pop((operation, collection), None)

    def _check(self, operation, collection):
        self.calls.append((operation, collection))
        failure = self._failures.get((operation, collection))
        if failure is None:
            return
        error, times = failure
        if times is not None:
            failure[1] = times - 1
            if failure[1] <= 0:
                del self._failures[(operation, collection)]
        raise error

    # ============ Helpers ============

    def seed(self, collection, **record):
        """Insert without logging, failure checks or change events"""
        row = {"id": generate_id(), **record}
        self.rows[collection].append(row)
        return copy.deepcopy(row)

    def _matches(self, row, filters):
        for key, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                if row.get(key) not in value:
                    return False
            elif row.get(key) != value:
                return False
        return True

    def _expand(self, row, expand):
        record = copy.deepcopy(row)
        grouped = {}
        for path in expand:
            head, _, rest = path.partition(".")
            grouped.setdefault(head, [])
            if rest:
                grouped[head].append(rest)
        for name, nested in grouped.items():
            key, table = RELATIONS[name]
            related = next((r for r in self.rows[table] if r["id"] == row.get(key)), None)
            record[name] = self._expand(related, nested) if related else None
        return record

    # ============ DataBackend ============

    def fetch(self, collection, filters=None, expand=(), order_by=()):
        self._check("fetch", collection)
        rows = [self._expand(r, expand) for r in self.rows[collection] if self._matches(r, filters)]
        for key in reversed(order_by):
            rows.sort(key=lambda r: str(r.get(key.lstrip("-")) or ""), reverse=key.startswith("-"))
        return rows

    def insert(self, collection, record):
        self._check("insert", collection)
        row = {"id": generate_id(), **copy.deepcopy(record)}
        self.rows[collection].append(row)
        self.feed.publish("INSERT", collection)
        return copy.deepcopy(row)

    def update(self, collection, record_id, changes):
        self._check("update", collection)
        for row in self.rows[collection]:
            if row["id"] == record_id:
                row.update(copy.deepcopy({k: v for k, v in changes.items() if k != "id"}))
                self.feed.publish("UPDATE", collection)
                return copy.deepcopy(row)
        raise RecordNotFoundError(f"{collection} {record_id} not found")

    def upsert(self, collection, record, conflict_keys):
        self._check("upsert", collection)
        for row in self.rows[collection]:
            if all(row.get(k) == record.get(k) for k in conflict_keys):
                row.update(copy.deepcopy(record))
                self.feed.publish("UPDATE", collection)
                return copy.deepcopy(row)
        row = {"id": generate_id(), **copy.deepcopy(record)}
        self.rows[collection].append(row)
        self.feed.publish("INSERT", collection)
        return copy.deepcopy(row)

    def delete(self, collection, record_id):
        self._check("delete", collection)
        before = len(self.rows[collection])
        self.rows[collection] = [r for r in self.rows[collection] if r["id"] != record_id]
        if len(self.rows[collection]) == before:
            return False
        self.feed.publish("DELETE", collection)
        return True

    def delete_where(self, collection, filters):
        self._check("delete_where", collection)
        keep = [r for r in self.rows[collection] if not self._matches(r, filters)]
        count = len(self.rows[collection]) - len(keep)
        self.rows[collection] = keep
        if count:
            self.feed.publish("DELETE", collection)
        return count

    def subscribe_changes(self, table, events, callback):
        return self.feed.subscribe(table, events, callback)

    def unsubscribe(self, handle):
        return self.feed.unsubscribe(handle)


# ============ Core fixtures ============

@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def notifier():
    return Notifier(history_size=100)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def store(backend, notifier, sleeps):
    return DataSyncLayer(backend, notifier, retry_attempts=3, retry_backoff_seconds=0.5, sleep=sleeps.append)


@pytest.fixture
def session():
    return SessionInfo(user_id="user-1", email="tech@example.com", name="Tech", role="technician")


@pytest.fixture
def ready_store(store, session):
    store.set_session(session)
    yield store
    store.end_session()


@pytest.fixture
def mutations(backend, ready_store, notifier):
    from fieldservice.services.mutations import RecordMutations
    return RecordMutations(backend, ready_store, notifier)


# ============ SQL / API fixtures ============

@pytest.fixture
def sql_schema():
    from fieldservice.database import engine
    from fieldservice.models import Base
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def sql_backend(sql_schema):
    from fieldservice.services.backend import SqlBackend
    return SqlBackend()


@pytest.fixture
def api_client(sql_schema):
    from fastapi.testclient import TestClient
    from fieldservice.services.dashboard import reset_dashboard
    from main import app

    reset_dashboard(None)
    with TestClient(app) as test_client:
        yield test_client
    reset_dashboard(None)


@pytest.fixture
def auth_headers(api_client):
    payload = {"email": "tech@example.com", "password": "Secret#123", "name": "Tech"}
    response = api_client.post("/api/auth/signup", json=payload)
    assert response.status_code == 200, response.text
    response = api_client.post("/api/auth/login", json={"email": payload["email"], "password": payload["password"]})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
