"""
Shared fixtures for the LEDESC tests.

No test talks to Google: Firestore, Drive and SMTP are replaced by the
in-process fakes below.
"""

import asyncio
import itertools
import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import pytest

from ledesc.config import get_settings
from ledesc.models.benefit import Identity, Purchase
from ledesc.notifications import NotificationInbox
from ledesc.services.storage import FileLocalStorage, LocalStateStore, LocalStorageKeys


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


async def settle(rounds: int = 5) -> None:
    """Let callbacks queued with call_soon / call_soon_threadsafe run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# FIRESTORE FAKE
# =============================================================================

class FakeSnapshot:
    def __init__(self, reference: "FakeDocument", data: Optional[dict]):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[dict]:
        return dict(self._data) if self._data is not None else None


class FakeWatch:
    def __init__(self, db: "FakeFirestore", listener: "FakeListener"):
        self._db = db
        self._listener = listener

    def unsubscribe(self) -> None:
        if self._listener in self._db.listeners:
            self._db.listeners.remove(self._listener)


class FakeListener:
    def __init__(self, fire: Callable[[], None]):
        self.fire = fire


class FakeDocument:
    def __init__(self, db: "FakeFirestore", path: tuple):
        self._db = db
        self.path = path
        self.id = path[-1]

    def collection(self, name: str) -> "FakeCollection":
        return FakeCollection(self._db, self.path + (name,))

    def get(self, timeout=None) -> FakeSnapshot:
        self._db.check_failure()
        return FakeSnapshot(self, self._db.docs.get(self.path))

    def set(self, data: dict, timeout=None) -> None:
        self._db.check_failure()
        self._db.docs[self.path] = dict(data)
        self._db.fire()

    def update(self, data: dict, timeout=None) -> None:
        from google.api_core import exceptions as gexc

        self._db.check_failure()
        if self.path not in self._db.docs:
            raise gexc.NotFound(f"No document at {'/'.join(self.path)}")
        self._db.docs[self.path].update(data)
        self._db.fire()

    def delete(self, timeout=None) -> None:
        self._db.check_failure()
        self._db.docs.pop(self.path, None)
        self._db.fire()

    def on_snapshot(self, callback) -> FakeWatch:
        listener = FakeListener(lambda: callback([self.get()], [], None))
        return self._db.watch(listener)


class FakeQuery:
    def __init__(self, collection: "FakeCollection", field: Optional[str] = None, descending: bool = False):
        self._collection = collection
        self._field = field
        self._descending = descending

    def stream(self, timeout=None) -> list[FakeSnapshot]:
        docs = self._collection.stream(timeout)
        if self._field:
            docs.sort(key=lambda d: d.to_dict().get(self._field), reverse=self._descending)
        return docs

    def on_snapshot(self, callback) -> FakeWatch:
        listener = FakeListener(lambda: callback(self.stream(), [], None))
        return self._collection._db.watch(listener)


class FakeCollection:
    _ids = itertools.count(1)

    def __init__(self, db: "FakeFirestore", path: tuple):
        self._db = db
        self.path = path

    def document(self, doc_id: Optional[str] = None) -> FakeDocument:
        return FakeDocument(self._db, self.path + (doc_id or f"auto{next(self._ids)}",))

    def order_by(self, field: str, direction: str = "ASCENDING") -> FakeQuery:
        return FakeQuery(self, field, descending=direction == "DESCENDING")

    def stream(self, timeout=None) -> list[FakeSnapshot]:
        self._db.check_failure()
        depth = len(self.path) + 1
        return [
            FakeSnapshot(FakeDocument(self._db, path), data)
            for path, data in self._db.docs.items()
            if len(path) == depth and path[:-1] == self.path
        ]

    def on_snapshot(self, callback) -> FakeWatch:
        return FakeQuery(self).on_snapshot(callback)


class FakeBatch:
    def __init__(self, db: "FakeFirestore"):
        self._db = db
        self._ops: list[tuple] = []

    def set(self, ref: FakeDocument, data: dict) -> None:
        self._ops.append(("set", ref.path, dict(data)))

    def delete(self, ref: FakeDocument) -> None:
        self._ops.append(("delete", ref.path, None))

    def commit(self, timeout=None) -> None:
        self._db.check_failure()
        self._db.commits += 1
        for op, path, data in self._ops:
            if op == "set":
                self._db.docs[path] = data
            else:
                self._db.docs.pop(path, None)
        self._db.fire()


class FakeFirestore:
    """
    Dict-backed stand-in for firestore.Client.

    Listeners fire once when attached and again after every write,
    on whatever thread performed the write, like the real client.
    """

    def __init__(self):
        self.docs: dict[tuple, dict] = {}
        self.listeners: list[FakeListener] = []
        self.commits = 0
        self.failure: Optional[Exception] = None

    def check_failure(self) -> None:
        if self.failure is not None:
            raise self.failure

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, (name,))

    def batch(self) -> FakeBatch:
        return FakeBatch(self)

    def watch(self, listener: FakeListener) -> FakeWatch:
        self.listeners.append(listener)
        listener.fire()
        return FakeWatch(self, listener)

    def fire(self) -> None:
        for listener in list(self.listeners):
            listener.fire()

    def user_docs(self, uid: str, collection: str) -> dict[str, dict]:
        prefix = ("users", uid, collection)
        return {path[-1]: data for path, data in self.docs.items() if path[:-1] == prefix}


# =============================================================================
# DRIVE FAKE
# =============================================================================

class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, content: Optional[bytes] = None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.content = content if content is not None else json.dumps(self._payload).encode("utf-8")
        self.text = self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return self._payload


class FakeDriveSession:
    """
    Records every request and answers from a tiny in-memory Drive.

    folders/files map a name to an id; uploads hold the last body per file id.
    """

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: list[tuple[str, str, dict]] = []
        self.folders: dict[str, str] = {}
        self.files: dict[str, str] = {}
        self.uploads: dict[str, bytes] = {}
        self._ids = itertools.count(1)

    def request(self, method: str, url: str, timeout=None, **kwargs) -> FakeResponse:
        self.requests.append((method, url, kwargs))
        if self.status_code >= 400:
            return FakeResponse(self.status_code, {"error": "denied"})

        params = kwargs.get("params") or {}
        if method == "GET" and "q" in params:
            query = params["q"]
            pool = self.folders if "mimeType='application/vnd.google-apps.folder'" in query else self.files
            matches = [{"id": fid} for name, fid in pool.items() if f"name='{name}'" in query]
            return FakeResponse(payload={"files": matches})
        if method == "POST":
            body = kwargs["json"]
            new_id = f"id{next(self._ids)}"
            pool = self.folders if body.get("mimeType") == "application/vnd.google-apps.folder" else self.files
            pool[body["name"]] = new_id
            return FakeResponse(payload={"id": new_id})
        if method == "PATCH":
            self.uploads[url.rsplit("/", 1)[-1]] = kwargs["data"]
            return FakeResponse(payload={})
        if method == "GET" and params.get("alt") == "media":
            return FakeResponse(content=self.uploads[url.rsplit("/", 1)[-1]])
        return FakeResponse(404, {"error": "unexpected"})


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point every settings read at a temp dir and a clean environment."""
    monkeypatch.setenv("LOCAL_STORAGE_DIR", str(tmp_path / "local"))
    monkeypatch.delenv("MAIL_API_KEY", raising=False)
    monkeypatch.delenv("MAIL_DESTINATION", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def local_storage(tmp_path) -> FileLocalStorage:
    return FileLocalStorage(tmp_path / "local")


@pytest.fixture
def local_store(local_storage) -> LocalStateStore:
    return LocalStateStore(local_storage, LocalStorageKeys("LEDESC", 3))


@pytest.fixture
def fake_db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture
def inbox() -> NotificationInbox:
    return NotificationInbox()


@pytest.fixture
def identity() -> Identity:
    return Identity(uid="user-1", email="ana@example.com", access_token="token-123")


def make_purchase(
    purchase_id: str = "p1",
    amount: str = "50000",
    date: Optional[datetime] = None,
    merchant_name: str = "Café Tortoni",
    merchant_location: Optional[str] = "Av. de Mayo 825",
    final_amount: Optional[str] = None,
) -> Purchase:
    amount_value = Decimal(amount)
    final = Decimal(final_amount) if final_amount is not None else amount_value * Decimal("0.3")
    return Purchase(
        id=purchase_id,
        amount=amount_value,
        date=date or datetime(2025, 3, 10, 13, 30),
        merchant_name=merchant_name,
        merchant_location=merchant_location,
        discount_applied=amount_value - final,
        final_amount=final,
    )
