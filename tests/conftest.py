"""
Shared fixtures: an in-memory stand-in for the Motor client, plus seeded
accounts for each role.

The fake implements only the slice of the Motor API the store uses
(find/find_one/insert_one/find_one_and_update/update_one/replace_one/
delete_one/delete_many/create_index, sessions with transactions).
"""

import copy
import re
from types import SimpleNamespace

import httpx
import pytest
from pymongo.errors import DuplicateKeyError

import auth
from main import create_app
from mongo.accounts import AccountStore
from mongo.client import DirectMongoClient
from mongo.store import TrackerStore
from rbac.permissions import Role


# ---------------------------------------------------------------------------
# In-memory Motor replacement
# ---------------------------------------------------------------------------

def _matches_condition(doc, key, cond):
    present = key in doc
    value = doc.get(key)
    if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$in":
                if value not in arg:
                    return False
            elif op == "$ne":
                if value == arg:
                    return False
            elif op == "$exists":
                if present != bool(arg):
                    return False
            elif op == "$regex":
                flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                if not isinstance(value, str) or not re.search(arg, value, flags):
                    return False
            elif op == "$options":
                continue
            else:
                raise NotImplementedError(op)
        return True
    return value == cond


def matches(doc, flt):
    for key, cond in (flt or {}).items():
        if key == "$and":
            if not all(matches(doc, sub) for sub in cond):
                return False
        elif key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
        elif not _matches_condition(doc, key, cond):
            return False
    return True


def _sort_key(value):
    return (0, "") if value is None else (1, value)


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key_or_list, direction=None):
        keys = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction or 1)]
        for field, order in reversed(keys):
            self._docs.sort(key=lambda d: _sort_key(d.get(field)), reverse=order < 0)
        return self

    def limit(self, n):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        docs = self._docs if length is None else self._docs[:length]
        return [copy.deepcopy(d) for d in docs]

    def __aiter__(self):
        self._iter = iter(self.to_list_sync())
        return self

    def to_list_sync(self):
        return [copy.deepcopy(d) for d in self._docs]

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = {}
        self.unique_fields = set()
        # Set to an exception to make the next insert_one fail
        self.fail_next_insert = None

    def _check_unique(self, doc, ignore_id=None):
        if doc["_id"] in self.docs and doc["_id"] != ignore_id:
            raise DuplicateKeyError(f"E11000 duplicate key {self.name}._id")
        for field in self.unique_fields:
            for other in self.docs.values():
                if other["_id"] != doc["_id"] and other.get(field) == doc.get(field):
                    raise DuplicateKeyError(f"E11000 duplicate key {self.name}.{field}")

    def _first(self, flt):
        for doc in self.docs.values():
            if matches(doc, flt):
                return doc
        return None

    async def create_index(self, keys, name=None, unique=False, **kwargs):
        if unique and len(keys) == 1:
            self.unique_fields.add(keys[0][0])
        return name

    async def find_one(self, flt=None, session=None):
        doc = self._first(flt)
        return copy.deepcopy(doc) if doc else None

    def find(self, flt=None, session=None):
        return FakeCursor([d for d in self.docs.values() if matches(d, flt)])

    async def insert_one(self, doc, session=None):
        if self.fail_next_insert is not None:
            error, self.fail_next_insert = self.fail_next_insert, None
            raise error
        doc = copy.deepcopy(doc)
        self._check_unique(doc)
        self.docs[doc["_id"]] = doc
        return SimpleNamespace(inserted_id=doc["_id"])

    def _apply(self, doc, update):
        updated = copy.deepcopy(doc)
        for field, value in update.get("$set", {}).items():
            updated[field] = value
        self._check_unique(updated, ignore_id=doc["_id"])
        self.docs[doc["_id"]] = updated
        return updated

    async def find_one_and_update(self, flt, update, return_document=False, session=None):
        doc = self._first(flt)
        if doc is None:
            return None
        updated = self._apply(doc, update)
        return copy.deepcopy(updated if return_document else doc)

    async def update_one(self, flt, update, upsert=False, session=None):
        doc = self._first(flt)
        if doc is None:
            return SimpleNamespace(matched_count=0, modified_count=0)
        before = copy.deepcopy(doc)
        after = self._apply(doc, update)
        return SimpleNamespace(matched_count=1, modified_count=int(before != after))

    async def replace_one(self, flt, replacement, upsert=False, session=None):
        doc = self._first(flt)
        if doc is None:
            if not upsert:
                return SimpleNamespace(matched_count=0, modified_count=0)
            await self.insert_one(replacement)
            return SimpleNamespace(matched_count=0, modified_count=0)
        self.docs[doc["_id"]] = copy.deepcopy(replacement)
        return SimpleNamespace(matched_count=1, modified_count=1)

    async def delete_one(self, flt, session=None):
        doc = self._first(flt)
        if doc is None:
            return SimpleNamespace(deleted_count=0)
        del self.docs[doc["_id"]]
        return SimpleNamespace(deleted_count=1)

    async def delete_many(self, flt, session=None):
        ids = [d["_id"] for d in self.docs.values() if matches(d, flt)]
        for _id in ids:
            del self.docs[_id]
        return SimpleNamespace(deleted_count=len(ids))


class FakeDatabase:
    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]


class FakeTransaction:
    def __init__(self, client):
        self.client = client

    async def __aenter__(self):
        self.client.transactions_started += 1
        self._snapshot = {
            db_name: {name: copy.deepcopy(coll.docs) for name, coll in db.collections.items()}
            for db_name, db in self.client.databases.items()
        }
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            return False
        # Abort: put every collection back the way it was
        for db_name, db in self.client.databases.items():
            saved = self._snapshot.get(db_name, {})
            for name, coll in db.collections.items():
                coll.docs = saved.get(name, {})
        return False


class FakeSession:
    def __init__(self, client):
        self.client = client

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def start_transaction(self):
        return FakeTransaction(self.client)


class FakeMongoClient:
    def __init__(self):
        self.databases = {}
        self.transactions_started = 0

    def __getitem__(self, name):
        if name not in self.databases:
            self.databases[name] = FakeDatabase()
        return self.databases[name]

    async def start_session(self):
        return FakeSession(self)

    def close(self):
        pass


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    monkeypatch.setattr(auth, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def fake_client():
    return FakeMongoClient()


@pytest.fixture
def mongo(fake_client):
    return DirectMongoClient(client=fake_client, database_name="tracker_test")


@pytest.fixture
def db(mongo):
    return mongo.db


@pytest.fixture
def store(mongo):
    return TrackerStore(mongo)


@pytest.fixture
def accounts(mongo):
    return AccountStore(mongo)


PASSWORD = "s3cret-pass"

PEOPLE = {
    "admin": ("admin@x.com", "Ada Admin", Role.ADMIN),
    "head": ("head@x.com", "Hal Head", Role.DEPARTMENT_HEAD),
    "employee_a": ("a@x.com", "Amy A", Role.EMPLOYEE),
    "employee_b": ("b@x.com", "Ben B", Role.EMPLOYEE),
}


@pytest.fixture
async def people(accounts, store):
    """ActorContexts for one admin, one department head and two employees."""
    actors = {}
    for key, (email, name, role) in PEOPLE.items():
        account = await accounts.create_account(email, auth.hash_password(PASSWORD), name)
        if role is not Role.EMPLOYEE:
            await accounts.grant_role(email, role)
        actors[key] = await store.resolve_actor(account["id"], email=email)
    return SimpleNamespace(**actors)


@pytest.fixture
def app(mongo):
    return create_app(mongo)


@pytest.fixture
async def http(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
