"""Shared pytest fixtures: in-memory Supabase fake, app and authenticated users."""
from __future__ import annotations

import copy
import uuid
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from kimaaki.main import create_app


# ---------------------------------------------------------------------------
# Fake Supabase client (subset of the postgrest query builder used by the app)
# ---------------------------------------------------------------------------

def _same(a, b) -> bool:
    if a is None or b is None:
        return a is b
    if isinstance(a, bool) or isinstance(b, bool):
        return a == b
    return a == b or str(a) == str(b)


def _compare(a, b, op) -> bool:
    if a is None or b is None:
        return False
    try:
        return op(a, b)
    except TypeError:
        return op(str(a), str(b))


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload = None
        self._filters = []
        self._order = []
        self._limit = None
        self._range = None
        self._count = None
        self._negate = False

    # operações
    def select(self, columns="*", count=None):
        self._op = "select"
        self._count = count
        return self

    def insert(self, payload):
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, payload):
        self._op = "update"
        self._payload = payload
        return self

    def delete(self):
        self._op = "delete"
        return self

    # filtros
    @property
    def not_(self):
        self._negate = True
        return self

    def _add(self, predicate):
        if self._negate:
            self._negate = False
            self._filters.append(lambda r, p=predicate: not p(r))
        else:
            self._filters.append(predicate)
        return self

    def eq(self, column, value):
        return self._add(lambda r: _same(r.get(column), value))

    def neq(self, column, value):
        return self._add(lambda r: not _same(r.get(column), value))

    def in_(self, column, values):
        values = list(values)
        return self._add(lambda r: any(_same(r.get(column), v) for v in values))

    def gte(self, column, value):
        return self._add(lambda r: _compare(r.get(column), value, lambda a, b: a >= b))

    def lte(self, column, value):
        return self._add(lambda r: _compare(r.get(column), value, lambda a, b: a <= b))

    def gt(self, column, value):
        return self._add(lambda r: _compare(r.get(column), value, lambda a, b: a > b))

    def lt(self, column, value):
        return self._add(lambda r: _compare(r.get(column), value, lambda a, b: a < b))

    def is_(self, column, value):
        if value in (None, "null"):
            return self._add(lambda r: r.get(column) is None)
        return self._add(lambda r: _same(r.get(column), value))

    def ilike(self, column, pattern):
        needle = pattern.strip("%").lower()
        return self._add(lambda r: needle in str(r.get(column) or "").lower())

    def order(self, column, desc=False):
        self._order.append((column, desc))
        return self

    def limit(self, n):
        self._limit = n
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def execute(self):
        if self._table in self._db.failing_tables:
            raise RuntimeError(f"tabela {self._table} indisponível")
        self._db.calls.append((self._table, self._op))
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            created = []
            for item in payload:
                row = copy.deepcopy(item)
                row.setdefault("id", str(uuid.uuid4()))
                rows.append(row)
                created.append(copy.deepcopy(row))
            return FakeResponse(created)

        matched = [r for r in rows if all(f(r) for f in self._filters)]

        if self._op == "update":
            for r in matched:
                r.update(copy.deepcopy(self._payload))
            return FakeResponse([copy.deepcopy(r) for r in matched])

        if self._op == "delete":
            for r in matched:
                rows.remove(r)
            return FakeResponse([copy.deepcopy(r) for r in matched])

        for column, desc in reversed(self._order):
            matched.sort(
                key=lambda r: (r.get(column) is None, r.get(column) if r.get(column) is not None else ""),
                reverse=desc,
            )
        count = len(matched) if self._count else None
        if self._range:
            matched = matched[self._range[0]:self._range[1] + 1]
        if self._limit is not None:
            matched = matched[:self._limit]
        return FakeResponse([copy.deepcopy(r) for r in matched], count)


class FakeBucket:
    def __init__(self, db, name):
        self._db = db
        self._name = name

    def upload(self, path, file, file_options=None):
        self._db.uploads.append({"bucket": self._name, "path": path, "size": len(file), "options": file_options})
        return SimpleNamespace(path=path)

    def get_public_url(self, path):
        return f"https://storage.test/{self._name}/{path}"


class FakeStorage:
    def __init__(self, db):
        self._db = db

    def from_(self, bucket):
        return FakeBucket(self._db, bucket)


class FakeAuth:
    def __init__(self):
        self.users = {}

    def get_user(self, token):
        return SimpleNamespace(user=self.users.get(token))


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.failing_tables = set()
        self.calls = []
        self.uploads = []
        self.auth = FakeAuth()
        self.storage = FakeStorage(self)

    def table(self, name):
        return FakeQuery(self, name)

    def seed(self, table, *rows):
        created = []
        for row in rows:
            row = dict(row)
            row.setdefault("id", str(uuid.uuid4()))
            self.tables.setdefault(table, []).append(row)
            created.append(row)
        return created[0] if len(created) == 1 else created

    def rows(self, table):
        return self.tables.get(table, [])

    def add_user(self, token, role, full_name="Usuário Teste", with_profile=True):
        user_id = str(uuid.uuid4())
        self.auth.users[token] = SimpleNamespace(
            id=user_id, email=f"{token}@kimaaki.test", user_metadata={"role": role, "full_name": full_name},
        )
        if with_profile:
            self.seed("user_profiles", {"id": user_id, "role": role, "full_name": full_name})
        return user_id


# ---------------------------------------------------------------------------
# psycopg2 connection mock
# ---------------------------------------------------------------------------

def make_db_conn(fetchone=None):
    """Conexão psycopg2 falsa; cursor.fetchone devolve `fetchone` (valor ou lista de valores)."""
    cursor = MagicMock()
    if isinstance(fetchone, list):
        cursor.fetchone.side_effect = fetchone
    else:
        cursor.fetchone.return_value = fetchone
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    conn.cursor.return_value.__exit__.return_value = None
    conn.test_cursor = cursor
    return conn


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def supabase():
    return FakeSupabase()


@pytest.fixture()
def db_conn():
    return make_db_conn()


@pytest.fixture()
def users(supabase):
    return SimpleNamespace(
        admin=supabase.add_user("admin-token", "admin", "Admin"),
        client=supabase.add_user("client-token", "cliente", "Ana Cliente"),
        company=supabase.add_user("company-token", "empresa", "Dono da Empresa"),
        driver=supabase.add_user("driver-token", "entregador", "Zé Entregador"),
    )


@pytest.fixture()
def app(supabase, db_conn, users):
    app = create_app(
        test_config={"TESTING": True, "SOCKETIO_ASYNC_MODE": "threading"},
        supabase_client=supabase,
        db_factory=lambda: db_conn,
    )
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


def auth(token):
    return {"Authorization": f"Bearer {token}"}
