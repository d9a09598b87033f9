"""
Shared fixtures: an in-memory stand-in for the Supabase client, a toaster
that records messages, and a Flask app wired to both.

Run with: python -m pytest tests/ -v
"""

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import TestingConfig
from services.realtime import LocalChangeFeed


# =============================================================================
# SUPABASE STAND-IN
# =============================================================================

class MockResponse:
    def __init__(self, data=None, count=None):
        self.data = data
        self.count = count


class MockQuery:
    """
    Records a query-builder chain. execute() asks the owning MockSupabase
    for the configured result of (table, op).
    """

    def __init__(self, supabase, table, op=None, payload=None):
        self.supabase = supabase
        self.table = table
        self.op = op
        self.payload = payload
        self.columns = None
        self.count = None
        self.head = False
        self.filters = []
        self.orders = []
        self.limit_value = None
        self.single = False
        self._negate = False

    # Builders
    def select(self, columns='*', count=None, head=False):
        self.op = self.op or 'select'
        self.columns = columns
        self.count = count
        self.head = head
        return self

    def insert(self, rows):
        self.op = 'insert'
        self.payload = rows
        return self

    def update(self, values):
        self.op = 'update'
        self.payload = values
        return self

    def delete(self):
        self.op = 'delete'
        return self

    # Filters
    def _filter(self, name, column, value):
        if self._negate:
            name = f'not.{name}'
            self._negate = False
        self.filters.append((name, column, value))
        return self

    @property
    def not_(self):
        self._negate = True
        return self

    def eq(self, column, value):
        return self._filter('eq', column, value)

    def neq(self, column, value):
        return self._filter('neq', column, value)

    def in_(self, column, values):
        return self._filter('in', column, list(values))

    def is_(self, column, value):
        return self._filter('is', column, value)

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, value):
        self.limit_value = value
        return self

    def maybe_single(self):
        self.single = True
        return self

    def filter_value(self, name, column):
        for f_name, f_column, value in self.filters:
            if f_name == name and f_column == column:
                return value
        return None

    def execute(self):
        return self.supabase._execute(self)


class MockFunctions:
    def __init__(self):
        self.responses = {}
        self.calls = []

    def invoke(self, function_name, invoke_options=None):
        self.calls.append((function_name, invoke_options or {}))
        response = self.responses.get(function_name, {})
        if isinstance(response, Exception):
            raise response
        return response


class MockBucket:
    def __init__(self, storage, bucket):
        self.storage = storage
        self.bucket = bucket

    def upload(self, path, file, file_options=None):
        if self.storage.fail_upload:
            raise Exception('Upload failed')
        self.storage.uploads.append((self.bucket, path, file, file_options))
        return {'Key': path}

    def create_signed_url(self, path, expires_in):
        return {'signedURL': f'https://storage.test/{self.bucket}/{path}?expires={expires_in}'}

    def remove(self, paths):
        self.storage.removed.extend(paths)
        return []


class MockStorage:
    def __init__(self):
        self.uploads = []
        self.removed = []
        self.fail_upload = False

    def from_(self, bucket):
        return MockBucket(self, bucket)


class MockAuth:
    def __init__(self):
        self.users = {}

    def get_user(self, token):
        if token not in self.users:
            raise Exception('Invalid JWT')
        return SimpleNamespace(user=self.users[token])


class MockSupabase:
    """
    In-memory Supabase client.

    respond(table, op, data) sets what a query returns. data may be a
    callable taking the MockQuery. fail(table, op, times) makes the next
    `times` executions raise. Every executed query is kept in `queries`.
    """

    def __init__(self):
        self.results = {}
        self.failures = {}
        self.queries = []
        self.functions = MockFunctions()
        self.storage = MockStorage()
        self.auth = MockAuth()

    def table(self, name):
        return MockQuery(self, name)

    def rpc(self, name, params=None):
        return MockQuery(self, name, op='rpc', payload=params or {})

    def respond(self, table, op='select', data=None, count=None):
        self.results[(table, op)] = (data, count)
        return self

    def fail(self, table, op='select', times=1, message='Failed to fetch'):
        self.failures[(table, op)] = [times, message]
        return self

    def executed(self, table=None, op=None):
        return [
            q for q in self.queries
            if (table is None or q.table == table) and (op is None or q.op == op)
        ]

    def add_user(self, token, user_id, email=None):
        self.auth.users[token] = SimpleNamespace(id=user_id, email=email)

    def _execute(self, query):
        self.queries.append(query)

        failure = self.failures.get((query.table, query.op))
        if failure and failure[0] > 0:
            failure[0] -= 1
            raise Exception(failure[1])

        data, count = self.results.get((query.table, query.op), (None, None))
        if callable(data):
            data = data(query)
        if data is None and query.op in ('select', 'insert', 'update', 'delete', 'rpc') and not query.single:
            data = []
        if query.single and isinstance(data, list):
            data = data[0] if data else None
        if query.head:
            data = None
        return MockResponse(data=data, count=count)


class RecordingToaster:
    def __init__(self):
        self.messages = []

    def success(self, title, description=None):
        self.messages.append(('success', title, description))

    def info(self, title, description=None):
        self.messages.append(('info', title, description))

    def error(self, title, description=None):
        self.messages.append(('error', title, description))

    def of(self, category):
        return [m for m in self.messages if m[0] == category]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def supabase():
    return MockSupabase()


@pytest.fixture
def toaster():
    return RecordingToaster()


@pytest.fixture
def change_feed():
    feed = LocalChangeFeed()
    yield feed
    feed.shutdown()


@pytest.fixture
def app(supabase, change_feed):
    from app import create_app

    app = create_app(
        TestingConfig,
        supabase_client=supabase,
        user_client_factory=lambda token: supabase,
        change_feed_factory=lambda token: change_feed,
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


def auth_headers(token='user-token'):
    return {'Authorization': f'Bearer {token}', 'Accept': 'application/json'}
