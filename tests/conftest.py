"""Shared fixtures: a fresh file-backed SQLite database per test."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

# Must be set before `config` is imported anywhere
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./billing-test.db"
os.environ["ENVIRONMENT"] = "test"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["ONCHAIN_MOCK_VERIFICATION"] = "false"
os.environ["NOTIFY_WEBHOOK_URL"] = ""

from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from db.database import build_engine, create_tables
from services.storage import ReceiptStorage

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

RECEIPT = b"\x89PNG\r\n\x1a\n fake image bytes"


class FakeClock:
    """Settable clock for services that take `clock=`."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


class FakeObjectStore:
    """In-memory object store behind an httpx.MockTransport."""

    def __init__(self):
        self.objects = {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path.startswith("/object/sign/"):
            return httpx.Response(200, json={"signedURL": f"{path}?token=t"})
        if request.method == "POST" and path.startswith("/object/"):
            self.objects[path[len("/object/"):]] = request.content
            return httpx.Response(200, json={"Key": path})
        if request.method == "DELETE":
            self.objects.pop(path[len("/object/"):], None)
            return httpx.Response(200, json={})
        return httpx.Response(404)

    def storage(self) -> ReceiptStorage:
        return ReceiptStorage(
            base_url="https://storage.test", service_key="key", bucket="payment_receipts",
            timeout=5, transport=httpx.MockTransport(self.handler),
        )
