import os

import fakeredis
import httpx
import pytest
import pytest_asyncio

os.environ.setdefault("CHECKIN_SIGNING_SECRET", "test_signing_secret")

from checkpoint_gate.config import Settings  # noqa: E402
from checkpoint_gate.main import create_app  # noqa: E402
from tests.helpers import SECRET  # noqa: E402


@pytest.fixture
def settings(tmp_path):
    return Settings(
        signing_secret=SECRET,
        session_secret=SECRET,
        database_url=f"sqlite:///{tmp_path / 'gate.db'}",
        audit_outbox_enabled=False,
    )


@pytest_asyncio.fixture(scope="function")
async def redis():
    r = fakeredis.FakeAsyncRedis(decode_responses=True)
    try:
        yield r
    finally:
        await r.flushall()
        await r.aclose()


@pytest_asyncio.fixture(scope="function")
async def app(settings, redis):
    app = create_app(settings, redis=redis)
    try:
        yield app
    finally:
        app.state.engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://gate.test", timeout=30.0) as c:
        yield c


@pytest.fixture
def session_factory(app):
    return app.state.session_factory
