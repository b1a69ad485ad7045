"""
Tests for the aiohttp application wiring: startup selection of backends, the
internal endpoints, the session sweep task and shutdown.
"""

from datetime import timedelta
from unittest.mock import Mock

from aiohttp import test_utils, web
import pytest
import pytest_asyncio

from net.cloudmon.app.config import (
    SESSION_TOKEN_HEADER,
    CredentialManagerAppKey,
    DispatcherAppKey,
    MetricsClientAppKey,
    PersistenceAppKey,
    SessionStoreAppKey,
    SessionSweepTaskAppKey,
    Settings,
)
from net.cloudmon.app.server import start_web_server
from net.cloudmon.app.tasks import sweep_sessions_once
from net.cloudmon.session.store import MemorySessionStore
from net.cloudmon.store.file import FileBackend
from net.cloudmon.store.relational import RelationalBackend
from net.cloudmon.store.types import WebhookRegistration, utcnow

from conftest import TEST_KEY

ENV_VARS = ["DATABASE_URL", "PG_DSN", "REDIS_URL", "REDIS_DSN", "SENTRY_DSN", "ACCOUNTS_SECRET"]


@pytest.fixture
def settings_factory(tmp_path, monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    def factory(**kwargs):
        kwargs.setdefault("data_dir", str(tmp_path / "data"))
        return Settings(**kwargs)

    return factory


@pytest_asyncio.fixture
async def make_client():
    clients = []

    async def factory(settings):
        app = await start_web_server(settings)
        client = test_utils.TestClient(test_utils.TestServer(app))
        await client.start_server()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()


class TestStartup:
    async def test_file_and_memory_defaults(self, settings_factory, make_client):
        client = await make_client(settings_factory())
        app = client.app

        assert isinstance(app[PersistenceAppKey], FileBackend)
        assert isinstance(app[SessionStoreAppKey], MemorySessionStore)
        assert not app[CredentialManagerAppKey].encryption_enabled
        assert not app[SessionSweepTaskAppKey].done()

    async def test_relational_and_encryption(self, tmp_path, settings_factory, make_client):
        client = await make_client(
            settings_factory(
                database_url=f"sqlite+aiosqlite:///{tmp_path / 'cloudmon.db'}",
                accounts_secret=TEST_KEY,
            )
        )

        assert isinstance(client.app[PersistenceAppKey], RelationalBackend)
        assert client.app[CredentialManagerAppKey].encryption_enabled

    async def test_unreachable_services_fall_back(self, tmp_path, settings_factory, make_client):
        client = await make_client(
            settings_factory(
                database_url=f"sqlite+aiosqlite:///{tmp_path / 'no' / 'such' / 'x.db'}",
                redis_url="redis://127.0.0.1:1/0",
            )
        )

        assert client.app[PersistenceAppKey].kind == "File"
        assert client.app[SessionStoreAppKey].kind == "Memory"

    async def test_webhooks_loaded(self, tmp_path, settings_factory, make_client):
        await FileBackend(tmp_path / "data").save_webhook(
            WebhookRegistration(url="http://example.test/hook")
        )

        client = await make_client(settings_factory())

        assert len(client.app[DispatcherAppKey].get_webhooks()) == 1

    async def test_shutdown_stops_sweep(self, settings_factory):
        app = await start_web_server(settings_factory())
        client = test_utils.TestClient(test_utils.TestServer(app))
        await client.start_server()
        task = app[SessionSweepTaskAppKey]

        await client.close()

        assert task.cancelled()


class TestInternalEndpoints:
    async def test_alive(self, settings_factory, make_client):
        client = await make_client(settings_factory())
        response = await client.get("/internal/alive")
        assert response.status == 200

    @pytest.mark.parametrize("headers", [{}, {SESSION_TOKEN_HEADER: "session_bogus"}])
    async def test_status_requires_session(self, settings_factory, make_client, headers):
        client = await make_client(settings_factory())

        response = await client.get("/internal/status", headers=headers)

        assert response.status == 401
        assert await response.json() == {"error": "Not Authorized"}

    async def test_status(self, settings_factory, make_client):
        client = await make_client(
            settings_factory(accounts_secret=TEST_KEY, quota_warning_threshold=2.5)
        )
        token = await client.app[SessionStoreAppKey].create_session()

        response = await client.get(
            "/internal/status", headers={SESSION_TOKEN_HEADER: token}
        )

        assert response.status == 200
        assert await response.json() == {
            "database": "File",
            "sessions": "Memory",
            "encryption": True,
            "active_sessions": 1,
            "quota_warning_threshold": 2.5,
            "webhooks": 0,
        }


class TestSessionSweep:
    async def test_sweep_once(self):
        clock = Mock(return_value=utcnow())
        store = MemorySessionStore(clock=clock)
        await store.create_session()
        clock.return_value = utcnow() + timedelta(days=11)
        await store.create_session()

        metrics = Mock()
        app = web.Application()
        app[SessionStoreAppKey] = store
        app[MetricsClientAppKey] = metrics

        assert await sweep_sessions_once(app) == 1

        metrics.gauge.assert_called_once_with(
            "cloudmon.session.active", 1, tag_dict={"store": "Memory"}
        )
