import asyncio
import contextlib
import logging
from time import time
from typing import Optional

import aiohttp
from aiohttp import web
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from net.cloudmon.app.config import (
    CredentialManagerAppKey,
    DispatcherAppKey,
    MetricsClientAppKey,
    PersistenceAppKey,
    SessionAppKey,
    SessionStoreAppKey,
    SessionSweepTaskAppKey,
    Settings,
    SettingsAppKey,
)
from net.cloudmon.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_status,
)
from net.cloudmon.app.metrics import create_metrics_client
from net.cloudmon.app.tasks import session_sweep_task
from net.cloudmon.credentials import CredentialManager
from net.cloudmon.crypto.cipher import SecretCipher
from net.cloudmon.notify.dispatcher import NotificationDispatcher
from net.cloudmon.session.store import create_session_store
from net.cloudmon.store.factory import select_persistence_backend

logger = logging.getLogger(__name__)


def _trace_config(debug: bool) -> aiohttp.TraceConfig:
    trace_config = aiohttp.TraceConfig()

    if debug:

        async def on_request_start(
            session, trace_config_ctx, params: aiohttp.TraceRequestStartParams
        ):
            logger.debug("Starting request: %s %s", params.method, params.url)

        async def on_request_end(
            session, trace_config_ctx, params: aiohttp.TraceRequestEndParams
        ):
            logger.debug(
                "Ending request: %s %s -> %s",
                params.method,
                params.url,
                params.response.status,
            )

        trace_config.on_request_start.append(on_request_start)
        trace_config.on_request_end.append(on_request_end)

    return trace_config


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    metrics_client = create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )
    await metrics_client.connect()
    app[MetricsClientAppKey] = metrics_client

    backend = await select_persistence_backend(
        settings.database_url,
        settings.data_dir,
        settings.database_probe_timeout,
        settings.database_query_timeout,
    )
    app[PersistenceAppKey] = backend

    session_store = await create_session_store(settings.redis_url)
    app[SessionStoreAppKey] = session_store

    http_session = aiohttp.ClientSession(
        trace_configs=[_trace_config(settings.debug)]
    )
    app[SessionAppKey] = http_session

    dispatcher = NotificationDispatcher(http_session, metrics_client)
    await dispatcher.reload(backend)
    app[DispatcherAppKey] = dispatcher

    credential_manager = CredentialManager(
        backend,
        SecretCipher.from_setting(settings.accounts_secret),
        settings.bcrypt_rounds,
    )
    app[CredentialManagerAppKey] = credential_manager

    logger.info(
        "Startup complete: storage=%s sessions=%s encryption=%s webhooks=%d",
        backend.kind,
        session_store.kind,
        credential_manager.encryption_enabled,
        len(dispatcher.get_webhooks()),
    )

    app[SessionSweepTaskAppKey] = asyncio.create_task(session_sweep_task(app))

    yield

    logger.info("Shutting down background tasks")

    app[SessionSweepTaskAppKey].cancel()

    with contextlib.suppress(asyncio.CancelledError):
        await app[SessionSweepTaskAppKey]

    await dispatcher.drain()
    await http_session.close()
    await session_store.close()
    await backend.close()
    await metrics_client.close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        metrics_client.increment(
            "cloudmon.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "cloudmon.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "cloudmon.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


async def start_web_server(settings: Optional[Settings] = None):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(middlewares=[statsd_middleware, sentry_middleware])

    app[SettingsAppKey] = settings

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/status", handle_internal_status),
        ]
    )

    app.cleanup_ctx.append(background_tasks)

    return app
