import asyncio
import logging
from typing import NoReturn

from aiohttp import web
import sentry_sdk

from net.cloudmon.app.config import (
    MetricsClientAppKey,
    SessionStoreAppKey,
    SettingsAppKey,
)

logger = logging.getLogger(__name__)


async def sweep_sessions_once(app: web.Application) -> int:
    session_store = app[SessionStoreAppKey]
    metrics_client = app[MetricsClientAppKey]

    removed = await session_store.clean_expired_sessions()
    active = await session_store.get_active_session_count()

    metrics_client.increment(
        "cloudmon.session.expired", removed, tag_dict={"store": session_store.kind}
    )
    metrics_client.gauge(
        "cloudmon.session.active", active, tag_dict={"store": session_store.kind}
    )
    if removed > 0:
        logger.info("Removed %d expired sessions, %d active", removed, active)
    return removed


async def session_sweep_task(app: web.Application) -> NoReturn:
    """
    Remove expired sessions every SESSION_SWEEP_INTERVAL seconds.

    Redis expires session keys natively, so for the distributed store a pass
    only refreshes the active session gauge.
    """

    logger.info("Starting session sweep task")

    interval = app[SettingsAppKey].session_sweep_interval
    while True:
        try:
            await sweep_sessions_once(app)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Error sweeping sessions")

        await asyncio.sleep(interval)
