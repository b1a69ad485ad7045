import json
import logging
from typing import Optional

from aiohttp import web

from net.cloudmon.app.config import (
    SESSION_TOKEN_HEADER,
    CredentialManagerAppKey,
    DispatcherAppKey,
    PersistenceAppKey,
    SessionStoreAppKey,
    SettingsAppKey,
)
from net.cloudmon.store.types import Session

logger = logging.getLogger(__name__)


async def session_helper(request: web.Request) -> Optional[Session]:
    """Return the live session named by the X-Session-Token header, if any."""
    token = request.headers.get(SESSION_TOKEN_HEADER, "").strip()
    if not token:
        return None
    return await request.app[SessionStoreAppKey].validate_session(token)


async def handle_internal_alive(request: web.Request):
    return web.Response(status=200)


async def handle_internal_status(request: web.Request):
    session = await session_helper(request)
    if session is None:
        raise web.HTTPUnauthorized(
            body=json.dumps({"error": "Not Authorized"}),
            content_type="application/json",
        )

    settings = request.app[SettingsAppKey]
    session_store = request.app[SessionStoreAppKey]

    return web.json_response(
        {
            "database": request.app[PersistenceAppKey].kind,
            "sessions": session_store.kind,
            "encryption": request.app[CredentialManagerAppKey].encryption_enabled,
            "active_sessions": await session_store.get_active_session_count(),
            "quota_warning_threshold": settings.quota_warning_threshold,
            "webhooks": len(request.app[DispatcherAppKey].get_webhooks()),
        }
    )
