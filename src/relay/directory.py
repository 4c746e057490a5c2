"""Session directory HTTP API.

Read-only snapshot of live sessions and their occupancy, fetched by clients
before they pick a session to join.
"""

import logging

from aiohttp import web

from relay.store import SessionStore

logger = logging.getLogger(__name__)

STORE_KEY = web.AppKey("session_store", SessionStore)


async def list_sessions(request: web.Request) -> web.Response:
    """List occupied sessions.

    Response format:
    [
        {"id": str, "userCount": int},
        ...
    ]
    """
    store = request.app[STORE_KEY]
    sessions = [
        {"id": summary.session_id, "userCount": summary.member_count}
        for summary in store.list_sessions()
    ]

    logger.debug("Session directory served", extra={"session_count": len(sessions)})
    return web.json_response(sessions)


def setup_directory_routes(app: web.Application, store: SessionStore) -> None:
    """Set up session directory routes on application.

    Args:
        app: aiohttp Application instance
        store: Session store to snapshot
    """
    app[STORE_KEY] = store
    app.router.add_get("/api/sessions", list_sessions)

    logger.info("Session directory endpoint configured: /api/sessions")
