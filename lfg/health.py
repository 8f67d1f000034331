"""
Health Check Server
===================
Small aiohttp app answering GET / and GET /health so hosting platforms can
probe the bot while it runs.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from aiohttp import web

logger = logging.getLogger(__name__)

SESSION_COUNT_KEY = web.AppKey('session_count', Callable[[], int])
STARTED_AT_KEY = web.AppKey('started_at', float)


async def health(request: web.Request) -> web.Response:
    app = request.app
    uptime = time.monotonic() - app[STARTED_AT_KEY]
    return web.json_response({
        'status': 'ok',
        'uptime': round(uptime, 1),
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'active_sessions': app[SESSION_COUNT_KEY](),
    })


def create_health_app(session_count: Callable[[], int]) -> web.Application:
    """`session_count` is called on every request for the live session count."""
    app = web.Application()
    app[SESSION_COUNT_KEY] = session_count
    app[STARTED_AT_KEY] = time.monotonic()
    app.router.add_get('/', health)
    app.router.add_get('/health', health)
    return app


async def start_health_server(session_count: Callable[[], int], port: int) -> web.AppRunner:
    """Serve the health app on 0.0.0.0:`port`. Returns the runner for cleanup."""
    runner = web.AppRunner(create_health_app(session_count), access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, '0.0.0.0', port)
    await site.start()
    logger.info(f"✅ Health check server running on port {port}")
    return runner
