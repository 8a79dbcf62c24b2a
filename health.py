"""HTTP liveness endpoints served from the bot's own event loop."""
import html
import logging
import time
from typing import Callable, Dict

from aiohttp import web

logger = logging.getLogger(__name__)

StatusProvider = Callable[[], Dict[str, object]]

STATUS_PAGE = """<!doctype html>
<html>
<head><title>Policy Pulse</title></head>
<body>
<h1>Policy Pulse is running</h1>
<ul>
{rows}
</ul>
</body>
</html>
"""


def create_app(status_provider: StatusProvider) -> web.Application:
    """Build the app. `status_provider` returns a small dict describing the bot."""
    started = time.time()

    async def index(request: web.Request) -> web.Response:
        status = status_provider()
        status["uptime_seconds"] = int(time.time() - started)
        rows = "\n".join(
            f"<li><b>{html.escape(str(key))}</b>: {html.escape(str(value))}</li>"
            for key, value in status.items()
        )
        return web.Response(text=STATUS_PAGE.format(rows=rows), content_type="text/html")

    async def health(request: web.Request) -> web.Response:
        status = status_provider()
        return web.json_response({"ok": True, "ts": int(time.time() * 1000), **status})

    async def ping(request: web.Request) -> web.Response:
        return web.Response(text="pong")

    app = web.Application()
    app.router.add_get("/", index)
    app.router.add_get("/health", health)
    app.router.add_get("/ping", ping)
    return app


async def start_health_server(status_provider: StatusProvider, port: int) -> web.AppRunner:
    """Start listening on 0.0.0.0:`port`. Returns the runner so the caller can clean it up."""
    runner = web.AppRunner(create_app(status_provider), access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host="0.0.0.0", port=port)
    await site.start()
    logger.info("Health server listening on :%s", port)
    return runner
