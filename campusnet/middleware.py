import logging
import time
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Per-request context variable
# ---------------------------------------------------------------------------

query_count_var: ContextVar[int] = ContextVar("query_count", default=0)


def install_query_counter(engine) -> None:
    """
    Register a ``before_cursor_execute`` listener on *engine* that bumps the
    per-request ``query_count_var`` for every SQL statement sent to the
    database.

    Call once per engine: the production engine in ``database.py`` and the
    test engine in ``tests/conftest.py``.
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _count_query(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


# ---------------------------------------------------------------------------
# Middleware (pure ASGI, no BaseHTTPMiddleware)
# ---------------------------------------------------------------------------

class TimingMiddleware:
    """
    Adds ``X-Response-Time-Ms`` and ``X-Query-Count`` to every HTTP response
    and logs requests slower than *slow_request_ms*.

    Runs the downstream app in the same task, so ContextVar writes made by
    the query counter are visible here once the response starts.
    Websocket scopes only get the counter reset; they have no response
    headers to decorate.
    """

    def __init__(self, app: ASGIApp, slow_request_ms: float = 1000.0) -> None:
        self.app = app
        self.slow_request_ms = slow_request_ms

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        query_count_var.set(0)
        if scope["type"] == "websocket":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                headers = list(message.get("headers", []))
                headers.append((b"x-response-time-ms", str(duration_ms).encode()))
                headers.append((b"x-query-count", str(query_count_var.get()).encode()))
                message["headers"] = headers
                if duration_ms > self.slow_request_ms:
                    logger.warning(
                        "Slow request %s %s: %.1f ms, %d queries",
                        scope.get("method"), scope.get("path"),
                        duration_ms, query_count_var.get(),
                    )
            await send(message)

        await self.app(scope, receive, send_wrapper)
