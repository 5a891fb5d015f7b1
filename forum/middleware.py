import time
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Receive, Scope, Send

# ---------------------------------------------------------------------------
# Per-request context variable
# ---------------------------------------------------------------------------

# Holds a one-element list rather than an int: loader fetches run in their
# own tasks with a copied context, and only a shared mutable cell lets
# their statements reach the request's total.
query_count_var: ContextVar[list[int] | None] = ContextVar("query_count", default=None)


def install_query_counter(engine) -> None:
    """
    Register a ``before_cursor_execute`` event listener on *engine* that
    increments the per-request counter for every SQL statement.

    This captures ALL queries, including the bulk fetches issued by the
    request's batch loaders.

    ``forum.database.build_engine`` calls this once for every engine it
    creates.
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _count_query(conn, cursor, statement, parameters, context, executemany):
        counter = query_count_var.get()
        if counter is not None:
            counter[0] += 1


# ---------------------------------------------------------------------------
# Middleware (pure ASGI, avoids BaseHTTPMiddleware ContextVar isolation)
# ---------------------------------------------------------------------------

class TimingMiddleware:
    """
    Pure ASGI middleware that adds two diagnostic response headers:

    - ``X-Response-Time-Ms``: wall-clock time for the entire request.
    - ``X-Query-Count``: total SQL queries executed during the request,
      counted via the SQLAlchemy engine event registered by
      ``install_query_counter``.

    Unlike ``BaseHTTPMiddleware``, this does NOT spawn a child asyncio
    task for the inner application, so the counter installed here is the
    one the engine listener sees.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        counter = [0]
        query_count_var.set(counter)
        start = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                headers = list(message.get("headers", []))
                headers.append((b"x-response-time-ms", str(duration_ms).encode()))
                headers.append((b"x-query-count", str(counter[0]).encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)
