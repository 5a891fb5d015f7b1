"""
Per-request batch loaders.

A ``BatchLoader`` collects every ``load(key)`` issued before the running
task yields to the event loop and resolves them all from one bulk fetch.
Resolving the creators of twenty posts therefore costs one SELECT instead
of twenty.

Loaders hold pending futures and are bound to a single ``AsyncSession``,
so they must never outlive a request: ``get_loaders`` in
``forum.dependencies`` builds a fresh ``RequestLoaders`` for each request
and closes it on teardown.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable, Iterable, Mapping
from typing import Any, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from forum.errors import DomainError, StoreFailure
from forum.models import User, Vote
from forum.repository import find_many_by_ids

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

BatchFn = Callable[[list[K]], Awaitable[Mapping[K, V]]]


class BatchLoader(Generic[K, V]):
    """
    Coalesce key lookups issued within one event-loop tick.

    *batch_fn* receives the distinct keys of a window in first-requested
    order and returns a mapping of key -> value; keys missing from the
    mapping resolve to ``None``. Nothing is cached between windows.
    """

    def __init__(self, batch_fn: BatchFn, name: str = "loader") -> None:
        self._batch_fn = batch_fn
        self.name = name
        # key -> every future handed out for it in the current window
        self._queue: dict[K, list[asyncio.Future]] = {}
        self._handle: asyncio.Handle | None = None
        self._inflight: set[asyncio.Task] = set()

    def load(self, key: K) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.setdefault(key, []).append(future)
        if self._handle is None:
            self._handle = loop.call_soon(self._dispatch)
        return future

    def load_many(self, keys: Iterable[K]) -> asyncio.Future:
        """Return a future of the values for *keys*, aligned with their order."""
        return asyncio.gather(*(self.load(key) for key in keys))

    def close(self) -> None:
        """Cancel everything still pending; used when the request ends."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        batch, self._queue = self._queue, {}
        for futures in batch.values():
            for future in futures:
                future.cancel()
        for task in list(self._inflight):
            task.cancel()

    # ------------------------------------------------------------------
    # Window handling
    # ------------------------------------------------------------------

    def _dispatch(self) -> None:
        self._handle = None
        batch, self._queue = self._queue, {}
        if not batch:
            return
        task = asyncio.get_running_loop().create_task(self._run_batch(batch))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_batch(self, batch: dict[K, list[asyncio.Future]]) -> None:
        keys = list(batch)
        logger.debug("%s: fetching %d key(s)", self.name, len(keys))
        try:
            found = await self._batch_fn(keys)
        except asyncio.CancelledError:
            for futures in batch.values():
                for future in futures:
                    future.cancel()
            raise
        except Exception as exc:
            logger.warning("%s: batch of %d key(s) failed: %s", self.name, len(keys), exc)
            error = exc if isinstance(exc, DomainError) else StoreFailure(f"{self.name} fetch failed")
            for futures in batch.values():
                for future in futures:
                    if not future.done():
                        future.set_exception(error)
            return

        for key, futures in batch.items():
            value = found.get(key)
            for future in futures:
                # The awaiting task may have been cancelled meanwhile.
                if not future.done():
                    future.set_result(value)


class RequestLoaders:
    """
    The loaders available to one request.

    All batch functions share the request's session, so they take turns
    through a lock: two loaders whose windows close in the same tick must
    not drive the ``AsyncSession`` concurrently.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db
        self._lock = asyncio.Lock()
        self.users: BatchLoader[int, User] = BatchLoader(self._load_users, name="users")
        # Keyed by (user_id, post_id)
        self.votes: BatchLoader[tuple[int, int], Vote] = BatchLoader(self._load_votes, name="votes")

    async def _load_users(self, ids: list[int]) -> dict[Any, User]:
        async with self._lock:
            return await find_many_by_ids(self._db, User, ids)

    async def _load_votes(self, keys: list[tuple[int, int]]) -> dict[Any, Vote]:
        async with self._lock:
            return await find_many_by_ids(self._db, Vote, keys)

    def close(self) -> None:
        self.users.close()
        self.votes.close()
