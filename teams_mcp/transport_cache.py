"""Bounded cache of streamable-HTTP transports, each wired to its own MCP server.

Every entry owns an isolated FastMCP server (all tools registered) and the transport
that speaks the wire protocol for one MCP session. Entries are looked up by session id
and created on a miss. They leave the cache by LRU overflow, by TTL expiry (measured
from creation, not refreshed on use), when the client terminates the session, or on
teardown. Removal is synchronous; closing the transport happens afterwards on the
cache's task group, once requests still running on the session have finished (bounded
by ``drain_timeout``). A failing close is only logged.
"""

import logging
import time
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Iterator, List, Optional, Tuple
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup
from cachetools import TTLCache
from mcp.server.fastmcp import FastMCP
from mcp.server.streamable_http import StreamableHTTPServerTransport

from .server import lowlevel_server

logger = logging.getLogger(__name__)

ServerFactory = Callable[[], FastMCP]
TransportFactory = Callable[[str], StreamableHTTPServerTransport]


@dataclass(eq=False)
class TransportSession:
    id: str
    transport: StreamableHTTPServerTransport
    server: FastMCP
    created_at: float
    resumed: bool = False
    _scope: Optional[anyio.CancelScope] = field(default=None, repr=False)
    _closed: bool = field(default=False, repr=False)
    _closing: bool = field(default=False, repr=False)
    _active: int = field(default=0, repr=False)
    _idle: Optional[anyio.Event] = field(default=None, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_requests(self) -> int:
        return self._active

    @contextmanager
    def in_use(self) -> Iterator["TransportSession"]:
        """Mark a request as running on this session; eviction waits for it to finish."""
        self._active += 1
        try:
            yield self
        finally:
            self._active -= 1
            if not self._active and self._idle is not None:
                self._idle.set()
                self._idle = None

    async def wait_idle(self) -> None:
        while self._active:
            if self._idle is None:
                self._idle = anyio.Event()
            await self._idle.wait()

    async def aclose(self) -> None:
        """Terminate the transport and stop the server task. Runs at most once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.transport.terminate()
        finally:
            if self._scope is not None:
                self._scope.cancel()


class _EvictingTTLCache(TTLCache):
    """TTLCache that reports the entries it drops on its own."""

    def __init__(self, maxsize, ttl, timer, on_evict):
        super().__init__(maxsize, ttl, timer=timer)
        self._on_evict = on_evict

    def popitem(self):
        key, value = super().popitem()
        self._on_evict(value, "capacity")
        return key, value

    def expire(self, time=None):
        expired = super().expire(time)
        for _, value in expired:
            self._on_evict(value, "expired")
        return expired


class TransportSessionCache:
    """LRU/TTL cache of :class:`TransportSession` keyed by MCP session id.

    Must be running (``async with cache.run():``) before sessions are acquired; the
    run context owns the task group that hosts server tasks and transport closes.
    """

    def __init__(
        self,
        server_factory: ServerFactory,
        *,
        maxsize: int = 100,
        ttl: float = 30.0,
        json_response: bool = False,
        timer: Callable[[], float] = time.monotonic,
        transport_factory: Optional[TransportFactory] = None,
        reap_interval: float = 1.0,
        drain_timeout: float = 25.0,
    ):
        self._server_factory = server_factory
        self._json_response = json_response
        self._transport_factory = transport_factory or self._default_transport
        self._timer = timer
        self._reap_interval = reap_interval
        self._drain_timeout = drain_timeout
        self._sessions = _EvictingTTLCache(maxsize, ttl, timer, self._schedule_close)
        self._creation_lock = anyio.Lock()
        self._task_group: Optional[TaskGroup] = None
        self._tearing_down = False
        self._pending_closes: List[Tuple[TransportSession, str]] = []
        self.acquired_count = 0

    def _default_transport(self, session_id: str) -> StreamableHTTPServerTransport:
        return StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=self._json_response,
        )

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @asynccontextmanager
    async def run(self) -> AsyncIterator["TransportSessionCache"]:
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            tg.start_soon(self._reap)
            try:
                yield self
            finally:
                with anyio.CancelScope(shield=True):
                    await self.teardown()
                tg.cancel_scope.cancel()
                self._task_group = None

    async def acquire(self, session_id: Optional[str] = None, *, resume: bool = True) -> TransportSession:
        """Return the live session for ``session_id``, creating it on a miss.

        With no id a fresh one is minted. A session created for an id the cache no
        longer knows (``resume=True``) starts with its server already initialized, so
        the client can keep using the id it was given before eviction.
        """
        if self._task_group is None:
            raise RuntimeError("TransportSessionCache is not running; use 'async with cache.run()'")
        self.acquired_count += 1
        if session_id is None:
            session_id, resume = uuid4().hex, False

        self._sessions.expire()
        session = self._lookup(session_id)
        if session is not None:
            return session

        async with self._creation_lock:
            session = self._lookup(session_id)
            if session is None:
                session = await self._create(session_id, resume)
        return session

    def _lookup(self, session_id: str) -> Optional[TransportSession]:
        session = self._sessions.get(session_id)
        if session is None or session._closing or session.transport.is_terminated:
            return None
        return session

    async def _create(self, session_id: str, resumed: bool) -> TransportSession:
        session = TransportSession(
            id=session_id,
            transport=self._transport_factory(session_id),
            server=self._server_factory(),
            created_at=self._timer(),
            resumed=resumed,
        )
        await self._task_group.start(self._serve, session)
        stale = self._sessions.pop(session_id, None)
        if stale is not None:
            self._schedule_close(stale, "replaced")
        self._sessions[session_id] = session
        logger.info(
            "Created and cached transport %s with isolated server (%d cached)",
            session_id, len(self._sessions),
        )
        return session

    async def _serve(self, session: TransportSession, *, task_status=anyio.TASK_STATUS_IGNORED):
        lowlevel = lowlevel_server(session.server)
        with anyio.CancelScope() as scope:
            session._scope = scope
            async with session.transport.connect() as (read_stream, write_stream):
                task_status.started()
                try:
                    await lowlevel.run(
                        read_stream,
                        write_stream,
                        lowlevel.create_initialization_options(),
                        stateless=session.resumed,
                    )
                except Exception:
                    logger.exception("MCP server for transport %s stopped with an error", session.id)
        if self._sessions.get(session.id) is session:
            self.discard(session)

    def discard(self, session: TransportSession) -> None:
        """Drop ``session`` (e.g. after the client terminated it) and close it."""
        if self._sessions.get(session.id) is session:
            self._sessions.pop(session.id, None)
        self._schedule_close(session, "discarded")

    def expire(self) -> None:
        """Evict every entry whose TTL has elapsed."""
        self._sessions.expire()

    def _schedule_close(self, session: TransportSession, reason: str) -> None:
        if session._closing:
            return
        session._closing = True
        if self._task_group is None or self._tearing_down:
            self._pending_closes.append((session, reason))
        else:
            self._task_group.start_soon(self._close, session, reason)

    async def _close(self, session: TransportSession, reason: str) -> None:
        if session.active_requests:
            logger.info(
                "Transport %s left the cache (%s); waiting for %d running request(s)",
                session.id, reason, session.active_requests,
            )
            with anyio.move_on_after(self._drain_timeout):
                await session.wait_idle()
        logger.info("Disposing transport %s from cache (%s)", session.id, reason)
        try:
            await session.aclose()
        except Exception:
            logger.exception("Error closing transport %s", session.id)

    async def _reap(self) -> None:
        while True:
            await anyio.sleep(self._reap_interval)
            self._sessions.expire()

    async def teardown(self) -> None:
        """Evict every entry and wait for all of their transports to close."""
        logger.info("Destroying transport cache")
        self._tearing_down = True
        try:
            self._sessions.expire()
            for session_id in list(self._sessions):
                session = self._sessions.pop(session_id, None)
                if session is not None:
                    self._schedule_close(session, "teardown")
            pending, self._pending_closes = self._pending_closes, []
            async with anyio.create_task_group() as tg:
                for session, reason in pending:
                    tg.start_soon(self._close, session, reason)
        finally:
            self._tearing_down = False
