"""
Client-side synchronization of a league's live game state.

Local mutations are applied immediately and the resulting snapshot is
pushed to the remote store. Remote changes are merged last-writer-wins on
``lastUpdated``: a strictly older document is discarded, anything else
replaces local state wholesale. There is no field-level merge.

All events (local persist requests, remote notifications, connectivity
changes, clock ticks) flow through one asyncio queue consumed by a single
reconciliation task, so they are handled strictly in arrival order.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, AsyncIterator, Callable, List, Optional, Protocol, Tuple

import live_state
from errors import NetworkUnavailable, RETRYABLE_ERRORS, ScoretrackerError, TERMINAL_ERRORS
from live_state import sanitize
from logger import get_logger
from schemas import LiveGameState

log = get_logger("live_sync")

MAX_SUBSCRIBE_BACKOFF = 30.0


class LiveStateRemote(Protocol):
    async def fetch_live_state(self) -> Optional[LiveGameState]: ...

    async def put_live_state(self, state: LiveGameState) -> LiveGameState: ...

    def subscribe_live_state(self) -> AsyncIterator[Optional[LiveGameState]]: ...


class LiveStateSynchronizer:
    def __init__(
        self,
        remote: LiveStateRemote,
        *,
        client_id: Optional[str] = None,
        online: bool = True,
        initial: Optional[LiveGameState] = None,
        request_timeout: float = 10.0,
        tick_seconds: float = 1.0,
    ) -> None:
        self.client_id = client_id or str(uuid.uuid4())
        self.status: Optional[str] = None
        self.last_error: Optional[ScoretrackerError] = None

        self._remote = remote
        # lastUpdated 0 so the first remote document always wins
        self._state = sanitize(initial) if initial is not None else LiveGameState()
        self._pending: Optional[LiveGameState] = None
        self._online = online
        self._closed = False
        self._timeout = request_timeout
        self._tick_seconds = tick_seconds

        self._events: asyncio.Queue = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> LiveGameState:
        return self._state

    @property
    def pending(self) -> Optional[LiveGameState]:
        return self._pending

    @property
    def online(self) -> bool:
        return self._online

    @property
    def owns_clock(self) -> bool:
        return self._state.is_timer_running and self._state.timer_owner_id == self.client_id

    @property
    def alarm_due(self) -> bool:
        return live_state.is_alarm_due(self._state)

    # ------------------------------------------------------------------
    # Local mutations
    # ------------------------------------------------------------------

    def apply(self, mutation: Callable[..., LiveGameState], *args: Any, **kwargs: Any) -> LiveGameState:
        """Apply a live_state mutation now and queue the result for the remote."""
        next_state = mutation(self._state, *args, **kwargs)
        if next_state is self._state:
            return next_state
        self._state = next_state
        # Single slot: a newer snapshot supersedes any unsent one.
        self._pending = next_state
        self._post("persist")
        return next_state

    def start_timer(self) -> LiveGameState:
        return self.apply(live_state.start_timer, self.client_id)

    def pause_timer(self) -> LiveGameState:
        return self.apply(live_state.pause_timer)

    def set_online(self, online: bool) -> None:
        self._online = online
        self._post("online" if online else "offline")

    def receive_remote(self, incoming: Any) -> None:
        """Queue a pushed change notification for merging."""
        self._post("remote", incoming)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def merge_remote(self, incoming: Any) -> bool:
        if self._closed:
            return False

        incoming = sanitize(incoming)
        if incoming.last_updated < self._state.last_updated:
            log.debug(
                f"Discarding stale live state ({incoming.last_updated} < {self._state.last_updated})"
            )
            return False

        self._state = incoming.model_copy(deep=True)
        if self._pending is not None and self._pending.last_updated <= incoming.last_updated:
            self._pending = None
        return True

    async def flush(self) -> bool:
        """Send the queued snapshot, if any. Returns True when a write landed."""
        if self._pending is None:
            return False
        if not self._online:
            self.status = "Offline. Changes will sync when back online."
            return False

        snapshot = self._pending
        self._pending = None
        try:
            await asyncio.wait_for(self._remote.put_live_state(snapshot), timeout=self._timeout)
        except TERMINAL_ERRORS as exc:
            self.last_error = exc
            self.status = f"Live game sync refused: {exc.message}"
            log.warning(self.status)
            return False
        except (asyncio.TimeoutError, *RETRYABLE_ERRORS) as exc:
            if self._pending is None:
                self._pending = snapshot
            self.last_error = exc if isinstance(exc, ScoretrackerError) else NetworkUnavailable("Request timed out")
            self.status = "Live game changes pending sync"
            log.info(f"Live state write failed, will retry: {self.last_error.message}")
            return False
        except ScoretrackerError as exc:
            self.last_error = exc
            self.status = f"Live game sync failed: {exc.message}"
            log.warning(self.status)
            return False

        self.status = None
        self.last_error = None
        return True

    async def refresh(self) -> bool:
        """Fetch the remote document on demand and merge it."""
        try:
            incoming = await asyncio.wait_for(self._remote.fetch_live_state(), timeout=self._timeout)
        except (asyncio.TimeoutError, *RETRYABLE_ERRORS) as exc:
            self.status = "Unable to load the live game; showing local state"
            log.info(f"Live state fetch failed: {exc}")
            return False
        if incoming is None:
            return False
        return self.merge_remote(incoming)

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------

    def _post(self, kind: str, payload: Any = None) -> None:
        if not self._closed:
            self._events.put_nowait((kind, payload))

    async def _handle(self, kind: str, payload: Any) -> None:
        if kind == "persist":
            await self.flush()
        elif kind == "remote":
            self.merge_remote(payload)
        elif kind == "online":
            await self.flush()
        elif kind == "offline":
            self.status = "Offline. Changes will sync when back online."
        elif kind == "tick":
            self.apply(live_state.tick, self.client_id)

    async def run(self) -> None:
        while not self._closed:
            kind, payload = await self._events.get()
            try:
                await self._handle(kind, payload)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.warning(f"Live state event '{kind}' failed: {exc}")
            finally:
                self._events.task_done()

    async def settle(self) -> None:
        """Wait until every queued event has been handled. No-op once closed."""
        if self._closed:
            return
        await self._events.join()

    async def _run_clock(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._tick_seconds)
            if self.owns_clock:
                self._post("tick")

    async def _run_subscription(self) -> None:
        backoff = 1.0
        while not self._closed:
            if not self._online:
                await asyncio.sleep(backoff)
                continue
            try:
                async for incoming in self._remote.subscribe_live_state():
                    backoff = 1.0
                    self.receive_remote(incoming)
            except asyncio.CancelledError:
                raise
            except TERMINAL_ERRORS as exc:
                self.last_error = exc
                self.status = f"Live updates refused: {exc.message}"
                log.warning(self.status)
                return
            except Exception as exc:
                log.info(f"Live state subscription dropped: {exc}")
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, MAX_SUBSCRIBE_BACKOFF)

    def start(self, *, subscribe: bool = True) -> None:
        if self._tasks:
            return
        self._tasks.append(asyncio.create_task(self.run()))
        self._tasks.append(asyncio.create_task(self._run_clock()))
        if subscribe:
            self._tasks.append(asyncio.create_task(self._run_subscription()))

    async def close(self) -> None:
        """Stop all tasks; late responses are ignored from here on."""
        self._closed = True
        tasks: Tuple[asyncio.Task, ...] = tuple(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
