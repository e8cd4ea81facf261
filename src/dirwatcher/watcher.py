"""Polling watcher producing event groups for changes in a remote directory.

Each poll runs a fixed pipeline of steps::

    list -> read mirror -> diff -> delete guard -> sync -> push events -> save state

Only one poll runs at a time. The watcher is consumed as an async iterator of
``EventGroup`` values; reading from it signals that the consumer is ready for
more, and groups produced while the consumer is not reading are buffered and
handed over in order once it resumes.

    watcher = Watcher(WatcherConfig(directory="/stor/inbox"), store)
    async for group in watcher:
        print(group.to_json())
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Deque, List, Optional

from .config import StoreConfig, WatcherConfig
from .diff import diff_snapshots
from .entries import DirectoryEntry, LocalDirent, Snapshot
from .errors import ListingError, NotFoundError
from .events import Change, EventGroup
from .guard import check_delete_guard
from .mirror import read_local_dirents, reconcile
from .store import RemoteStore, create_store
from .sync import MirrorSync

logger = logging.getLogger(__name__)

DEFAULT_HIGH_WATER_MARK = 16

ErrorListener = Callable[[Exception], None]


class WatcherState(str, Enum):
    """Lifecycle states of a watcher."""

    IDLE = "idle"
    PAUSED = "paused"
    POLLING = "polling"
    CLOSED = "closed"


class GroupBuffer:
    """FIFO of event groups waiting for the consumer to resume."""

    def __init__(self) -> None:
        self._groups: Deque[EventGroup] = deque()

    def __len__(self) -> int:
        return len(self._groups)

    def append(self, group: EventGroup) -> None:
        self._groups.append(group)

    def popleft(self) -> EventGroup:
        return self._groups.popleft()

    def drain(self) -> List[EventGroup]:
        groups = list(self._groups)
        self._groups.clear()
        return groups


@dataclass
class PollContext:
    """State owned by a single in-flight poll."""

    old_state: Optional[Snapshot]
    new_state: Snapshot = field(default_factory=dict)
    dirents: List[DirectoryEntry] = field(default_factory=list)
    local_dirents: List[LocalDirent] = field(default_factory=list)
    changes: List[Change] = field(default_factory=list)
    possible_updates: int = 0


PollStep = Callable[[PollContext], Awaitable[None]]


class Watcher:
    """Watches one remote directory and emits an event group per changed poll.

    If no ``store`` is given one is built from ``store_config`` (or the
    environment) and closed along with the watcher; a store passed in by the
    caller is left open.
    """

    def __init__(
        self,
        config: WatcherConfig,
        store: Optional[RemoteStore] = None,
        *,
        store_config: Optional[StoreConfig] = None,
        high_water_mark: int = DEFAULT_HIGH_WATER_MARK,
    ):
        config.validate()
        if high_water_mark < 1:
            raise ValueError(f"high_water_mark must be at least 1: {high_water_mark}")

        self._config = config
        self._filter = config.entry_filter()
        if store is None:
            self._store = create_store(store_config)
            self._owns_store = True
        else:
            self._store = store
            self._owns_store = False
        self._store_released = False

        self._sync: Optional[MirrorSync] = None
        if config.mirror_directory is not None:
            self._sync = MirrorSync(
                self._store,
                config.mirror_directory,
                allow_deletion=config.allow_mirror_deletion,
                dry_run=config.dry_run,
            )

        self._high_water_mark = high_water_mark
        self._state: Optional[Snapshot] = None
        self._buffer = GroupBuffer()
        self._readable: Deque[EventGroup] = deque()
        self._waiter: Optional[asyncio.Future] = None
        self._error_listeners: List[ErrorListener] = []

        self._started = False
        self._paused = True
        self._closed = False
        self._ended = False
        self._polling = False
        self._poke_pending = False
        self._poll_timer: Optional[asyncio.Handle] = None
        self._poke_handle: Optional[asyncio.Handle] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._last_poll_completed: Optional[float] = None

        logger.debug("Watcher created for %s (interval=%ss)", config.directory, config.poll_interval)

    @property
    def config(self) -> WatcherConfig:
        return self._config

    @property
    def state(self) -> WatcherState:
        if self._closed:
            return WatcherState.CLOSED
        if not self._started:
            return WatcherState.IDLE
        if self._paused:
            return WatcherState.PAUSED
        return WatcherState.POLLING

    @property
    def snapshot(self) -> Optional[Snapshot]:
        """Copy of the last committed snapshot, ``None`` before the first poll."""

        return None if self._state is None else dict(self._state)

    @property
    def poll_in_flight(self) -> bool:
        return self._polling

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Register a callback receiving each poll's error."""

        self._error_listeners.append(listener)

    # ---- flow control

    def resume(self) -> None:
        """The consumer is ready: flush buffered groups, then resume polling."""

        if self._closed or not self._paused:
            return
        self._started = True
        self._paused = False

        while self._buffer:
            if not self._push(self._buffer.popleft()):
                self.pause()
                return

        if self._poll_timer is not None or self._polling:
            return
        loop = asyncio.get_running_loop()
        delay = 0.0
        if self._last_poll_completed is not None:
            delay = self._last_poll_completed + self._config.poll_interval - loop.time()
        logger.debug("resume: next poll of %s in %.3fs", self._config.directory, max(delay, 0.0))
        if delay <= 0:
            self._poll_timer = loop.call_soon(self._on_poll_timer)
        else:
            self._poll_timer = loop.call_later(delay, self._on_poll_timer)

    def pause(self) -> None:
        """The consumer is busy: stop scheduling polls. A running poll finishes."""

        self._paused = True
        self._cancel_poll_timer()

    def poke(self) -> None:
        """Poll as soon as possible, ignoring the interval and the pause state."""

        if self._closed:
            return
        self._cancel_poll_timer()
        if self._polling:
            self._poke_pending = True
            return
        if self._poke_handle is None:
            self._poke_handle = asyncio.get_running_loop().call_soon(self._on_poke)

    def close(self) -> None:
        """Stop polling for good and end the stream after any buffered groups."""

        if self._closed:
            return
        self._closed = True
        self._paused = True
        self._poke_pending = False
        self._cancel_poll_timer()
        if self._poke_handle is not None:
            self._poke_handle.cancel()
            self._poke_handle = None
        if not self._polling:
            self._release_store()

        self._readable.extend(self._buffer.drain())
        self._ended = True
        self._wake()
        logger.info("Watcher for %s closed", self._config.directory)

    async def aclose(self) -> None:
        """Close, then wait for a poll that was already running to finish."""

        task = self._poll_task
        self.close()
        if task is not None and not task.done():
            await task

    async def __aenter__(self) -> "Watcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def __aiter__(self) -> "Watcher":
        return self

    async def __anext__(self) -> EventGroup:
        while True:
            if self._readable:
                group = self._readable.popleft()
                self._read()
                return group
            if self._ended:
                raise StopAsyncIteration
            self._read()
            if self._readable or self._ended:
                continue
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None

    def _read(self) -> None:
        if len(self._readable) < self._high_water_mark:
            self.resume()

    def _push(self, group: EventGroup) -> bool:
        """Hand a group to the consumer; ``False`` means it wants no more for now."""

        self._readable.append(group)
        self._wake()
        return len(self._readable) < self._high_water_mark

    def _wake(self) -> None:
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)

    # ---- scheduling

    def _cancel_poll_timer(self) -> None:
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None

    def _on_poll_timer(self) -> None:
        self._poll_timer = None
        self._start_poll()

    def _on_poke(self) -> None:
        self._poke_handle = None
        self._start_poll()

    def _start_poll(self) -> None:
        if self._closed or self._polling:
            return
        self._polling = True
        self._poll_task = asyncio.get_running_loop().create_task(self._run_poll())

    def _after_poll(self) -> None:
        if self._closed:
            self._release_store()
            return
        if self._config.one_shot:
            self.close()
            return

        loop = asyncio.get_running_loop()
        if self._poke_pending:
            self._poke_pending = False
            self._poke_handle = loop.call_soon(self._on_poke)
        elif not self._paused:
            self._poll_timer = loop.call_later(self._config.poll_interval, self._on_poll_timer)
            logger.debug("Next poll of %s in %ss", self._config.directory, self._config.poll_interval)

    def _release_store(self) -> None:
        if self._owns_store and not self._store_released:
            self._store_released = True
            self._store.close()

    # ---- the poll pipeline

    async def _run_poll(self) -> None:
        context = PollContext(old_state=self._state)
        logger.debug("Poll of %s started", self._config.directory)
        try:
            for step in self._pipeline():
                await step(context)
        except Exception as exc:
            self._report_error(exc)
        finally:
            self._polling = False
            self._last_poll_completed = asyncio.get_running_loop().time()
            logger.debug("Poll of %s finished", self._config.directory)
            self._after_poll()

    def _pipeline(self) -> List[PollStep]:
        return [
            self._list_directory,
            self._read_local_dirents,
            self._changes_from_dirents,
            self._check_delete_guard,
            self._sync_changes,
            self._push_events,
            self._save_state,
        ]

    def _reconciling(self, context: PollContext) -> Optional[Path]:
        """The mirror directory when this poll bootstraps against it."""

        if context.old_state is not None:
            return None
        return self._config.mirror_directory

    async def _list_directory(self, context: PollContext) -> None:
        directory = self._config.directory
        try:
            async for entry in self._store.list_directory(directory):
                if not self._filter.matches(entry) or entry.name in context.new_state:
                    continue
                context.new_state[entry.name] = entry
                context.dirents.append(entry)
        except NotFoundError:
            logger.debug("%s does not exist; treating it as empty", directory)
            context.new_state.clear()
            context.dirents.clear()
        except Exception as exc:
            raise ListingError(f"cannot list {directory}: {exc}") from exc
        logger.debug("Listed %s matching entries in %s", len(context.dirents), directory)

    async def _read_local_dirents(self, context: PollContext) -> None:
        mirror_directory = self._reconciling(context)
        if mirror_directory is None:
            return
        context.local_dirents = await read_local_dirents(mirror_directory, self._filter)

    async def _changes_from_dirents(self, context: PollContext) -> None:
        if context.old_state is not None:
            context.changes = diff_snapshots(context.old_state, context.dirents)
        elif self._reconciling(context) is not None:
            result = await reconcile(self._store, context.dirents, context.local_dirents)
            context.changes = result.changes
            context.possible_updates = result.possible_updates
        else:
            logger.debug("First poll of %s; recording %s entries", self._config.directory, len(context.dirents))
        logger.debug("%s changes in %s", len(context.changes), self._config.directory)

    async def _check_delete_guard(self, context: PollContext) -> None:
        mirror_directory = self._reconciling(context)
        if (
            mirror_directory is None
            or not self._config.allow_mirror_deletion
            or self._config.disable_delete_guard
        ):
            return
        check_delete_guard(
            context.changes,
            context.possible_updates,
            mirror_directory=mirror_directory,
            watched_directory=self._config.directory,
        )

    async def _sync_changes(self, context: PollContext) -> None:
        if self._sync is None or not context.changes:
            return
        await self._sync.apply(context.changes)

    async def _push_events(self, context: PollContext) -> None:
        if not context.changes:
            return
        group = EventGroup.from_changes(context.changes, watched_directory=self._config.directory)
        if self._closed:
            logger.warning("Discarding %s events for %s: watcher is closed", len(group), self._config.directory)
        elif self._paused:
            logger.debug("Buffering %s events for %s", len(group), self._config.directory)
            self._buffer.append(group)
        else:
            logger.debug("Pushing %s events for %s", len(group), self._config.directory)
            if not self._push(group):
                self.pause()

    async def _save_state(self, context: PollContext) -> None:
        self._state = context.new_state

    def _report_error(self, exc: Exception) -> None:
        if not self._error_listeners:
            logger.error("Poll of %s failed: %s", self._config.directory, exc)
            return
        for listener in list(self._error_listeners):
            try:
                listener(exc)
            except Exception:  # pragma: no cover - protective logging
                logger.exception("Error listener failed for %s", exc)
