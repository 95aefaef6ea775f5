"""Auto-save scheduler: debounced, coalescing, single-flight background saves.

A burst of edits becomes one remote save per debounce window, always with
the newest values.  Pending snapshots are coalesced per section, so editing
section 2 before section 1's window closes does not drop section 1.

State machine (``SaveState``):

    idle ──schedule──▶ scheduled ──timer──▶ in_flight ──ok──▶ idle
                          ▲                     │
                          └──── retry (backoff) ┤ fail, attempt < max_retries
                                                └─▶ failed (attempt >= max_retries)

Only one remote save runs at a time.  The same lock is lent to explicit
section confirmations through ``exclusive()``, so a background save can
never overtake a confirmation that started earlier.  An in-flight save is
never cancelled; edits that arrive meanwhile are saved right after it.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

from draftflow.config import settings
from draftflow.engine.errors import PersistenceError
from draftflow.engine.values import has_meaningful_data

logger = logging.getLogger(__name__)


class SaveState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"
    FAILED = "failed"


class SyncStatus(str, Enum):
    """Indicator shown to the user next to the form."""
    SAVED = "saved"
    DIRTY = "dirty"
    SAVING = "saving"
    SAVED_LOCALLY = "saved_locally"  # retries exhausted, not synced


@dataclass(frozen=True)
class SaveRequest:
    section_index: int
    values: dict[str, Any] = field(default_factory=dict)
    edited_at: float = 0.0


SaveFunc = Callable[[SaveRequest], Awaitable[None]]


class AutoSaveScheduler:
    def __init__(
        self,
        save: SaveFunc,
        *,
        debounce_seconds: float | None = None,
        max_retries: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_cap_seconds: float | None = None,
        timeout_seconds: float | None = None,
        on_saved: Callable[[SaveRequest], None] | None = None,
        on_status: Callable[[SyncStatus], None] | None = None,
    ):
        self._save = save
        self.debounce_seconds = (
            settings.autosave_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.max_retries = settings.autosave_max_retries if max_retries is None else max_retries
        self.backoff_base_seconds = (
            settings.autosave_backoff_base_seconds
            if backoff_base_seconds is None else backoff_base_seconds
        )
        self.backoff_cap_seconds = (
            settings.autosave_backoff_cap_seconds
            if backoff_cap_seconds is None else backoff_cap_seconds
        )
        self.timeout_seconds = (
            settings.autosave_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._on_saved = on_saved
        self._on_status = on_status

        self.state = SaveState.IDLE
        self.status = SyncStatus.SAVED
        self.attempt = 0
        self.disabled = False

        self._pending: dict[int, SaveRequest] = {}
        self._deferred = False
        self._lock = asyncio.Lock()
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # ── Public API ───────────────────────────────────────────

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def pending_for(self, section_index: int) -> SaveRequest | None:
        return self._pending.get(section_index)

    def schedule(self, request: SaveRequest) -> None:
        """Queue ``request`` and (re)start the debounce timer."""
        if self.disabled:
            return
        if not has_meaningful_data(request.values):
            logger.debug("Skipping auto-save for section %d: no data", request.section_index)
            self.withdraw(request.section_index)
            return

        self._pending[request.section_index] = request
        self._set_status(SyncStatus.DIRTY)

        if self.state == SaveState.FAILED:
            # A fresh edit starts a fresh retry budget
            self.attempt = 0
        if self.state == SaveState.IN_FLIGHT:
            # Picked up as soon as the running save resolves
            self._deferred = True
            return
        self._start_timer(self.debounce_seconds)

    async def save_now(self, request: SaveRequest | None = None) -> bool:
        """Manual save: skip the debounce window but wait for any in-flight save.

        Returns True when nothing is left unsynced afterwards.
        """
        if self.disabled:
            return False
        if request is not None and has_meaningful_data(request.values):
            self._pending[request.section_index] = request
        self._cancel_timer()
        if self.state == SaveState.FAILED:
            self.attempt = 0
        await self._flush()
        return not self._pending and self.state != SaveState.FAILED

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        """Hold the single in-flight slot for an explicit remote save."""
        async with self._lock:
            previous = self.state
            self.state = SaveState.IN_FLIGHT
            try:
                yield
            finally:
                self.state = previous
                if self._deferred and self._pending and not self.disabled:
                    # Edits made meanwhile start a fresh retry budget
                    self._deferred = False
                    self.attempt = 0
                    self._start_timer(self.debounce_seconds)

    def supersede(self, section_index: int, edited_at: float) -> None:
        """Drop a pending save already covered by an explicit save of newer data."""
        pending = self._pending.get(section_index)
        if pending is not None and pending.edited_at <= edited_at:
            del self._pending[section_index]
        self._settle()

    def withdraw(self, section_index: int) -> None:
        """Forget the queued snapshot of a section whose newest values cannot be saved."""
        self._pending.pop(section_index, None)
        self._settle()

    def disable(self) -> None:
        """Stop all background saving; used once the draft is submitted."""
        self.disabled = True
        self._cancel_timer()
        self._pending.clear()
        if self.state != SaveState.IN_FLIGHT:
            self.state = SaveState.IDLE
        self._set_status(SyncStatus.SAVED)

    async def drain(self) -> None:
        """Wait until every timer and save started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._cancel_timer()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Internals ────────────────────────────────────────────

    def _settle(self) -> None:
        # Nothing left to send: stop the timer and show the form as synced
        if self._pending or self.state == SaveState.IN_FLIGHT:
            return
        self._cancel_timer()
        self.state = SaveState.IDLE
        self.attempt = 0
        self._set_status(SyncStatus.SAVED)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _start_timer(self, delay: float) -> None:
        self._cancel_timer()
        self.state = SaveState.SCHEDULED
        self._timer = self._spawn(self._fire_after(delay))

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _fire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # From here on the save is not cancellable by later edits
        self._timer = None
        self._spawn(self._flush())

    async def _flush(self) -> None:
        async with self._lock:
            while self._pending and not self.disabled:
                index = min(self._pending)
                request = self._pending.pop(index)

                self.state = SaveState.IN_FLIGHT
                self._deferred = False
                self._set_status(SyncStatus.SAVING)
                try:
                    await asyncio.wait_for(self._save(request), timeout=self.timeout_seconds)
                except asyncio.CancelledError:
                    self._pending.setdefault(index, request)
                    raise
                except Exception as exc:
                    self._handle_failure(request, exc)
                    return

                self.attempt = 0
                logger.debug("Auto-saved section %d", index)
                if self._on_saved is not None:
                    self._on_saved(request)

            if self.disabled:
                self.state = SaveState.IDLE
                return
            self.state = SaveState.IDLE
            self._set_status(SyncStatus.SAVED)

    def _handle_failure(self, request: SaveRequest, exc: Exception) -> None:
        if self.disabled:
            self.state = SaveState.IDLE
            logger.info("Auto-save stopped after section %d failed: %s", request.section_index, exc)
            return
        # Keep the failed snapshot unless a newer one arrived meanwhile
        self._pending.setdefault(request.section_index, request)
        self.attempt += 1

        if isinstance(exc, (PersistenceError, asyncio.TimeoutError)):
            logger.warning(
                "Auto-save of section %d failed (attempt %d/%d): %s",
                request.section_index, self.attempt, self.max_retries, str(exc) or "timeout",
            )
        else:
            logger.exception(
                "Unexpected error auto-saving section %d", request.section_index
            )

        if self.attempt < self.max_retries:
            delay = min(
                self.backoff_base_seconds * (2 ** self.attempt),
                self.backoff_cap_seconds,
            )
            self._set_status(SyncStatus.DIRTY)
            self._start_timer(delay)
        else:
            self.state = SaveState.FAILED
            self._set_status(SyncStatus.SAVED_LOCALLY)
            logger.warning(
                "Auto-save gave up after %d attempts; changes kept locally",
                self.attempt,
            )

    def _set_status(self, status: SyncStatus) -> None:
        if status == self.status:
            return
        self.status = status
        if self._on_status is not None:
            self._on_status(status)
