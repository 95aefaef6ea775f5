"""Draft controller: orchestrates one owner's multi-section report.

States:

    uninitialized → loading → {no_draft, resuming_draft, viewing_submitted}
    → editing ⇄ saving_section → {editing, submitting} → submitted

Two layers of persistence run side by side:
  - every edit is mirrored into the local cache (synchronously) and fed to
    the auto-save scheduler (debounced, best-effort, complete=False);
  - "save & continue" validates the section and confirms it with the remote
    store (awaited, complete=True) before the section counts as done.

Resume rule: the earliest incomplete section, unless the local cache shows
the user had already moved further ahead.  Cached edits are only merged
back for the section the user was editing, and never over a section the
remote store already holds as confirmed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from draftflow.adapters.base import ReportLifecycleAdapter
from draftflow.engine.autosave import AutoSaveScheduler, SaveRequest, SyncStatus
from draftflow.engine.cache_bridge import CacheEntry, LocalCacheBridge
from draftflow.engine.errors import (
    ConflictError,
    IncompleteDraftError,
    PersistenceError,
    SectionValidationError,
    Violation,
)
from draftflow.engine.progress import ProgressStore
from draftflow.registry import SectionRegistry
from draftflow.schemas.report import DraftStatus, ExistingReport

logger = logging.getLogger(__name__)


class ControllerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    NO_DRAFT = "no_draft"
    RESUMING_DRAFT = "resuming_draft"
    VIEWING_SUBMITTED = "viewing_submitted"
    EDITING = "editing"
    SAVING_SECTION = "saving_section"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


@dataclass
class SectionSaveOutcome:
    section_index: int
    next_section: int
    submitted: bool = False
    # Sections still blocking finalization after the last one was saved
    missing_sections: list[int] = field(default_factory=list)


class DraftController:
    def __init__(
        self,
        registry: SectionRegistry,
        lifecycle: ReportLifecycleAdapter,
        cache: LocalCacheBridge | None = None,
        *,
        owner_key: str,
        autosave_options: dict[str, Any] | None = None,
        on_sync_status: Callable[[SyncStatus], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.lifecycle = lifecycle
        self.cache = cache if cache is not None else LocalCacheBridge()
        self.owner_key = owner_key
        self._clock = clock

        self.draft_id: str | None = None
        self.status = DraftStatus.NONE
        self.state = ControllerState.UNINITIALIZED
        self.progress = ProgressStore(len(registry), clock=clock)
        self.restored_from_cache = False
        # Set when the remote store rejected a write for a report we no
        # longer own; the UI must reload.
        self.conflicted = False

        self._values: dict[int, dict[str, Any]] = {}
        self._edited_at: dict[int, float] = {}
        self._saved_at: float | None = None

        self.scheduler = AutoSaveScheduler(
            self._background_save,
            on_saved=self._on_background_saved,
            on_status=on_sync_status,
            **(autosave_options or {}),
        )

    # ── Queries ──────────────────────────────────────────────

    @property
    def current_section(self) -> int:
        return self.progress.current_section

    @property
    def editable(self) -> bool:
        return self.status != DraftStatus.SUBMITTED and self.state in (
            ControllerState.NO_DRAFT,
            ControllerState.EDITING,
            ControllerState.SAVING_SECTION,
        )

    @property
    def sync_status(self) -> SyncStatus:
        return self.scheduler.status

    def values(self, index: int | None = None) -> dict[str, Any]:
        index = self.current_section if index is None else index
        return dict(self._values.get(index, {}))

    def overall_progress(self) -> int:
        return self.progress.overall_progress()

    # ── Loading / resume ─────────────────────────────────────

    async def load(self) -> int:
        """Decide what to show: fresh form, resumed draft, or submitted report.

        Returns the section index to display.
        """
        if self.state != ControllerState.UNINITIALIZED:
            raise RuntimeError(f"Controller already loaded (state={self.state.value})")

        self.state = ControllerState.LOADING
        try:
            existing = await self.lifecycle.find_existing(self.owner_key)
            if existing.status == DraftStatus.SUBMITTED:
                await self._view_submitted(existing)
            elif existing.status == DraftStatus.IN_PROGRESS:
                await self._resume(existing)
            else:
                self._start_fresh()
        except PersistenceError:
            self.state = ControllerState.UNINITIALIZED
            raise
        return self.current_section

    def _start_fresh(self) -> None:
        self.state = ControllerState.NO_DRAFT
        cached = self.cache.read(self.owner_key, None)
        if cached is not None:
            # Nothing is confirmed remotely yet, so every cached section is safe to restore
            self._values = {i: dict(v) for i, v in cached.sections.items() if i < len(self.registry)}
            self._edited_at = dict(cached.edited_at)
            for index, values in self._values.items():
                self.progress.update_section_progress(
                    index, self.registry.completion_percent(index, values)
                )
            self.progress.set_current(cached.current_section)
            self.restored_from_cache = bool(self._values)
            logger.info(f"Restored unsaved draft for {self.owner_key} from local cache")
        self.state = ControllerState.EDITING

    async def _view_submitted(self, existing: ExistingReport) -> None:
        self.draft_id = existing.report_key
        self.status = DraftStatus.SUBMITTED
        self.scheduler.disable()
        self.cache.clear(self.owner_key, self.draft_id)
        self.cache.clear(self.owner_key, None)

        self.progress.seed(existing.completed_sections, current=0)
        self.progress.lock()
        await self._load_remote_sections()
        self.state = ControllerState.VIEWING_SUBMITTED
        logger.info(f"Report {self.draft_id} for {self.owner_key} is submitted; read-only")

    async def _resume(self, existing: ExistingReport) -> None:
        self.state = ControllerState.RESUMING_DRAFT
        self.draft_id = existing.report_key
        self.status = DraftStatus.IN_PROGRESS
        self.progress.seed(existing.completed_sections)
        await self._load_remote_sections()

        resume_at = self.progress.next_incomplete_section()
        cached = self.cache.read(self.owner_key, self.draft_id)
        if cached is not None:
            self._saved_at = cached.saved_at
            local_section = max(0, min(cached.current_section, self.registry.last_index))
            if local_section > resume_at:
                resume_at = local_section
            self._merge_cached_section(cached, local_section, existing)

        self.progress.set_current(resume_at)
        self._mirror()
        self.state = ControllerState.EDITING
        logger.info(
            f"Resumed report {self.draft_id} at section {resume_at} "
            f"(completed={sorted(self.progress.completed_sections)})"
        )

    def _merge_cached_section(
        self, cached: CacheEntry, index: int, existing: ExistingReport
    ) -> None:
        if self.progress.is_complete(index):
            return
        cached_values = cached.sections.get(index)
        edited_at = cached.edited_at.get(index)
        if not cached_values or edited_at is None:
            return

        remote_saved = existing.section_saved_at.get(index)
        if remote_saved is not None and edited_at <= remote_saved.timestamp():
            return

        self._values[index] = {**self._values.get(index, {}), **cached_values}
        self._edited_at[index] = edited_at
        self.progress.update_section_progress(
            index, self.registry.completion_percent(index, self._values[index])
        )
        self.restored_from_cache = True
        logger.info(f"Merged cached edits into section {index} of report {self.draft_id}")
        # The remote store has not seen these edits yet
        self._schedule(index)

    async def _load_remote_sections(self) -> None:
        indices = range(len(self.registry))
        results = await asyncio.gather(
            *(self.registry.adapter(i).load(self.draft_id) for i in indices)
        )
        for index, data in zip(indices, results):
            self._values[index] = dict(data or {})
            if not self.progress.is_complete(index):
                self.progress.update_section_progress(
                    index, self.registry.completion_percent(index, self._values[index])
                )

    # ── Editing ──────────────────────────────────────────────

    def set_field(self, name: str, value: Any, index: int | None = None) -> None:
        self.update_section({name: value}, index=index)

    def update_section(self, values: dict[str, Any], index: int | None = None) -> None:
        """Apply field changes, mirror them locally and queue a background save."""
        if not self.editable:
            return
        index = self.current_section if index is None else index
        merged = {**self._values.get(index, {}), **values}
        self._values[index] = merged
        self._edited_at[index] = self._clock()
        self.progress.update_section_progress(
            index, self.registry.completion_percent(index, merged)
        )
        self._mirror()
        self._schedule(index)

    def next_section(self) -> int:
        return self.go_to(self.current_section + 1)

    def prev_section(self) -> int:
        return self.go_to(self.current_section - 1)

    def go_to(self, index: int) -> int:
        """Move the cursor; never touches completion and never calls the remote store."""
        current = self.progress.set_current(index)
        if self.editable:
            self._mirror()
        return current

    def discard(self) -> None:
        """Throw away unconfirmed edits, locally and in the pending auto-saves."""
        if self.status == DraftStatus.SUBMITTED:
            return
        for index in list(self._values):
            if not self.progress.is_complete(index):
                self._values.pop(index, None)
                self._edited_at.pop(index, None)
                self.scheduler.supersede(index, float("inf"))
        self.cache.clear(self.owner_key, self.draft_id)
        if self.draft_id is not None:
            self.cache.clear(self.owner_key, None)
        logger.info(f"Discarded unsaved edits for {self.owner_key}")

    # ── Explicit saves ───────────────────────────────────────

    async def save_now(self) -> bool:
        """Manual "save" (e.g. Ctrl+S): push pending edits without waiting for the timer."""
        if not self.editable or self.draft_id is None:
            return False
        request = self._build_request(self.current_section)
        return await self.scheduler.save_now(request)

    async def save_and_continue(self) -> SectionSaveOutcome:
        """Validate and confirm the current section, then advance.

        Raises SectionValidationError (nothing sent), PersistenceError (data
        kept, section stays open) or ConflictError (reload required).
        """
        index = self.current_section
        if not self.editable:
            return SectionSaveOutcome(index, index, submitted=self.status == DraftStatus.SUBMITTED)

        values = dict(self._values.get(index, {}))
        edited_at = self._edited_at.get(index, 0.0)
        if self.draft_id is None and index != 0:
            raise SectionValidationError(
                index,
                [Violation(field="section 0", message="save basic information first")],
            )
        payload = self.registry.validate(index, values)

        self.state = ControllerState.SAVING_SECTION
        try:
            async with self.scheduler.exclusive():
                if self.draft_id is None:
                    await self._create_draft(payload)
                else:
                    await self.registry.adapter(index).save(
                        self.draft_id, payload, complete=True
                    )
        except ConflictError:
            self.state = ControllerState.EDITING
            return await self._resolve_save_conflict(index)
        except (PersistenceError, SectionValidationError):
            self.state = ControllerState.EDITING
            raise

        self.scheduler.supersede(index, edited_at)
        self.progress.mark_complete(index)
        logger.info(f"Section {index} of report {self.draft_id} confirmed")

        if index == self.registry.last_index:
            return await self._complete_last_section(index)

        next_index = self.progress.set_current(index + 1)
        self._saved_at = self._clock()
        self._mirror()
        self.state = ControllerState.EDITING
        return SectionSaveOutcome(index, next_index)

    async def _create_draft(self, basic_info: dict[str, Any]) -> None:
        self.draft_id = await self.lifecycle.create(self.owner_key, basic_info)
        self.status = DraftStatus.IN_PROGRESS
        self.cache.move(self.owner_key, None, self.draft_id)
        logger.info(f"Created report {self.draft_id} for {self.owner_key}")
        # Edits made on later sections before the draft existed were cache-only
        for index in self._values:
            if index != 0:
                self._schedule(index)

    async def _complete_last_section(self, index: int) -> SectionSaveOutcome:
        missing = self.progress.missing_sections()
        if missing:
            target = self.progress.set_current(missing[0])
            self._mirror()
            self.state = ControllerState.EDITING
            return SectionSaveOutcome(index, target, missing_sections=missing)

        self.state = ControllerState.SUBMITTING
        await self.finalize()
        return SectionSaveOutcome(index, self.current_section, submitted=True)

    async def finalize(self) -> bool:
        """Submit the draft.  Safe to call again; a submitted draft returns True."""
        if self.status == DraftStatus.SUBMITTED:
            return True
        missing = self.progress.missing_sections()
        if self.draft_id is None or missing:
            raise IncompleteDraftError(missing or [0])

        self.state = ControllerState.SUBMITTING
        try:
            async with self.scheduler.exclusive():
                await self.lifecycle.finalize(self.draft_id)
        except ConflictError:
            if not await self._remote_is_submitted():
                self.state = ControllerState.EDITING
                self.conflicted = True
                raise
            logger.info(f"Report {self.draft_id} was already submitted")
        except IncompleteDraftError as e:
            # The store's list of completed sections wins over ours
            self.state = ControllerState.EDITING
            self._reopen_sections(e.missing_sections)
            raise
        except (PersistenceError, SectionValidationError):
            # Every section stays complete; finalize can simply be retried
            self.state = ControllerState.EDITING
            raise

        self._enter_submitted()
        return True

    def _reopen_sections(self, missing: list[int]) -> None:
        if not missing:
            return
        count = self.progress.section_count
        completed = [i for i in range(count) if i not in missing]
        self.progress.seed(completed, current=missing[0])
        for index in missing:
            self.progress.update_section_progress(
                index, self.registry.completion_percent(index, self._values.get(index, {}))
            )
        self._mirror()
        logger.warning(f"Report {self.draft_id} is missing sections {missing}; reopened them")

    async def _resolve_save_conflict(self, index: int) -> SectionSaveOutcome:
        if await self._remote_is_submitted():
            logger.info(f"Report {self.draft_id} was submitted elsewhere; closing the draft")
            self._enter_submitted()
            return SectionSaveOutcome(index, self.current_section, submitted=True)
        self.conflicted = True
        raise ConflictError(
            f"Section {index} could not be saved; reload the report to continue"
        )

    async def _remote_is_submitted(self) -> bool:
        existing = await self.lifecycle.find_existing(self.owner_key)
        return (
            existing.status == DraftStatus.SUBMITTED
            and existing.report_key == self.draft_id
        )

    def _enter_submitted(self) -> None:
        self.status = DraftStatus.SUBMITTED
        self.scheduler.disable()
        self.cache.clear(self.owner_key, self.draft_id)
        self.cache.clear(self.owner_key, None)
        self.progress.reset()
        self.progress.lock()
        self.state = ControllerState.SUBMITTED
        logger.info(f"Report {self.draft_id} submitted")

    # ── Background saves ─────────────────────────────────────

    def _build_request(self, index: int) -> SaveRequest | None:
        try:
            payload = self.registry[index].coerce(self._values.get(index, {}))
        except SectionValidationError as e:
            # Not even a valid draft (e.g. text in a number field); keep it local
            logger.debug(f"Not auto-saving section {index}: {e.message}")
            return None
        return SaveRequest(index, payload, self._edited_at.get(index, 0.0))

    def _schedule(self, index: int) -> None:
        if self.draft_id is None:
            return
        request = self._build_request(index)
        if request is None:
            self.scheduler.withdraw(index)
        else:
            self.scheduler.schedule(request)

    async def _background_save(self, request: SaveRequest) -> None:
        try:
            await self.registry.adapter(request.section_index).save(
                self.draft_id, request.values, complete=False
            )
        except ConflictError:
            logger.warning(
                f"Auto-save rejected for report {self.draft_id}: report is closed"
            )
            self.conflicted = True
            self.scheduler.disable()
            raise

    def _on_background_saved(self, request: SaveRequest) -> None:
        self._saved_at = self._clock()
        self.cache.mark_saved(self.owner_key, self.draft_id, self._saved_at)

    # ── Local mirror ─────────────────────────────────────────

    def _mirror(self) -> None:
        entry = CacheEntry(
            sections={i: dict(v) for i, v in self._values.items()},
            edited_at=dict(self._edited_at),
            current_section=self.current_section,
            progress=self.progress.state.to_dict(),
            saved_at=self._saved_at,
        )
        self.cache.write(self.owner_key, self.draft_id, entry)

    async def flush(self) -> None:
        """Wait for queued background saves (tests, orderly shutdown)."""
        await self.scheduler.drain()

    async def close(self) -> None:
        """Stop timers without saving, as when the page is closed."""
        await self.scheduler.close()
