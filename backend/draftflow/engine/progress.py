"""Progress store: which sections are done and where the user is.

Owned by exactly one DraftController.  Every mutation is synchronous and
performs no I/O; the controller decides when to mirror the state into the
local cache.

Once locked (submitted draft), completion can no longer change; only the
viewing position moves.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class ProgressState:
    current_section: int = 0
    completed_sections: set[int] = field(default_factory=set)
    section_progress: dict[int, int] = field(default_factory=dict)
    last_touched: float = 0.0

    def to_dict(self) -> dict:
        return {
            "current_section": self.current_section,
            "completed_sections": sorted(self.completed_sections),
            "section_progress": {str(k): v for k, v in self.section_progress.items()},
            "last_touched": self.last_touched,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProgressState":
        return cls(
            current_section=int(data.get("current_section", 0)),
            completed_sections={int(i) for i in data.get("completed_sections", [])},
            section_progress={
                int(k): int(v) for k, v in (data.get("section_progress") or {}).items()
            },
            last_touched=float(data.get("last_touched", 0.0)),
        )


class ProgressStore:
    """Narrow mutation contract over a ProgressState."""

    def __init__(
        self,
        section_count: int,
        state: ProgressState | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if section_count < 1:
            raise ValueError("A draft needs at least one section")
        self.section_count = section_count
        self._clock = clock
        self._locked = False
        self.state = state or ProgressState()
        self.state.current_section = self._clamp(self.state.current_section)

    # ── Queries ──────────────────────────────────────────────

    @property
    def current_section(self) -> int:
        return self.state.current_section

    @property
    def completed_sections(self) -> frozenset[int]:
        return frozenset(self.state.completed_sections)

    @property
    def locked(self) -> bool:
        return self._locked

    def is_complete(self, index: int) -> bool:
        return index in self.state.completed_sections

    def all_complete(self) -> bool:
        return len(self.state.completed_sections) == self.section_count

    def missing_sections(self) -> list[int]:
        return [i for i in range(self.section_count) if i not in self.state.completed_sections]

    def next_incomplete_section(self) -> int:
        """Lowest index not yet completed; the last index when all are done."""
        for i in range(self.section_count):
            if i not in self.state.completed_sections:
                return i
        return self.section_count - 1

    def overall_progress(self) -> int:
        """Percentage of completed sections, or a position estimate before any."""
        done = len(self.state.completed_sections)
        if done:
            return round(100 * done / self.section_count)
        return round(100 * self.state.current_section / self.section_count)

    def section_percent(self, index: int) -> int:
        return self.state.section_progress.get(index, 0)

    # ── Transitions ──────────────────────────────────────────

    def mark_complete(self, index: int) -> None:
        if self._locked or not self._in_range(index):
            return
        if index in self.state.completed_sections:
            return
        self.state.completed_sections.add(index)
        self.state.section_progress[index] = 100
        self._touch()

    def set_current(self, index: int) -> int:
        # Navigation stays available on a locked (read-only) draft
        self.state.current_section = self._clamp(index)
        self._touch()
        return self.state.current_section

    def update_section_progress(self, index: int, percent: int) -> None:
        if self._locked or not self._in_range(index):
            return
        self.state.section_progress[index] = max(0, min(100, int(percent)))
        self._touch()

    def seed(self, completed: list[int] | set[int], current: int | None = None) -> None:
        """Replace the completed set with the remote store's authoritative list."""
        if self._locked:
            return
        self.state.completed_sections = {i for i in completed if self._in_range(i)}
        for i in self.state.completed_sections:
            self.state.section_progress[i] = 100
        if current is not None:
            self.state.current_section = self._clamp(current)
        self._touch()

    def reset(self) -> None:
        if self._locked:
            return
        self.state = ProgressState(last_touched=self.state.last_touched)
        self._touch()

    def lock(self) -> None:
        self._locked = True

    # ── Helpers ──────────────────────────────────────────────

    def _in_range(self, index: int) -> bool:
        return 0 <= index < self.section_count

    def _clamp(self, index: int) -> int:
        return max(0, min(self.section_count - 1, index))

    def _touch(self) -> None:
        # last_touched never moves backwards, even if the wall clock does
        self.state.last_touched = max(self._clock(), self.state.last_touched)
