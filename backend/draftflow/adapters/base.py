"""Contracts the draft controller relies on but does not implement.

Implementations raise the engine's error taxonomy:
  - PersistenceError on network/backend failure (including timeouts)
  - ConflictError when the report is already submitted
  - SectionValidationError when the store rejects a payload
"""

from __future__ import annotations

from typing import Any, Protocol

from draftflow.schemas.report import ExistingReport


class SectionPersistenceAdapter(Protocol):
    """Loads and saves one section of a report."""

    async def load(self, report_key: str) -> dict[str, Any] | None: ...

    async def save(
        self, report_key: str, data: dict[str, Any], *, complete: bool = False
    ) -> None: ...


class ReportLifecycleAdapter(Protocol):
    """Finds, creates and finalizes reports."""

    async def find_existing(self, owner_key: str) -> ExistingReport: ...

    async def create(self, owner_key: str, basic_info: dict[str, Any]) -> str: ...

    async def finalize(self, report_key: str) -> None: ...
