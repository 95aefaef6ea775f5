"""Error taxonomy for the draft engine.

- SectionValidationError: local, synchronous; never reaches the remote store.
- PersistenceError: remote save/load failed (network, backend, timeout).
- ConflictError: finalize already ran, or a save hit a submitted report.
- CacheUnavailable: the local cache medium is down or full; always recoverable.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Violation:
    """One failed constraint inside a section."""
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class DraftFlowError(Exception):
    """Base exception for draft engine errors."""

    def __init__(self, message: str, error_code: str = "DRAFTFLOW_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class SectionValidationError(DraftFlowError):
    """A section's required fields are missing or inconsistent."""

    def __init__(
        self,
        section_index: int,
        violations: list[Violation],
        message: str | None = None,
        error_code: str = "SECTION_INVALID",
    ):
        self.section_index = section_index
        self.violations = violations
        if message is None:
            summary = "; ".join(f"{v.field}: {v.message}" for v in violations)
            message = f"Section {section_index} is not complete: {summary}"
        super().__init__(message, error_code=error_code)


class IncompleteDraftError(SectionValidationError):
    """Finalize was requested while some sections are still incomplete."""

    def __init__(self, missing_sections: list[int]):
        self.missing_sections = sorted(missing_sections)
        violations = [
            Violation(field=f"section {i}", message="section not completed")
            for i in self.missing_sections
        ]
        super().__init__(
            section_index=self.missing_sections[0] if self.missing_sections else -1,
            violations=violations,
            message=f"Complete these sections first: {self.missing_sections}",
            error_code="DRAFT_INCOMPLETE",
        )


class PersistenceError(DraftFlowError):
    """The remote store could not be reached or refused the write."""

    def __init__(self, message: str, error_code: str = "PERSISTENCE_ERROR"):
        super().__init__(message, error_code=error_code)


class ConflictError(DraftFlowError):
    """The remote store is already in a state that forbids the call."""

    def __init__(self, message: str, error_code: str = "CONFLICT"):
        super().__init__(message, error_code=error_code)


class CacheUnavailable(DraftFlowError):
    """The local cache medium cannot be read or written."""

    def __init__(self, message: str = "Local cache unavailable"):
        super().__init__(message, error_code="CACHE_UNAVAILABLE")
