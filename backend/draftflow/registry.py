"""Section registry: the fixed, ordered list of report sections.

Each section pairs a permissive draft schema with a strict completion
schema (see draftflow.schemas.sections) and, once bound, the persistence
adapter that loads and saves it.  The registry itself holds no state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Callable, Iterator, Sequence

from pydantic import BaseModel, ValidationError

from draftflow.engine.errors import SectionValidationError, Violation
from draftflow.engine.values import is_empty_value
from draftflow.schemas.sections import (
    AttendanceComplete,
    AttendanceData,
    BasicInfoComplete,
    BasicInfoData,
    FinanceComplete,
    FinanceData,
    ResourcesComplete,
    ResourcesData,
    StaffingComplete,
    StaffingData,
    StudentEnrolmentComplete,
    StudentEnrolmentData,
)

if TYPE_CHECKING:
    from draftflow.adapters.base import SectionPersistenceAdapter


def _drop_blank(values: dict[str, Any]) -> dict[str, Any]:
    # Form inputs report untouched fields as ""
    return {k: v for k, v in values.items() if not (isinstance(v, str) and not v.strip())}


def _violations(exc: ValidationError) -> list[Violation]:
    violations = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"]) or "section"
        message = error["msg"].removeprefix("Value error, ")
        violations.append(Violation(field=field, message=message))
    return violations


@dataclass(frozen=True)
class SectionSpec:
    index: int
    key: str
    title: str
    data_model: type[BaseModel]
    complete_model: type[BaseModel]
    adapter: "SectionPersistenceAdapter | None" = None

    @property
    def fields(self) -> list[str]:
        return list(self.data_model.model_fields)

    def coerce(self, values: dict[str, Any]) -> dict[str, Any]:
        """Parse a partial payload with the draft schema."""
        try:
            model = self.data_model.model_validate(_drop_blank(values))
        except ValidationError as e:
            raise SectionValidationError(self.index, _violations(e)) from e
        return model.model_dump(mode="json", exclude_unset=True)

    def validate(self, values: dict[str, Any]) -> dict[str, Any]:
        """Hard gate for "save & continue"; returns the normalized payload."""
        try:
            model = self.complete_model.model_validate(_drop_blank(values))
        except ValidationError as e:
            raise SectionValidationError(self.index, _violations(e)) from e
        return model.model_dump(mode="json", exclude_unset=True)

    def completion_percent(self, values: dict[str, Any]) -> int:
        """Share of this section's fields holding a non-empty value."""
        fields = self.fields
        if not fields:
            return 0
        filled = sum(1 for name in fields if not is_empty_value(values.get(name)))
        return round(100 * filled / len(fields))


class SectionRegistry:
    def __init__(self, sections: Sequence[SectionSpec]):
        if not sections:
            raise ValueError("A registry needs at least one section")
        indices = [s.index for s in sections]
        if indices != list(range(len(sections))):
            raise ValueError(f"Section indices must be contiguous from 0, got {indices}")
        self._sections = tuple(sections)

    def __len__(self) -> int:
        return len(self._sections)

    def __iter__(self) -> Iterator[SectionSpec]:
        return iter(self._sections)

    def __getitem__(self, index: int) -> SectionSpec:
        if not 0 <= index < len(self._sections):
            raise IndexError(f"No section {index}")
        return self._sections[index]

    @property
    def last_index(self) -> int:
        return len(self._sections) - 1

    def index_of(self, key: str) -> int:
        for spec in self._sections:
            if spec.key == key:
                return spec.index
        raise KeyError(key)

    def validate(self, index: int, values: dict[str, Any]) -> dict[str, Any]:
        return self[index].validate(values)

    def completion_percent(self, index: int, values: dict[str, Any]) -> int:
        return self[index].completion_percent(values)

    def bind(
        self, factory: Callable[[SectionSpec], "SectionPersistenceAdapter"]
    ) -> "SectionRegistry":
        """Return a copy whose sections carry the adapter built by ``factory``."""
        return SectionRegistry([replace(s, adapter=factory(s)) for s in self._sections])

    def adapter(self, index: int) -> "SectionPersistenceAdapter":
        spec = self[index]
        if spec.adapter is None:
            raise LookupError(f"Section {index} ({spec.key}) has no persistence adapter")
        return spec.adapter


MONTHLY_REPORT_SECTIONS = (
    ("basic_info", "Basic Information", BasicInfoData, BasicInfoComplete),
    ("student_enrolment", "Student Enrolment", StudentEnrolmentData, StudentEnrolmentComplete),
    ("attendance", "Attendance", AttendanceData, AttendanceComplete),
    ("staffing", "Staffing & Vacancies", StaffingData, StaffingComplete),
    ("finance", "Finance", FinanceData, FinanceComplete),
    ("resources", "Resources Needed", ResourcesData, ResourcesComplete),
)


def monthly_report_registry() -> SectionRegistry:
    return SectionRegistry([
        SectionSpec(index=i, key=key, title=title, data_model=data, complete_model=complete)
        for i, (key, title, data, complete) in enumerate(MONTHLY_REPORT_SECTIONS)
    ])
