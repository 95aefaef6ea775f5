"""Pydantic schemas for the sections of the monthly head-teacher report.

Every `...Data` schema uses Optional fields so partial saves (auto-save,
drafts) always validate.  The `...Complete` variants are the section
validators: they are used when a section is confirmed with
"save & continue".
"""

from pydantic import BaseModel, Field, model_validator


# ── Section 0: Basic information ────────────────────────────

class BasicInfoData(BaseModel):
    month: str | None = None
    school_name: str | None = None
    education_district: str | None = None
    school_level: str | None = None
    school_grade: str | None = None


class BasicInfoComplete(BasicInfoData):
    """School level and grade are required to open a report."""
    school_name: str = Field(min_length=1)
    school_level: str = Field(min_length=1)
    school_grade: str = Field(min_length=1)


# ── Section 1: Student enrolment ────────────────────────────

class StudentEnrolmentData(BaseModel):
    total_students: int | None = None
    boys: int | None = None
    girls: int | None = None
    transferred_in: int | None = None
    transferred_out: int | None = None


class StudentEnrolmentComplete(StudentEnrolmentData):
    """Boys and girls must add up to the total enrolment."""
    total_students: int = Field(ge=0)
    boys: int = Field(ge=0)
    girls: int = Field(ge=0)

    @model_validator(mode="after")
    def _breakdown_matches_total(self):
        if self.boys + self.girls != self.total_students:
            raise ValueError(
                f"boys + girls ({self.boys + self.girls}) must equal "
                f"total_students ({self.total_students})"
            )
        return self


# ── Section 2: Attendance ───────────────────────────────────

class AttendanceData(BaseModel):
    student_attendance_rate: float | None = None
    student_punctuality_rate: float | None = None
    teacher_attendance_rate: float | None = None
    teacher_punctuality_rate: float | None = None


class AttendanceComplete(AttendanceData):
    student_attendance_rate: float = Field(ge=0, le=100)
    student_punctuality_rate: float = Field(ge=0, le=100)
    teacher_attendance_rate: float = Field(ge=0, le=100)
    teacher_punctuality_rate: float = Field(ge=0, le=100)


# ── Section 3: Staffing & vacancies ─────────────────────────

class TeacherMovementInput(BaseModel):
    name: str
    status: str | None = None
    reason: str | None = None


class StaffingData(BaseModel):
    total_staff_entitlement: int | None = None
    current_teachers_on_staff: int | None = None
    under_staffed_by: int | None = None
    over_staffed_by: int | None = None
    teachers_who_left: list[TeacherMovementInput] | None = None


class StaffingComplete(StaffingData):
    """Staff on hand beyond the entitlement must be recorded as over-staffing."""
    total_staff_entitlement: int = Field(ge=0)
    current_teachers_on_staff: int = Field(ge=0)

    @model_validator(mode="after")
    def _staffing_balances(self):
        surplus = self.current_teachers_on_staff - self.total_staff_entitlement
        if surplus > 0 and (self.over_staffed_by or 0) != surplus:
            raise ValueError(f"over_staffed_by must be {surplus}")
        if surplus < 0 and (self.under_staffed_by or 0) != -surplus:
            raise ValueError(f"under_staffed_by must be {-surplus}")
        return self


# ── Section 4: Finance ──────────────────────────────────────

class IncomeSourceInput(BaseModel):
    source: str
    amount: float = 0.0


class FinanceData(BaseModel):
    opening_balance: float | None = None
    total_income: float | None = None
    total_expenditure: float | None = None
    closing_balance: float | None = None
    income_sources: list[IncomeSourceInput] | None = None


class FinanceComplete(FinanceData):
    """Opening + income - expenditure must equal the closing balance."""
    opening_balance: float
    total_income: float = Field(ge=0)
    total_expenditure: float = Field(ge=0)
    closing_balance: float

    @model_validator(mode="after")
    def _balances(self):
        expected = self.opening_balance + self.total_income - self.total_expenditure
        if abs(expected - self.closing_balance) > 0.005:
            raise ValueError(
                f"closing_balance should be {expected:.2f} "
                f"(opening + income - expenditure)"
            )
        if self.income_sources:
            listed = sum(s.amount for s in self.income_sources)
            if abs(listed - self.total_income) > 0.005:
                raise ValueError(
                    f"income sources add up to {listed:.2f}, not total_income"
                )
        return self


# ── Section 5: Resources needed ─────────────────────────────

class ResourcesData(BaseModel):
    curriculum_resources: str | None = None
    janitorial_supplies: str | None = None
    other_issues: str | None = None


class ResourcesComplete(ResourcesData):
    """At least one resource line must be filled in (write "none" if nothing)."""

    @model_validator(mode="after")
    def _at_least_one(self):
        filled = [
            v for v in (self.curriculum_resources, self.janitorial_supplies, self.other_issues)
            if v and v.strip()
        ]
        if not filled:
            raise ValueError("Describe at least one resource need")
        return self
