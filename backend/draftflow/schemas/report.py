"""Pydantic schemas shared by the report store API and its HTTP client."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DraftStatus(str, Enum):
    NONE = "none"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


class ExistingReport(BaseModel):
    """Answer to "does this owner have a report, and how far along is it?"."""
    status: DraftStatus = DraftStatus.NONE
    report_key: str | None = None
    completed_sections: list[int] = []
    # Last confirmed remote save per section index
    section_saved_at: dict[int, datetime] = {}


class CreateReportRequest(BaseModel):
    owner_key: str = Field(min_length=1)
    basic_info: dict[str, Any]
    submission_deadline: datetime | None = None


class ReportCreated(BaseModel):
    report_key: str


class SectionPayload(BaseModel):
    section_index: int
    data: dict[str, Any]
    confirmed: bool
    saved_at: datetime | None = None


class SectionSaveRequest(BaseModel):
    data: dict[str, Any]


class ReportProgress(BaseModel):
    report_key: str
    status: DraftStatus
    completed_sections: list[int]
    section_saved_at: dict[int, datetime] = {}


class ExpirySummary(BaseModel):
    expired: int
    checked_at: datetime
