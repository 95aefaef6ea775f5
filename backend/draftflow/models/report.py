"""One monthly report per owner, from first section to submission.

Confirmed section payloads live in ``completed_data``; auto-saved payloads
for sections not yet confirmed live in ``draft_data``.  Both are keyed by
the section index as a string (JSON object keys).
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from draftflow.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReportStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    EXPIRED_DRAFT = "expired_draft"


class DraftReport(Base):
    __tablename__ = "draft_reports"
    __table_args__ = (
        Index("ix_draft_reports_owner_status", "owner_key", "status"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    owner_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[ReportStatus] = mapped_column(
        Enum(ReportStatus, native_enum=False, length=20),
        default=ReportStatus.DRAFT,
        nullable=False,
    )
    basic_info: Mapped[dict] = mapped_column(JSON, default=dict)
    completed_sections: Mapped[list] = mapped_column(JSON, default=list)
    completed_data: Mapped[dict] = mapped_column(JSON, default=dict)
    # Cleared per section once that section is confirmed
    draft_data: Mapped[dict] = mapped_column(JSON, default=dict)
    # {"<index>": ISO-8601 UTC timestamp of the last accepted save}
    section_saved_at: Mapped[dict] = mapped_column(JSON, default=dict)
    submission_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
