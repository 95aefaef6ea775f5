"""Report store service: the remote side of the draft engine.

Handles:
  - Finding an owner's live report (drafts past their deadline don't count)
  - Creating a report from its basic information (section 0, confirmed)
  - Loading and saving section payloads, as drafts or confirmed
  - Finalizing a report once every section is confirmed
  - Expiring drafts whose submission deadline has passed
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from draftflow.engine.errors import ConflictError, IncompleteDraftError
from draftflow.middleware.exceptions import ResourceNotFoundError
from draftflow.models.report import DraftReport, ReportStatus
from draftflow.registry import monthly_report_registry
from draftflow.schemas.report import (
    DraftStatus,
    ExistingReport,
    ExpirySummary,
    ReportProgress,
    SectionPayload,
)

logger = logging.getLogger(__name__)

REGISTRY = monthly_report_registry()

_STATUS_MAP = {
    ReportStatus.DRAFT: DraftStatus.IN_PROGRESS,
    ReportStatus.SUBMITTED: DraftStatus.SUBMITTED,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _saved_at(report: DraftReport) -> dict[int, datetime]:
    return {
        int(k): _aware(datetime.fromisoformat(v))
        for k, v in (report.section_saved_at or {}).items()
    }


def make_progress(report: DraftReport) -> ReportProgress:
    return ReportProgress(
        report_key=report.id,
        status=_STATUS_MAP.get(report.status, DraftStatus.NONE),
        completed_sections=sorted(report.completed_sections or []),
        section_saved_at=_saved_at(report),
    )


def _check_index(index: int) -> None:
    if not 0 <= index < len(REGISTRY):
        raise ResourceNotFoundError("Section", str(index))


async def get_report(db: AsyncSession, report_key: str) -> DraftReport:
    report = await db.get(DraftReport, report_key)
    if report is None:
        raise ResourceNotFoundError("Report", report_key)
    return report


async def _live_draft(db: AsyncSession, owner_key: str) -> DraftReport | None:
    result = await db.execute(
        select(DraftReport)
        .where(
            DraftReport.owner_key == owner_key,
            DraftReport.status == ReportStatus.DRAFT,
        )
        .order_by(DraftReport.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_existing(db: AsyncSession, owner_key: str) -> ExistingReport:
    """A live draft wins over an older submitted report; expired drafts are ignored."""
    report = await _live_draft(db, owner_key)
    if report is None:
        result = await db.execute(
            select(DraftReport)
            .where(
                DraftReport.owner_key == owner_key,
                DraftReport.status == ReportStatus.SUBMITTED,
            )
            .order_by(DraftReport.submitted_at.desc())
            .limit(1)
        )
        report = result.scalar_one_or_none()
    if report is None:
        return ExistingReport()

    progress = make_progress(report)
    return ExistingReport(
        status=progress.status,
        report_key=report.id,
        completed_sections=progress.completed_sections,
        section_saved_at=progress.section_saved_at,
    )


async def create_report(
    db: AsyncSession,
    owner_key: str,
    basic_info: dict,
    submission_deadline: datetime | None = None,
) -> DraftReport:
    """Create a draft from validated basic information.

    Raises:
        ConflictError if the owner already has a live draft.
        SectionValidationError if the basic information is incomplete.
    """
    if await _live_draft(db, owner_key) is not None:
        raise ConflictError(f"Owner {owner_key} already has a draft in progress")

    payload = REGISTRY.validate(0, basic_info)
    now = _now()
    report = DraftReport(
        owner_key=owner_key,
        status=ReportStatus.DRAFT,
        basic_info=payload,
        completed_sections=[0],
        completed_data={"0": payload},
        draft_data={},
        section_saved_at={"0": now.isoformat()},
        submission_deadline=submission_deadline,
        created_at=now,
        updated_at=now,
    )
    db.add(report)
    await db.flush()
    logger.info(f"Created report {report.id} for {owner_key}")
    return report


async def load_section(db: AsyncSession, report_key: str, index: int) -> SectionPayload:
    """Return the newest payload for a section; auto-saved drafts are newer than confirmed data."""
    _check_index(index)
    report = await get_report(db, report_key)
    key = str(index)

    draft = (report.draft_data or {}).get(key)
    confirmed = (report.completed_data or {}).get(key)
    if draft is None and confirmed is None:
        raise ResourceNotFoundError("Section", f"{report_key}/{index}")

    return SectionPayload(
        section_index=index,
        data=draft if draft is not None else confirmed,
        confirmed=draft is None,
        saved_at=_saved_at(report).get(index),
    )


async def save_section(
    db: AsyncSession,
    report_key: str,
    index: int,
    data: dict,
    complete: bool = False,
) -> ReportProgress:
    """Store a section payload.

    complete=False keeps it as draft data and never touches completion.
    complete=True validates it with the section's completion rules, stores
    it as confirmed data and marks the section complete.
    """
    _check_index(index)
    report = await get_report(db, report_key)
    if report.status != ReportStatus.DRAFT:
        raise ConflictError(
            f"Report {report_key} is {report.status.value}; sections can no longer change"
        )

    key = str(index)
    spec = REGISTRY[index]
    draft_data = dict(report.draft_data or {})
    if complete:
        payload = spec.validate(data)
        completed_data = dict(report.completed_data or {})
        completed_data[key] = payload
        report.completed_data = completed_data
        draft_data.pop(key, None)
        if index not in report.completed_sections:
            report.completed_sections = sorted(report.completed_sections + [index])
        if index == 0:
            report.basic_info = payload
    else:
        draft_data[key] = spec.coerce(data)
    report.draft_data = draft_data

    saved_at = dict(report.section_saved_at or {})
    saved_at[key] = _now().isoformat()
    report.section_saved_at = saved_at
    await db.flush()

    logger.debug(f"Saved section {index} of report {report_key} (complete={complete})")
    return make_progress(report)


async def finalize_report(db: AsyncSession, report_key: str) -> ReportProgress:
    """Submit a report.

    Raises:
        ConflictError if it is already submitted or has expired.
        IncompleteDraftError if any section is not confirmed.
    """
    report = await get_report(db, report_key)
    if report.status == ReportStatus.SUBMITTED:
        raise ConflictError(f"Report {report_key} is already submitted", error_code="ALREADY_SUBMITTED")
    if report.status == ReportStatus.EXPIRED_DRAFT:
        raise ConflictError(f"Report {report_key} expired before submission", error_code="DRAFT_EXPIRED")

    missing = [i for i in range(len(REGISTRY)) if i not in report.completed_sections]
    if missing:
        raise IncompleteDraftError(missing)

    report.status = ReportStatus.SUBMITTED
    report.submitted_at = _now()
    report.draft_data = {}
    await db.flush()
    logger.info(f"Report {report_key} submitted by {report.owner_key}")
    return make_progress(report)


async def expire_drafts(db: AsyncSession, now: datetime | None = None) -> ExpirySummary:
    """Mark every draft whose submission deadline has passed as expired."""
    now = now or _now()
    result = await db.execute(
        update(DraftReport)
        .where(
            DraftReport.status == ReportStatus.DRAFT,
            DraftReport.submission_deadline.is_not(None),
            DraftReport.submission_deadline < now,
        )
        .values(status=ReportStatus.EXPIRED_DRAFT, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    expired = result.rowcount or 0
    if expired:
        logger.info(f"Expired {expired} draft report(s) past their deadline")
    return ExpirySummary(expired=expired, checked_at=now)
