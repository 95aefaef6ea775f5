"""Monthly reports: create, save sections, finalize.

Endpoints:
  GET  /api/reports/existing?owner_key=       → owner's live report, if any
  POST /api/reports/                          → create from basic info
  GET  /api/reports/{key}                     → progress
  GET  /api/reports/{key}/sections/{index}    → newest section payload
  PUT  /api/reports/{key}/sections/{index}    → save (?complete=true to confirm)
  POST /api/reports/{key}/finalize            → submit
  POST /api/reports/expire                    → run the expiry sweep now
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from draftflow.database import get_db
from draftflow.schemas.report import (
    CreateReportRequest,
    ExistingReport,
    ExpirySummary,
    ReportCreated,
    ReportProgress,
    SectionPayload,
    SectionSaveRequest,
)
from draftflow.services import reports as service

router = APIRouter()


@router.get("/existing", response_model=ExistingReport)
async def find_existing(
    owner_key: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    return await service.find_existing(db, owner_key)


@router.post("/", response_model=ReportCreated, status_code=status.HTTP_201_CREATED)
async def create_report(
    body: CreateReportRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create a draft; its basic information counts as section 0, confirmed."""
    report = await service.create_report(
        db, body.owner_key, body.basic_info, body.submission_deadline
    )
    return ReportCreated(report_key=report.id)


@router.post("/expire", response_model=ExpirySummary)
async def expire_drafts(db: AsyncSession = Depends(get_db)):
    return await service.expire_drafts(db)


@router.get("/{report_key}", response_model=ReportProgress)
async def get_progress(report_key: str, db: AsyncSession = Depends(get_db)):
    report = await service.get_report(db, report_key)
    return service.make_progress(report)


@router.get("/{report_key}/sections/{index}", response_model=SectionPayload)
async def load_section(
    report_key: str,
    index: int,
    db: AsyncSession = Depends(get_db),
):
    return await service.load_section(db, report_key, index)


@router.put("/{report_key}/sections/{index}", response_model=ReportProgress)
async def save_section(
    report_key: str,
    index: int,
    body: SectionSaveRequest,
    complete: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """Save a section. Pass ?complete=true to validate and mark it done."""
    return await service.save_section(db, report_key, index, body.data, complete)


@router.post("/{report_key}/finalize", response_model=ReportProgress)
async def finalize_report(report_key: str, db: AsyncSession = Depends(get_db)):
    return await service.finalize_report(db, report_key)
