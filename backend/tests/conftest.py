"""Pytest configuration and fixtures for DraftFlow tests.

Provides:
  - an in-memory fake of the remote report store (both adapter contracts),
    with failure injection, latency and a concurrency counter
  - a controller factory with millisecond auto-save windows
  - an httpx client driving the FastAPI app against a throwaway SQLite file
"""

import asyncio
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

# Must be set before draftflow.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOCAL_CACHE_BACKEND", "memory")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from draftflow.database import Base, get_db
from draftflow.engine.cache_bridge import LocalCacheBridge, MemoryCacheMedium
from draftflow.engine.controller import DraftController
from draftflow.engine.errors import ConflictError, IncompleteDraftError, PersistenceError
from draftflow.main import app
from draftflow.registry import monthly_report_registry
from draftflow.schemas.report import DraftStatus, ExistingReport

import draftflow.models  # noqa: F401


# ── Section values ───────────────────────────────────────────────

BASIC_INFO = {
    "month": "2026-09",
    "school_name": "Hillview Primary",
    "education_district": "North",
    "school_level": "primary",
    "school_grade": "A",
}
ENROLMENT = {"total_students": 10, "boys": 4, "girls": 6}
ATTENDANCE = {
    "student_attendance_rate": 94.5,
    "student_punctuality_rate": 90.0,
    "teacher_attendance_rate": 98.0,
    "teacher_punctuality_rate": 97.0,
}
STAFFING = {"total_staff_entitlement": 12, "current_teachers_on_staff": 12}
FINANCE = {
    "opening_balance": 100.0,
    "total_income": 50.0,
    "total_expenditure": 30.0,
    "closing_balance": 120.0,
}
RESOURCES = {"curriculum_resources": "Grade 4 readers"}

SECTION_VALUES = [BASIC_INFO, ENROLMENT, ATTENDANCE, STAFFING, FINANCE, RESOURCES]

FAST_AUTOSAVE = {
    "debounce_seconds": 0.01,
    "max_retries": 3,
    "backoff_base_seconds": 0.001,
    "backoff_cap_seconds": 0.004,
    "timeout_seconds": 1.0,
}
# Timer never fires during a test; saves only happen when asked for
SLOW_AUTOSAVE = {**FAST_AUTOSAVE, "debounce_seconds": 30.0}


# ── Fake remote store ────────────────────────────────────────────

@dataclass
class FakeReport:
    key: str
    owner_key: str
    status: str = "draft"
    completed: set[int] = field(default_factory=set)
    confirmed: dict[int, dict] = field(default_factory=dict)
    drafts: dict[int, dict] = field(default_factory=dict)
    saved_at: dict[int, datetime] = field(default_factory=dict)


@dataclass
class SaveCall:
    section_index: int
    data: dict[str, Any]
    complete: bool


class FakeReportStore:
    """Remote store double implementing the lifecycle and section adapters."""

    def __init__(self, section_count: int = 6, latency: float = 0.0):
        self.section_count = section_count
        self.latency = latency
        self.reports: dict[str, FakeReport] = {}
        self.save_calls: list[SaveCall] = []
        self.save_attempts = 0
        self.load_calls = 0
        self.finalize_calls = 0
        self.fail_saves = 0
        self.fail_finalize = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def section_adapter(self, spec) -> "FakeSectionAdapter":
        return FakeSectionAdapter(self, spec.index)

    def report_for(self, owner_key: str) -> FakeReport | None:
        for report in self.reports.values():
            if report.owner_key == owner_key and report.status in ("draft", "submitted"):
                return report
        return None

    @property
    def remote_calls(self) -> int:
        return self.save_attempts + self.load_calls + self.finalize_calls

    # Lifecycle adapter

    async def find_existing(self, owner_key: str) -> ExistingReport:
        report = self.report_for(owner_key)
        if report is None:
            return ExistingReport()
        return ExistingReport(
            status=DraftStatus.SUBMITTED if report.status == "submitted" else DraftStatus.IN_PROGRESS,
            report_key=report.key,
            completed_sections=sorted(report.completed),
            section_saved_at=dict(report.saved_at),
        )

    async def create(self, owner_key: str, basic_info: dict[str, Any]) -> str:
        existing = self.report_for(owner_key)
        if existing is not None and existing.status == "draft":
            raise ConflictError("draft already exists")
        key = f"rpt-{len(self.reports) + 1}"
        self.reports[key] = FakeReport(
            key=key,
            owner_key=owner_key,
            completed={0},
            confirmed={0: dict(basic_info)},
            saved_at={0: datetime.now(timezone.utc)},
        )
        return key

    async def finalize(self, report_key: str) -> None:
        self.finalize_calls += 1
        if self.fail_finalize:
            self.fail_finalize -= 1
            raise PersistenceError("backend unavailable")
        report = self.reports[report_key]
        if report.status == "submitted":
            raise ConflictError("already submitted")
        missing = [i for i in range(self.section_count) if i not in report.completed]
        if missing:
            raise IncompleteDraftError(missing)
        report.status = "submitted"

    # Section adapter backends

    async def load_section(self, report_key: str, index: int) -> dict | None:
        self.load_calls += 1
        report = self.reports[report_key]
        if index in report.drafts:
            return dict(report.drafts[index])
        if index in report.confirmed:
            return dict(report.confirmed[index])
        return None

    async def save_section(
        self, report_key: str, index: int, data: dict, complete: bool
    ) -> None:
        self.save_attempts += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            if self.fail_saves:
                self.fail_saves -= 1
                raise PersistenceError("backend unavailable")
            report = self.reports[report_key]
            if report.status != "draft":
                raise ConflictError(f"report is {report.status}")
            self.save_calls.append(SaveCall(index, dict(data), complete))
            if complete:
                report.confirmed[index] = dict(data)
                report.drafts.pop(index, None)
                report.completed.add(index)
            else:
                report.drafts[index] = dict(data)
            report.saved_at[index] = datetime.now(timezone.utc)
        finally:
            self.in_flight -= 1

    def saves_for(self, index: int, complete: bool | None = None) -> list[SaveCall]:
        return [
            c for c in self.save_calls
            if c.section_index == index and (complete is None or c.complete == complete)
        ]


class FakeSectionAdapter:
    def __init__(self, store: FakeReportStore, section_index: int):
        self.store = store
        self.section_index = section_index

    async def load(self, report_key: str) -> dict | None:
        return await self.store.load_section(report_key, self.section_index)

    async def save(self, report_key: str, data: dict, *, complete: bool = False) -> None:
        await self.store.save_section(report_key, self.section_index, data, complete)


# ── Engine fixtures ──────────────────────────────────────────────

@pytest.fixture
def store() -> FakeReportStore:
    return FakeReportStore()


@pytest.fixture
def medium() -> MemoryCacheMedium:
    return MemoryCacheMedium()


@pytest.fixture
def cache(medium) -> LocalCacheBridge:
    return LocalCacheBridge(medium, ttl_seconds=86400, version="1.0")


@pytest_asyncio.fixture
async def make_controller(store, cache):
    """Factory for controllers bound to the fake store; timers stopped on teardown."""
    created: list[DraftController] = []

    def _make(owner_key: str = "teacher-1", autosave=FAST_AUTOSAVE, **kwargs) -> DraftController:
        registry = monthly_report_registry().bind(kwargs.pop("adapter_factory", store.section_adapter))
        controller = DraftController(
            registry,
            kwargs.pop("lifecycle", store),
            kwargs.pop("cache", cache),
            owner_key=owner_key,
            autosave_options=dict(autosave),
            **kwargs,
        )
        created.append(controller)
        return controller

    yield _make

    for controller in created:
        await controller.close()


async def complete_sections(controller: DraftController, count: int) -> None:
    """Fill in and confirm the first ``count`` sections in order."""
    for index in range(count):
        assert controller.current_section == index
        controller.update_section(SECTION_VALUES[index])
        await controller.save_and_continue()


# ── API fixtures ─────────────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Fresh SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reports.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the database dependency pointed at the test engine."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
