"""HTTP implementation of the report adapters (talks to draftflow.main:app).

Usage:
    async with ReportsApiClient() as api:
        registry = monthly_report_registry().bind(api.section_adapter)
        controller = DraftController(registry, api, cache, owner_key="teacher-42")
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from draftflow.config import settings
from draftflow.engine.errors import (
    ConflictError,
    IncompleteDraftError,
    PersistenceError,
    SectionValidationError,
    Violation,
)
from draftflow.schemas.report import ExistingReport, ReportCreated

logger = logging.getLogger(__name__)


def _error_body(response: httpx.Response) -> dict:
    try:
        return response.json().get("error") or {}
    except (ValueError, AttributeError):
        return {}


class ReportsApiClient:
    """Report lifecycle adapter over the `/api/reports` endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.api_timeout_seconds,
        )

    async def __aenter__(self) -> "ReportsApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def section_adapter(self, spec) -> "HttpSectionAdapter":
        """Factory for SectionRegistry.bind()."""
        return HttpSectionAdapter(self, spec.index)

    # ── Lifecycle ────────────────────────────────────────────

    async def find_existing(self, owner_key: str) -> ExistingReport:
        response = await self.request(
            "GET", "/api/reports/existing", params={"owner_key": owner_key}
        )
        return ExistingReport.model_validate(response.json())

    async def create(self, owner_key: str, basic_info: dict[str, Any]) -> str:
        response = await self.request(
            "POST", "/api/reports/",
            json={"owner_key": owner_key, "basic_info": basic_info},
            section_index=0,
        )
        return ReportCreated.model_validate(response.json()).report_key

    async def finalize(self, report_key: str) -> None:
        await self.request("POST", f"/api/reports/{report_key}/finalize")

    # ── Transport ────────────────────────────────────────────

    async def request(
        self,
        method: str,
        url: str,
        *,
        section_index: int = -1,
        allow_not_found: bool = False,
        **kwargs,
    ) -> httpx.Response:
        """Send a request and translate failures into engine errors."""
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise PersistenceError(f"{method} {url} timed out", error_code="TIMEOUT") from e
        except httpx.HTTPError as e:
            raise PersistenceError(f"{method} {url} failed: {e}") from e

        if response.status_code == 404 and allow_not_found:
            return response
        if response.status_code == 409:
            body = _error_body(response)
            raise ConflictError(body.get("message") or f"{method} {url} conflicted")
        if response.status_code == 422:
            body = _error_body(response)
            details = body.get("details") or {}
            if body.get("code") == "DRAFT_INCOMPLETE":
                raise IncompleteDraftError(details.get("missing_sections") or [])
            errors = details.get("errors") or []
            violations = [
                Violation(field=e.get("field", "section"), message=e.get("message", ""))
                for e in errors
            ]
            raise SectionValidationError(
                section_index,
                violations,
                message=body.get("message") or "Rejected by the report store",
            )
        if response.is_error:
            logger.warning(f"{method} {url} returned HTTP {response.status_code}")
            raise PersistenceError(
                f"{method} {url} returned HTTP {response.status_code}",
                error_code=f"HTTP_{response.status_code}",
            )
        return response


class HttpSectionAdapter:
    """Section persistence adapter for a single section index."""

    def __init__(self, api: ReportsApiClient, section_index: int):
        self.api = api
        self.section_index = section_index

    async def load(self, report_key: str) -> dict[str, Any] | None:
        response = await self.api.request(
            "GET",
            f"/api/reports/{report_key}/sections/{self.section_index}",
            section_index=self.section_index,
            allow_not_found=True,
        )
        if response.status_code == 404:
            return None
        return response.json().get("data")

    async def save(
        self, report_key: str, data: dict[str, Any], *, complete: bool = False
    ) -> None:
        await self.api.request(
            "PUT",
            f"/api/reports/{report_key}/sections/{self.section_index}",
            params={"complete": "true" if complete else "false"},
            json={"data": data},
            section_index=self.section_index,
        )
