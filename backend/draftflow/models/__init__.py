"""Aggregate model imports so create_tables() sees every table."""

from draftflow.models.report import DraftReport, ReportStatus  # noqa: F401
