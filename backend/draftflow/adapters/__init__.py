from draftflow.adapters.base import ReportLifecycleAdapter, SectionPersistenceAdapter
from draftflow.adapters.http import HttpSectionAdapter, ReportsApiClient

__all__ = [
    "ReportLifecycleAdapter",
    "SectionPersistenceAdapter",
    "HttpSectionAdapter",
    "ReportsApiClient",
]
