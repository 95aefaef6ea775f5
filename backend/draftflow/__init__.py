"""draftflow: section-sequenced draft reports with resumable auto-save."""

__version__ = "0.1.0"
