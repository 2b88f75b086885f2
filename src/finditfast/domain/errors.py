"""
Exception types shared across layers.

Report errors deliberately carry a generic, user-facing message; the storage-layer cause
stays on `__cause__` for logs only. Store errors are raised unchanged to verification
callers, who need the underlying reason.
"""

from __future__ import annotations


class FinditfastError(Exception):
    """Base class for application errors."""


class ReportSubmissionError(FinditfastError):
    """A crowd report could not be written."""

    def __init__(self, message: str = "Failed to submit report. Please try again.") -> None:
        super().__init__(message)


class ReportLookupError(FinditfastError):
    """Reports could not be loaded."""

    def __init__(self, message: str = "Failed to load reports.") -> None:
        super().__init__(message)


class DocumentNotFoundError(FinditfastError, KeyError):
    """A document id does not exist in its collection."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")

    def __str__(self) -> str:
        return f"{self.collection}/{self.doc_id} not found"
