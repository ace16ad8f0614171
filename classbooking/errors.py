"""Failures the booking backend reports to callers.

Every error carries a stable ``code`` and the HTTP status it maps to, so
the API layer can render them with a single exception handler.
"""

from typing import Any, Dict, List, Optional


class BookingError(Exception):
    """Base class for all caller-visible failures."""

    code = "error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InvalidInput(BookingError):
    """The request is malformed or missing required fields."""

    code = "invalid_input"
    status_code = 400

    def __init__(self, message: str, fields: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.fields = fields or []

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.fields:
            body["fields"] = self.fields
        return body


class NotFound(BookingError):
    code = "not_found"
    status_code = 404


class OutOfStock(BookingError):
    """A cart entry could not be reserved; the whole order was rejected."""

    code = "out_of_stock"
    status_code = 409

    def __init__(self, lesson_id: str, subject: Optional[str] = None) -> None:
        label = subject or lesson_id
        super().__init__(f"Not enough spaces for {label}")
        self.lesson_id = lesson_id
        self.subject = subject

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["lessonId"] = self.lesson_id
        body["subject"] = self.subject
        return body


class StoreUnavailable(BookingError):
    """The database or its transaction machinery failed. Safe to retry."""

    code = "store_unavailable"
    status_code = 503


class CommitUnknown(BookingError):
    """The commit was sent but its result never came back.

    The order may or may not have been placed, so this is not safe to
    retry blindly.
    """

    code = "commit_unknown"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(f"{message}; check for the order before retrying")
