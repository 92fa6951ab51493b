"""Error types raised by report services and mapped to JSON responses in ``app.main``."""

from __future__ import annotations


class ReportError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, status_code: int | None = None, *, envelope: bool = False) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        # project-scoped endpoints answer errors as {"ok": false, "message": ...}
        self.envelope = envelope
        super().__init__(self.message)

    def body(self) -> dict:
        if self.envelope:
            return {"ok": False, "message": self.message}
        return {"message": self.message}


class Unauthenticated(ReportError):
    status_code = 401
    default_message = "Unauthorized"


class ReportAccessError(ReportError):
    status_code = 403
    default_message = "Forbidden"


class InvalidDateRange(ReportError):
    status_code = 400
    default_message = "Invalid date range"


class InvalidReportRequest(ReportError):
    status_code = 400
    default_message = "Bad request"


class ReportNotFound(ReportError):
    status_code = 404
    default_message = "Not found"
