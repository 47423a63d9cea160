"""Domain errors raised by the check-in services.

Each error carries an HTTP status, a machine-readable ``code`` and a message
meant for staff. The web layer renders them; bulk operations catch them and
collect the message per target instead.
"""
from __future__ import annotations


class CheckpointError(Exception):
    status_code = 500
    default_code = "SERVER_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ValidationFailed(CheckpointError):
    """Missing or malformed input."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class NotFound(CheckpointError):
    status_code = 404
    default_code = "NOT_FOUND"


class RuleViolation(CheckpointError):
    """Business rule rejection: not present, already given, limit exceeded, nothing to undo."""

    status_code = 400
    default_code = "RULE_VIOLATION"


class PermissionDenied(CheckpointError):
    status_code = 403
    default_code = "PERMISSION_DENIED"


class ConcurrentUpdate(CheckpointError):
    """Another request changed the same entitlement first. Safe to retry."""

    status_code = 409
    default_code = "CONCURRENT_UPDATE"


class PayloadTooLarge(ValidationFailed):
    status_code = 413
    default_code = "UPLOAD_TOO_LARGE"
