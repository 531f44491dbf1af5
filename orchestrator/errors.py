"""
Error taxonomy for the query engine.

Caller-facing errors (validation, auth, quota, not-found) carry an HTTP status and a
machine code. Source and model failures are internal: they are caught at the task
boundary and folded into partial results, never surfaced to the caller directly.
"""

from typing import Any


class ResearchError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ResearchError):
    code = "validation_failed"
    status_code = 400


class Unauthorized(ResearchError):
    code = "unauthenticated"
    status_code = 401


class Forbidden(ResearchError):
    code = "forbidden"
    status_code = 403


class NotFound(ResearchError):
    code = "not_found"
    status_code = 404


class RateLimited(ResearchError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, message: str, *, retry_after_s: int, remaining: int = 0):
        super().__init__(message, details={"retry_after_s": retry_after_s, "remaining": remaining})
        self.retry_after_s = retry_after_s
        self.remaining = remaining


class SourceUnavailable(ResearchError):
    code = "source_unavailable"

    def __init__(
        self, source: str, message: str, *, status: int | None = None, retryable: bool = False
    ):
        super().__init__(f"{source}: {message}", details={"source": source, "status": status})
        self.source = source
        self.status = status
        self.retryable = retryable


class ModelUnavailable(ResearchError):
    code = "model_unavailable"

    def __init__(self, model: str, message: str):
        super().__init__(f"{model}: {message}", details={"model": model})
        self.model = model


class PersistenceError(ResearchError):
    code = "internal_error"
    status_code = 500
