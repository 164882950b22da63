"""
Domain exceptions. Routers let these propagate; main.py maps them to HTTP
responses. The sync pipeline catches PlatformError / PersistenceError per job
and absorbs ClassificationError per batch.
"""

import enum
from datetime import datetime


class BrandPulseError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BrandPulseError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AccessDeniedError(BrandPulseError):
    status_code = 403
    code = "ACCESS_DENIED"


class NotFoundError(BrandPulseError):
    status_code = 404
    code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, identifier):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier


class ConflictError(BrandPulseError):
    status_code = 409
    code = "CONFLICT"


class SyncInProgressError(ConflictError):
    code = "SYNC_IN_PROGRESS"

    def __init__(self, source_id):
        super().__init__(f"A sync job is already queued or running for source {source_id}")
        self.source_id = source_id


class RateLimitedError(ConflictError):
    """Manual sync requested inside the cooldown window."""

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, next_eligible_at: datetime, message: str | None = None):
        super().__init__(message or f"Manual refresh allowed once per 24 hours. Next refresh available at {next_eligible_at.isoformat()}")
        self.next_eligible_at = next_eligible_at


class PlanLimitError(BrandPulseError):
    status_code = 403
    code = "PLAN_LIMIT_EXCEEDED"


class PlatformErrorKind(str, enum.Enum):
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    NOT_FOUND = "NOT_FOUND"
    TRANSIENT = "TRANSIENT"


class PlatformError(BrandPulseError):
    """A review platform rejected or failed the fetch."""

    status_code = 502
    code = "PLATFORM_ERROR"

    def __init__(self, kind: PlatformErrorKind, message: str):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind


class ClassificationError(BrandPulseError):
    """The sentiment classifier failed for a whole batch."""

    status_code = 503
    code = "AI_SERVICE_UNAVAILABLE"


class PersistenceError(BrandPulseError):
    status_code = 500
    code = "PERSISTENCE_ERROR"
