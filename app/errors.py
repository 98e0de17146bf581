from __future__ import annotations


class SchedulerError(Exception):
    """Base class for failures raised by the scheduling core."""


class ValidationError(SchedulerError, ValueError):
    """Malformed dates/times or missing required request fields."""


class NotFound(SchedulerError, LookupError):
    """Target record does not exist or lives outside the caller's tenant."""


class TransactionUnsupported(SchedulerError):
    """The storage backend cannot run the bulk write inside one transaction."""


class DependencyCleanupFailure(SchedulerError):
    """Cascade or orphan sweep failed after the primary delete committed."""

    def __init__(self, stage: str, removed: int, cause: BaseException | None = None) -> None:
        super().__init__(f"{stage} cleanup incomplete after removing {removed} shifts")
        self.stage = stage
        self.removed = removed
        self.cause = cause
