"""Error taxonomy for the licensing engine.

Validation, not-found and concurrency errors propagate to the caller.
Side-effect failures (license trigger, alert channel, cache invalidation)
are caught where they are invoked and wrapped in UpstreamDependencyFailure
only for logging.
"""

from __future__ import annotations


class LicensingError(Exception):
    """Base class for all licensing engine errors."""

    code = "LICENSING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(LicensingError):
    """Caller input is invalid. No mutation was performed."""

    code = "VALIDATION_ERROR"


class InvalidGroupError(ValidationError):
    """Requested workflow group is not part of the review sequence."""

    code = "INVALID_GROUP"

    def __init__(self, group: str):
        self.group = group
        super().__init__(f"Unknown workflow group '{group}'")


class NoValidChannelsError(ValidationError):
    """None of the requested alert channels is usable for the recipient."""

    code = "NO_VALID_CHANNELS"


class NotFoundError(LicensingError):
    """A referenced entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found")


class ConcurrencyConflictError(LicensingError):
    """Applicant was modified by another writer since it was read."""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, applicant_id: int, expected_version: int | None, actual_version: int | None):
        self.applicant_id = applicant_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Applicant {applicant_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class UpstreamDependencyFailure(LicensingError):
    """A secondary side effect failed. Never propagated past its trigger."""

    code = "UPSTREAM_DEPENDENCY_FAILURE"

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")
