"""
Exception taxonomy for depwatch.

Services and stores raise these; the CLI maps them to exit codes.
"""

from typing import List, Optional


class DepwatchError(Exception):
    """Base class for all depwatch errors."""
    pass


class ValidationError(DepwatchError):
    """Raised when a job, repository or event fails validation."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "validation failed")


class NotFoundError(DepwatchError):
    """Raised when a lookup by key or name finds nothing."""

    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class StoreError(DepwatchError):
    """Any other persistence-layer failure."""
    pass


class ConflictError(StoreError):
    """Raised when a conditional write loses against a concurrent writer."""

    def __init__(self, message: str, job_id: Optional[int] = None):
        self.job_id = job_id
        super().__init__(message)


class InvalidTransitionError(DepwatchError):
    """Raised when a job state change is not allowed from its current state."""
    pass


class PartialBatchError(DepwatchError):
    """Raised by a bulk patch when every item in the batch failed."""

    def __init__(self, errors: List[Optional[Exception]]):
        self.errors = list(errors)
        super().__init__(f"Failed to update provided repositories ({len(self.errors)} items)")
