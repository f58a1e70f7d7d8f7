"""
Error Taxonomy Module.

Exceptions raised across the sync engine. Sync errors are caught at project
or commit granularity by the updater and scheduler; they never abort a whole
sync pass.
"""

from typing import Optional


class ReviewTrackerError(Exception):
    """Base class for all application errors."""


class SyncError(ReviewTrackerError):
    """A GitLab request failed or returned something unusable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RemoteUnavailable(SyncError):
    """Network error, timeout or 5xx. Retried on the next tick."""


class Unauthorized(SyncError):
    """Credential rejected (401/403). The project stays suspended until reconfigured."""


class ProjectNotFound(SyncError):
    """GitLab does not know the project identifier (404)."""


class MalformedFilterRule(ReviewTrackerError):
    """A filter rule line is not a valid regular expression."""

    def __init__(self, rule: str, line: int, reason: str):
        self.rule = rule
        self.line = line
        self.reason = reason
        super().__init__(f"Line {line} rule is invalid: {rule} - {reason}")


class CacheCorrupt(ReviewTrackerError):
    """A persisted cache file could not be parsed."""


class CacheWriteError(ReviewTrackerError):
    """A cache snapshot could not be persisted."""


class WebhookSignatureInvalid(ReviewTrackerError):
    """Webhook signature missing or not matching the project secret."""
