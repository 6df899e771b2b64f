"""
Exception hierarchy for the generator.
"""

from typing import Optional


class StaticGenError(Exception):
    """Base class for every error raised by staticgen."""


class ConfigError(StaticGenError):
    """Settings file missing, unreadable or invalid."""


class ValidationError(StaticGenError):
    """User-supplied value rejected before any side effect (branch, path, pattern)."""


class AlreadyRunningError(StaticGenError):
    """A generation run is already active."""


class RunCancelled(StaticGenError):
    """The active run was asked to stop."""


class FetchError(StaticGenError):
    """A single page could not be fetched."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{reason}: {url}")
        self.url = url
        self.reason = reason


class PublishError(StaticGenError):
    """A publisher could not complete; aborts that destination only."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message if status is None else f"{message} (Status: {status})")
        self.status = status


class RateLimitError(PublishError):
    """The remote API signalled a rate limit."""
