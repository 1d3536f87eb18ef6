"""Exceptions shared by the pipeline and its collaborators."""

from __future__ import annotations


class RateLimitError(RuntimeError):
    """A provider signalled that its rate limit was exceeded."""

    status_code = 429

    def __init__(self, message: str, *, provider: str | None = None, retry_after: float | None = None):
        super().__init__(message)
        self.provider = provider
        self.retry_after = retry_after


class CollaboratorConfigError(RuntimeError):
    """A collaborator cannot be initialized from the current configuration."""
