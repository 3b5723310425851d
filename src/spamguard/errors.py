"""
Error taxonomy for the classification pipeline.

Every error is contained at the component that raised it and converted into a
retry, a Dropped outcome or a logged degradation.
"""

from __future__ import annotations


class SpamGuardError(Exception):
    """Base class for all pipeline errors."""


class BackendError(SpamGuardError):
    """The classifier backend could not produce a usable answer."""


class TransientBackendError(BackendError):
    """Network failure, timeout, rate limit or 5xx. Retried with backoff."""


class PermanentBackendError(BackendError):
    """Response violates the classification contract, or the request can never succeed."""


class EnrichmentFailure(SpamGuardError):
    """A single URL could not be fetched or extracted."""

    def __init__(self, url: str, detail: str):
        super().__init__(f"{url}: {detail}")
        self.url = url
        self.detail = detail


class ActionFailure(SpamGuardError):
    """The chat platform refused or failed a request."""
