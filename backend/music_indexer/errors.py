"""Exceptions raised by the indexer.

A missing remote path has no exception: listing it yields an empty folder.
"""

from typing import Optional


class IndexerError(Exception):
    """Base class for indexer failures."""


class AuthError(IndexerError):
    """An access token could not be obtained or refreshed."""


class RemoteError(IndexerError):
    """The remote drive answered with a failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(RemoteError):
    """401 that survived the one-shot token refresh."""


class TransportError(RemoteError):
    """Network failure or any non-success status other than 401/404."""
