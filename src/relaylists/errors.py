"""
Error taxonomy for list synchronization.

Tier-local failures (one relay, one decryption attempt) are absorbed by
the merge. Account-wide failures (no durable storage, no active account)
abort the whole call and must be handled by the caller.
"""

from __future__ import annotations

from typing import Optional


class ListSyncError(Exception):
    """Base class for every failure raised by relaylists."""


class StorageIOError(ListSyncError):
    """The durable account file is unreadable or unwritable.

    Fatal to the synchronization call for that list.
    """

    def __init__(self, message: str, path: Optional[object] = None) -> None:
        super().__init__(message)
        self.path = path


class NetworkError(ListSyncError):
    """A relay could not be reached, timed out, or rejected a request."""

    def __init__(self, message: str, relay: Optional[str] = None) -> None:
        super().__init__(message)
        self.relay = relay


class DecryptionError(ListSyncError):
    """A private partition could not be decrypted or decoded."""


class NotAuthenticatedError(ListSyncError):
    """No account is active; raised before any I/O is attempted."""


class ReferentialIntegrityWarning(UserWarning):
    """Folder metadata referenced an item that no longer exists.

    Corrected silently by orphan cleanup and only ever logged.
    """
