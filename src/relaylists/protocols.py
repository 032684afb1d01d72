"""Capability interfaces for dependency injection.

Components depend on these protocols, never on concrete classes, so
tests and callers can inject their own signer, cipher, relay client or
tier implementation.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .models import FetchResult, ListSnapshot, PublishReport


@runtime_checkable
class Signer(Protocol):
    """Signs event ids on behalf of one account."""

    pubkey: str

    def sign(self, event_id: str) -> str:
        """Return a hex signature over the event id."""
        ...


@runtime_checkable
class Cipher(Protocol):
    """Symmetric/asymmetric payload encryption for private partitions."""

    def encrypt(self, plaintext: str, recipient_pubkey: str) -> str:
        """Encrypt plaintext for a recipient."""
        ...

    def decrypt(self, ciphertext: str, sender_pubkey: str) -> str:
        """Decrypt ciphertext; raise on failure."""
        ...


@runtime_checkable
class Pausable(Protocol):
    """Components with background work that can be suspended."""

    @property
    def paused(self) -> bool: ...

    def pause(self) -> None:
        """Suspend background work."""
        ...

    def resume(self) -> None:
        """Resume background work."""
        ...


@runtime_checkable
class RelayClient(Protocol):
    """One relay endpoint speaking REQ / EVENT / EOSE / CLOSE / OK."""

    url: str

    async def query(self, filter: dict[str, Any]) -> list[dict[str, Any]]:
        """Return stored events matching a filter."""
        ...

    async def publish(self, event: dict[str, Any]) -> bool:
        """Publish an event; True when the relay accepted it."""
        ...


@runtime_checkable
class CacheTier(Protocol):
    """Synchronous, disposable session cache."""

    def get(self) -> ListSnapshot | None: ...

    def set(self, snapshot: ListSnapshot) -> None: ...


@runtime_checkable
class FileTier(Protocol):
    """Durable per-account storage."""

    async def read(self) -> ListSnapshot: ...

    async def write(self, snapshot: ListSnapshot) -> None: ...


@runtime_checkable
class NetworkTier(Protocol):
    """Eventually-consistent relay network."""

    async def fetch(self) -> FetchResult: ...

    async def publish(self, snapshot: ListSnapshot) -> PublishReport: ...
