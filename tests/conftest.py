"""Shared test fixtures for relaylists."""

from __future__ import annotations

from pathlib import Path

import pytest

from relaylists.config import SyncSettings

from fakes import FakeCipher, FakeSigner

RELAY_URLS = ["wss://one.relay.test", "wss://two.relay.test", "wss://three.relay.test"]


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Provide a temporary relaylists home directory."""
    home = tmp_path / ".relaylists"
    home.mkdir()
    return home


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def cipher() -> FakeCipher:
    return FakeCipher()


@pytest.fixture
def settings() -> SyncSettings:
    """Fast settings pointing at the fake relay URLs."""
    return SyncSettings(
        relays=list(RELAY_URLS),
        relay_timeout=0.5,
        publish_timeout=0.5,
        page_size=50,
        max_pages=5,
    )
