"""Shared fixtures for the CatalogSync test suite."""

from __future__ import annotations

import contextlib
import io
from collections import deque
from typing import Callable, Deque

import httpx
import pytest
from PIL import Image

from CameraVault.CatalogSync.catalog.store import SQLiteCatalog
from CameraVault.CatalogSync.config.models import RateLimitPolicy, RetryPolicy, SourceConfig
from CameraVault.CatalogSync.http_session import build_http_client
from CameraVault.CatalogSync.logging_utils import EventStream
from CameraVault.CatalogSync.ratelimit import RateLimitRegistry


@pytest.fixture
def catalog(tmp_path):
    """A fresh catalog in a temporary directory."""
    store = SQLiteCatalog(str(tmp_path / "camera-vault.db"), wal_mode=False)
    yield store
    store.close()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts with no backoff."""
    return RetryPolicy(max_attempts=3, base_delay_s=0, max_delay_s=0, retry_after_cap_s=0)


@pytest.fixture
def rate_limits() -> RateLimitRegistry:
    return RateLimitRegistry(RateLimitPolicy(min_interval_ms=0))


@pytest.fixture
def event_stream() -> EventStream:
    return EventStream()


@pytest.fixture
def mock_client():
    """Build HTTPX clients backed by ``httpx.MockTransport``."""

    created: Deque[httpx.Client] = deque()

    def _install(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = build_http_client(transport=httpx.MockTransport(handler))
        created.append(client)
        return client

    yield _install

    while created:
        client = created.pop()
        with contextlib.suppress(Exception):
            client.close()


def _make_jpeg(width: int = 1600, height: int = 1200, color=(200, 40, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture
def image_factory() -> Callable[..., bytes]:
    return _make_jpeg


@pytest.fixture
def jpeg_bytes() -> bytes:
    return _make_jpeg()


@pytest.fixture
def seed_source() -> SourceConfig:
    return SourceConfig(
        name="seed",
        kind="static",
        records=[
            {"brand": "Canon", "model": "EOS R5", "releaseYear": 2020, "category": "mirrorless"},
            {"brand": "Nikon", "model": "Z9", "releaseYear": 2021, "category": "Mirrorless"},
            {"brand": "Sony", "model": "FX3", "releaseYear": 2021, "category": "cinema"},
        ],
    )
