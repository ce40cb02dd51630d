# === NAVMAP v1 ===
# {
#   "module": "CameraVault.CatalogSync.assets",
#   "purpose": "Download, render and record camera images with attribution.",
#   "sections": [
#     {"id": "acquisitionstatus", "name": "AcquisitionStatus", "anchor": "class-acquisitionstatus", "kind": "class"},
#     {"id": "acquisitionresult", "name": "AcquisitionResult", "anchor": "class-acquisitionresult", "kind": "class"},
#     {"id": "assetcache", "name": "AssetCache", "anchor": "class-assetcache", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Local image cache for catalog entries.

Responsibilities
----------------
- Download a camera's remote image (bounded size, retried, rate limited per
  host), check its licence, render a full image and a thumbnail with Pillow
  and write both atomically under the asset root.
- Record provenance and point the camera row at the cached files in a single
  catalog transaction via :meth:`SQLiteCatalog.attach_image`.
- Keep failures local: a failed acquisition is recorded for a later retry,
  logged, and reported in the returned :class:`AcquisitionResult`. Camera
  image fields are left untouched.

Layout
------
``<root>/images/<id>.jpg``, ``<root>/images/thumbs/<id>-thumb.jpg`` and
``<root>/attributions/attribution-report.json``. Paths stored in the catalog
are relative to ``<root>`` and use forward slashes.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

import httpx

from CameraVault.CatalogSync.cancellation import CancellationToken
from CameraVault.CatalogSync.catalog.models import CameraRecord, ImageAttribution
from CameraVault.CatalogSync.catalog.store import SQLiteCatalog
from CameraVault.CatalogSync.config.models import AssetConfig, RetryPolicy
from CameraVault.CatalogSync.errors import AssetAcquisitionFailed, StoreWriteFailed
from CameraVault.CatalogSync.imaging import ImageDecodeError, render_image
from CameraVault.CatalogSync.io_utils import (
    SizeLimitExceeded,
    atomic_write_bytes,
    atomic_write_json,
    read_bounded,
)
from CameraVault.CatalogSync.locks import KeyedLock
from CameraVault.CatalogSync.ratelimit import RateLimitExceeded, RateLimitRegistry
from CameraVault.CatalogSync.tenacity_retry import build_tenacity_retrying

logger = logging.getLogger(__name__)

ATTRIBUTION_REPORT = "attribution-report.json"


class AcquisitionStatus(str, Enum):
    ENRICHED = "enriched"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class AcquisitionResult:
    """Outcome of one :meth:`AssetCache.acquire` call."""

    camera_id: str
    status: AcquisitionStatus
    reason: Optional[str] = None
    local_path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is AcquisitionStatus.ENRICHED


@dataclass(frozen=True)
class _Download:
    status_code: int
    headers: Mapping[str, str]
    content: bytes


def _host(url: str) -> Optional[str]:
    try:
        return httpx.URL(url).host or None
    except httpx.InvalidURL:
        return None


class AssetCache:
    """Acquire and cache images for catalog entries."""

    def __init__(
        self,
        store: SQLiteCatalog,
        client: httpx.Client,
        config: Optional[AssetConfig] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        rate_limits: Optional[RateLimitRegistry] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self.store = store
        self.client = client
        self.config = config or AssetConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.rate_limits = rate_limits or RateLimitRegistry()
        self.locks = locks or KeyedLock()

        self.root = Path(self.config.root)
        self.images_dir = self.root / self.config.images_subdir
        self.thumbs_dir = self.images_dir / self.config.thumbs_subdir
        self.attributions_dir = self.root / self.config.attributions_subdir
        self._allowed_licenses = {lic.strip().lower() for lic in self.config.allowed_licenses}

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def image_path(self, camera_id: str) -> Path:
        return self.images_dir / f"{camera_id}.jpg"

    def thumbnail_path(self, camera_id: str) -> Path:
        return self.thumbs_dir / f"{camera_id}-thumb.jpg"

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def acquire(
        self, camera: CameraRecord, token: Optional[CancellationToken] = None
    ) -> AcquisitionResult:
        """Cache the image for ``camera`` unless it already has one.

        Never raises for acquisition problems; those come back as a failed
        result after being recorded in the catalog's attempt bookkeeping.
        """
        with self.locks.hold(camera.id):
            current = self.store.lookup(camera.id)
            if current is None:
                return AcquisitionResult(
                    camera.id, AcquisitionStatus.SKIPPED, reason="unknown-camera"
                )
            if current.local_image_path:
                return AcquisitionResult(
                    camera.id,
                    AcquisitionStatus.SKIPPED,
                    reason="already-enriched",
                    local_path=current.local_image_path,
                    thumbnail_path=current.thumbnail_path,
                )

            try:
                return self._acquire_locked(current, token)
            except AssetAcquisitionFailed as e:
                return self._record_failure(e)

    def _record_failure(self, failure: AssetAcquisitionFailed) -> AcquisitionResult:
        logger.warning(
            f"Image acquisition failed for {failure.camera_id} ({failure.reason}): {failure}"
        )
        try:
            self.store.record_image_failure(failure.camera_id, f"{failure.reason}: {failure}")
        except (sqlite3.Error, StoreWriteFailed) as e:
            logger.error(f"Could not record image failure for {failure.camera_id}: {e}")
        return AcquisitionResult(
            failure.camera_id,
            AcquisitionStatus.FAILED,
            reason=failure.reason,
            error=str(failure),
        )

    def _acquire_locked(
        self, camera: CameraRecord, token: Optional[CancellationToken]
    ) -> AcquisitionResult:
        if not camera.image_url:
            raise AssetAcquisitionFailed(
                "no image URL supplied by any source", camera_id=camera.id, reason="no-image-url"
            )

        attribution = camera.image_attribution or ImageAttribution(
            source=_host(camera.image_url) or "Unknown"
        )
        if attribution.license.strip().lower() not in self._allowed_licenses:
            raise AssetAcquisitionFailed(
                f"licence '{attribution.license}' is not allowed",
                camera_id=camera.id,
                reason="license",
            )

        data = self._download(camera, token)

        try:
            rendered = render_image(
                data,
                image_size=tuple(self.config.image_size),
                thumbnail_size=tuple(self.config.thumbnail_size),
                image_quality=self.config.image_quality,
                thumbnail_quality=self.config.thumbnail_quality,
            )
        except ImageDecodeError as e:
            raise AssetAcquisitionFailed(str(e), camera_id=camera.id, reason="decode") from e

        image_path = self.image_path(camera.id)
        thumb_path = self.thumbnail_path(camera.id)
        try:
            atomic_write_bytes(image_path, rendered.full)
            atomic_write_bytes(thumb_path, rendered.thumbnail)
        except OSError as e:
            raise AssetAcquisitionFailed(
                f"cannot write image files: {e}", camera_id=camera.id, reason="filesystem"
            ) from e

        local_path = self._relative(image_path)
        thumbnail_path = self._relative(thumb_path)
        try:
            self.store.attach_image(
                camera.id,
                image_url=camera.image_url,
                local_path=local_path,
                thumbnail_path=thumbnail_path,
                attribution=attribution,
            )
        except StoreWriteFailed as e:
            for written in (image_path, thumb_path):
                written.unlink(missing_ok=True)
            raise AssetAcquisitionFailed(
                f"cannot record image: {e}", camera_id=camera.id, reason="store"
            ) from e

        logger.info(
            f"Cached image for {camera.id}: {local_path} ({rendered.width}x{rendered.height})"
        )
        return AcquisitionResult(
            camera.id,
            AcquisitionStatus.ENRICHED,
            local_path=local_path,
            thumbnail_path=thumbnail_path,
        )

    def _download(self, camera: CameraRecord, token: Optional[CancellationToken]) -> bytes:
        url = camera.image_url or ""
        host = _host(url) or url
        limit = self.config.max_image_bytes

        def _attempt() -> _Download:
            if self.client.is_closed:
                raise AssetAcquisitionFailed(
                    "HTTP client closed", camera_id=camera.id, reason="cancelled"
                )
            self.rate_limits.acquire(host, token)
            with self.client.stream("GET", url) as response:
                if response.status_code >= 400:
                    return _Download(response.status_code, response.headers, b"")
                declared = response.headers.get("Content-Length")
                content = read_bounded(
                    response.iter_bytes(),
                    limit=limit,
                    declared_len=int(declared) if declared and declared.isdigit() else None,
                )
                return _Download(response.status_code, response.headers, content)

        retrying = build_tenacity_retrying(
            self.retry_policy, sleep=token.wait if token is not None else time.sleep
        )
        try:
            download = retrying(_attempt)
        except SizeLimitExceeded as e:
            raise AssetAcquisitionFailed(str(e), camera_id=camera.id, reason="too-large") from e
        except RateLimitExceeded as e:
            raise AssetAcquisitionFailed(str(e), camera_id=camera.id, reason="rate-limited") from e
        except httpx.InvalidURL as e:
            raise AssetAcquisitionFailed(str(e), camera_id=camera.id, reason="invalid-url") from e
        except httpx.HTTPError as e:
            raise AssetAcquisitionFailed(
                f"download failed: {e!r}", camera_id=camera.id, reason="network"
            ) from e

        if download.status_code >= 400:
            raise AssetAcquisitionFailed(
                f"HTTP {download.status_code} from {url}",
                camera_id=camera.id,
                reason=f"http-{download.status_code}",
            )
        if not download.content:
            raise AssetAcquisitionFailed("empty response body", camera_id=camera.id, reason="decode")
        return download.content

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def write_attribution_report(self) -> Path:
        """Write every stored attribution to ``attribution-report.json``."""
        rows = self.store.all_attributions()
        report = {
            "generated": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "totalImages": len(rows),
            "attributions": [
                {
                    "id": row.id,
                    "cameraId": row.camera_id,
                    "imageUrl": row.image_url,
                    "localPath": row.local_path,
                    "source": row.source,
                    "author": row.author,
                    "license": row.license,
                    "attributionText": row.attribution_text,
                    "createdAt": row.created_at.isoformat(),
                }
                for row in rows
            ],
        }
        path = self.attributions_dir / ATTRIBUTION_REPORT
        atomic_write_json(path, report)
        logger.info(f"Generated attribution report: {len(rows)} images")
        return path
