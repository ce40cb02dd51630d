# === NAVMAP v1 ===
# {
#   "module": "CameraVault.CatalogSync.normalizer",
#   "purpose": "Canonicalise raw source records into CameraRecord values and dedup keys.",
#   "sections": [
#     {"id": "skippedrecord", "name": "SkippedRecord", "anchor": "class-skippedrecord", "kind": "class"},
#     {"id": "make-camera-id", "name": "make_camera_id", "anchor": "function-make-camera-id", "kind": "function"},
#     {"id": "normalizer", "name": "Normalizer", "anchor": "class-normalizer", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Canonicalise raw source records.

The normaliser is pure: it reads one raw dictionary plus the source's
configuration and returns either a :class:`CameraRecord` or a
:class:`SkippedRecord` explaining why the record was rejected. All
source-specific knowledge comes from the mapping table named by the source.

The dedup key depends only on brand, model and release year, so optional
fields never split one logical camera into two rows.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from CameraVault.CatalogSync.catalog.models import CameraRecord, CameraStatus, ImageAttribution
from CameraVault.CatalogSync.config.models import SourceConfig
from CameraVault.CatalogSync.mappings import (
    MappingTable,
    canonical_category,
    canonical_sensor_size,
    get_mapping,
    parse_framerate,
    parse_megapixels,
    parse_price,
    parse_resolution,
    parse_year,
)

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class SkippedRecord:
    """A raw record the normaliser rejected, with the reason."""

    source: str
    reason: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


NormalizeOutcome = Union[CameraRecord, SkippedRecord]


def slugify(text: str) -> str:
    """Lowercase ``text`` and collapse runs of non-alphanumerics into ``-``."""
    return _SLUG_RE.sub("-", text.lower()).strip("-")


def make_camera_id(brand: str, model: str, release_year: Optional[int] = None) -> str:
    """Derive the dedup key for a camera.

    >>> make_camera_id("Canon", "EOS R5", 2020)
    'canon-eos-r5-2020'
    >>> make_camera_id("Sony", "A7 IV")
    'sony-a7-iv'
    """
    slug = slugify(f"{brand} {model}")
    if release_year is not None:
        slug = f"{slug}-{release_year}"
    return slug


def _clean_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = " ".join(str(value).split())
    return text or None


def _strip_brand(brand: str, model: str) -> str:
    """Drop a leading brand repeated inside the model name ("Canon Canon EOS R5")."""
    if model.lower().startswith(brand.lower() + " "):
        return model[len(brand) + 1 :].strip()
    return model


class Normalizer:
    """Turn raw source dictionaries into canonical camera records."""

    def normalize(self, raw: Dict[str, Any], source: SourceConfig) -> NormalizeOutcome:
        table = get_mapping(source.mapping)

        brand = _clean_text(table.pick(raw, "brand"))
        if not brand:
            return SkippedRecord(source=source.name, reason="missing brand", raw=raw)
        model = _clean_text(table.pick(raw, "model"))
        if not model:
            return SkippedRecord(source=source.name, reason="missing model", raw=raw)
        model = _strip_brand(brand, model)
        if not slugify(f"{brand} {model}"):
            return SkippedRecord(
                source=source.name, reason="brand/model have no identifier characters", raw=raw
            )

        try:
            release_year = parse_year(table.pick(raw, "release_year"))
        except ValueError as e:
            return SkippedRecord(source=source.name, reason=f"invalid releaseYear: {e}", raw=raw)

        camera_id = self._camera_id(raw, table, brand, model, release_year)

        sensor_raw = table.pick(raw, "sensor")
        specs = self._specs(raw, table, sensor_raw)

        return CameraRecord(
            id=camera_id,
            brand=brand,
            model=model,
            full_name=_clean_text(table.pick(raw, "full_name")) or f"{brand} {model}",
            status=CameraStatus(source.trust),
            category=canonical_category(table.pick(raw, "category"), table),
            release_year=release_year,
            msrp=parse_price(table.pick(raw, "msrp")),
            current_price=parse_price(table.pick(raw, "current_price")),
            sensor=self._sensor_text(sensor_raw),
            processor=_clean_text(table.pick(raw, "processor")),
            mount=_clean_text(table.pick(raw, "mount")),
            manual_url=_clean_text(table.pick(raw, "manual_url")),
            description=_clean_text(table.pick(raw, "description")),
            key_features=self._key_features(table.pick(raw, "key_features")),
            specs=specs or None,
            image_url=_clean_text(table.pick(raw, "image_url")),
            image_attribution=self._attribution(raw, table),
        )

    def normalize_many(
        self, raws: Iterable[Dict[str, Any]], source: SourceConfig
    ) -> Iterator[NormalizeOutcome]:
        """Normalise ``raws`` lazily, preserving order."""
        for raw in raws:
            yield self.normalize(raw, source)

    @staticmethod
    def _camera_id(
        raw: Dict[str, Any],
        table: MappingTable,
        brand: str,
        model: str,
        release_year: Optional[int],
    ) -> str:
        if table.trust_source_id:
            source_id = _clean_text(raw.get(table.id_field))
            if source_id and slugify(source_id):
                return slugify(source_id)
        return make_camera_id(brand, model, release_year)

    @staticmethod
    def _sensor_text(sensor_raw: Any) -> Optional[str]:
        if isinstance(sensor_raw, dict):
            parts = []
            megapixels = parse_megapixels(sensor_raw.get("megapixels"))
            if megapixels:
                parts.append(f"{megapixels:g}MP")
            for key in ("size", "type"):
                text = _clean_text(sensor_raw.get(key))
                if text:
                    parts.append(text)
            return " ".join(parts) or None
        return _clean_text(sensor_raw)

    @staticmethod
    def _specs(raw: Dict[str, Any], table: MappingTable, sensor_raw: Any) -> Dict[str, Any]:
        specs: Dict[str, Any] = {}
        provided = table.pick(raw, "specs")
        if isinstance(provided, dict):
            specs.update(provided)

        features = table.pick(raw, "features")
        if isinstance(features, dict):
            specs.update({k: v for k, v in features.items() if v is not None})

        if isinstance(sensor_raw, dict):
            size = canonical_sensor_size(sensor_raw.get("size"), table)
            megapixels = parse_megapixels(sensor_raw.get("megapixels"))
        else:
            size = canonical_sensor_size(sensor_raw, table)
            megapixels = parse_megapixels(sensor_raw)
        if size and "sensorSize" not in specs:
            specs["sensorSize"] = size
        elif "sensorSize" in specs:
            specs["sensorSize"] = canonical_sensor_size(specs["sensorSize"], table) or specs["sensorSize"]
        if megapixels and "megapixels" not in specs:
            specs["megapixels"] = megapixels

        video = table.pick(raw, "video")
        if isinstance(video, dict):
            resolution = parse_resolution(video.get("maxResolution") or video.get("resolution"))
            framerate = parse_framerate(video.get("maxFrameRate") or video.get("framerate"))
        else:
            resolution = parse_resolution(video)
            framerate = parse_framerate(video)
        if resolution and "videoResolution" not in specs:
            specs["videoResolution"] = resolution
        if framerate and "maxFrameRate" not in specs:
            specs["maxFrameRate"] = framerate
        return specs

    @staticmethod
    def _key_features(value: Any) -> Optional[List[str]]:
        if not isinstance(value, list):
            return None
        features = [text for text in (_clean_text(item) for item in value) if text]
        return features or None

    @staticmethod
    def _attribution(raw: Dict[str, Any], table: MappingTable) -> Optional[ImageAttribution]:
        provided = table.pick(raw, "image_attribution")
        if isinstance(provided, dict):
            return ImageAttribution.from_mapping(provided)
        image_source = _clean_text(table.pick(raw, "image_source"))
        if image_source:
            return ImageAttribution(source=image_source)
        return None
