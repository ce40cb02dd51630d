# === NAVMAP v1 ===
# {
#   "module": "CameraVault.CatalogSync.mappings",
#   "purpose": "Table-driven field aliases, vocabularies and value parsers for source records.",
#   "sections": [
#     {"id": "mappingtable", "name": "MappingTable", "anchor": "class-mappingtable", "kind": "class"},
#     {"id": "register-mapping", "name": "register_mapping", "anchor": "function-register-mapping", "kind": "function"},
#     {"id": "get-mapping", "name": "get_mapping", "anchor": "function-get-mapping", "kind": "function"},
#     {"id": "parse-year", "name": "parse_year", "anchor": "function-parse-year", "kind": "function"},
#     {"id": "parse-price", "name": "parse_price", "anchor": "function-parse-price", "kind": "function"},
#     {"id": "parse-framerate", "name": "parse_framerate", "anchor": "function-parse-framerate", "kind": "function"},
#     {"id": "parse-resolution", "name": "parse_resolution", "anchor": "function-parse-resolution", "kind": "function"},
#     {"id": "canonical-sensor-size", "name": "canonical_sensor_size", "anchor": "function-canonical-sensor-size", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Field mapping tables and value parsers used by the normalizer.

Sources disagree on key names (``brand`` vs ``manufacturer``), nesting
(``price.msrp``) and free-text formats (``"$3,899"``, ``"120fps"``,
``"Full-Frame"``). Everything source specific lives in a :class:`MappingTable`
registered by name; a source selects its table through ``SourceConfig.mapping``.
Supporting a new source shape means registering a new table, not adding
branches to the normalizer.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

__all__ = [
    "MappingTable",
    "DEFAULT_MAPPING",
    "CMV_MAPPING",
    "register_mapping",
    "get_mapping",
    "lookup_path",
    "parse_year",
    "parse_price",
    "parse_megapixels",
    "parse_framerate",
    "parse_resolution",
    "canonical_sensor_size",
    "canonical_category",
]

MIN_RELEASE_YEAR = 1900
MAX_RELEASE_YEAR = 2100

# Longest variants are matched first so "35mm full frame" wins over "35mm".
SENSOR_SIZE_VOCABULARY: Dict[str, str] = {
    "full frame": "Full Frame",
    "full-frame": "Full Frame",
    "fullframe": "Full Frame",
    "35mm full frame": "Full Frame",
    "ff": "Full Frame",
    "medium format": "Medium Format",
    "medium-format": "Medium Format",
    "aps-c": "APS-C",
    "apsc": "APS-C",
    "aps-h": "APS-H",
    "super 35": "Super 35",
    "super35": "Super 35",
    "s35": "Super 35",
    "micro four thirds": "Micro Four Thirds",
    "micro 4/3": "Micro Four Thirds",
    "m4/3": "Micro Four Thirds",
    "mft": "Micro Four Thirds",
    "four thirds": "Four Thirds",
    "1-inch": "1-inch",
    "1 inch": "1-inch",
    '1"': "1-inch",
    "35mm": "35mm",
}

CATEGORY_VOCABULARY: Dict[str, str] = {
    "mirrorless": "mirrorless",
    "milc": "mirrorless",
    "dslr": "dslr",
    "slr": "dslr",
    "medium format": "medium-format",
    "medium-format": "medium-format",
    "cinema": "cinema",
    "cine": "cinema",
    "film": "film",
    "compact": "compact",
    "point-and-shoot": "compact",
    "action": "action",
}

_RESOLUTION_LABELS = (
    (4320, "8K"),
    (2880, "6K"),
    (2160, "4K"),
    (1440, "1440p"),
    (1080, "1080p"),
    (720, "720p"),
)


@dataclass(frozen=True)
class MappingTable:
    """Alias table translating one source shape into canonical fields.

    Attributes:
        name: Registry key referenced by ``SourceConfig.mapping``
        aliases: Canonical field name -> candidate source keys, tried in order.
            Dotted keys address nested objects (``"price.msrp"``).
        trust_source_id: Use the source's own id instead of the derived slug
        id_field: Source key holding that id
        sensor_sizes: Free-text sensor size -> canonical label
        categories: Free-text category -> canonical category
    """

    name: str
    aliases: Mapping[str, Tuple[str, ...]]
    trust_source_id: bool = False
    id_field: str = "id"
    sensor_sizes: Mapping[str, str] = field(default_factory=lambda: dict(SENSOR_SIZE_VOCABULARY))
    categories: Mapping[str, str] = field(default_factory=lambda: dict(CATEGORY_VOCABULARY))

    def pick(self, raw: Mapping[str, Any], canonical: str) -> Any:
        """Return the first non-empty value among the aliases of ``canonical``."""
        for key in self.aliases.get(canonical, ()):
            value = lookup_path(raw, key)
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            return value
        return None


DEFAULT_MAPPING = MappingTable(
    name="default",
    aliases={
        "brand": ("brand", "manufacturer", "make"),
        "model": ("model", "modelName", "model_name"),
        "full_name": ("fullName", "full_name", "displayName", "title"),
        "category": ("category", "type"),
        "release_year": ("releaseYear", "release_year", "year", "announced"),
        "msrp": ("msrp", "launchPrice", "price.msrp"),
        "current_price": ("currentPrice", "current_price", "streetPrice", "price.current"),
        "sensor": ("sensor",),
        "processor": ("processor", "imageProcessor"),
        "mount": ("mount", "lensMount", "lens_mount"),
        "manual_url": ("manualUrl", "manual_url", "manual"),
        "description": ("description", "summary"),
        "key_features": ("keyFeatures", "key_features", "features"),
        "specs": ("specs", "specifications"),
        "features": ("features",),
        "video": ("video",),
        "image_url": ("imageUrl", "image_url", "image"),
        "image_attribution": ("attribution", "imageAttribution", "image_attribution"),
        "image_source": ("imageSource", "image_source"),
    },
)

# Records scraped from the comparison sites carry nested price/sensor/video
# objects and their own stable identifiers.
CMV_MAPPING = MappingTable(
    name="cmv",
    aliases={
        "brand": ("brand", "manufacturer"),
        "model": ("model", "name"),
        "full_name": ("fullName", "name_full"),
        "category": ("category",),
        "release_year": ("releaseYear", "announced", "released"),
        "msrp": ("msrp", "price.msrp", "price.launch"),
        "current_price": ("currentPrice", "price.current", "price.street"),
        "sensor": ("sensor",),
        "processor": ("processor",),
        "mount": ("mount", "lensMount"),
        "manual_url": ("manualUrl",),
        "description": ("description",),
        "key_features": ("keyFeatures",),
        "specs": ("specs",),
        "features": ("features",),
        "video": ("video",),
        "image_url": ("imageUrl", "image.url"),
        "image_attribution": ("attribution", "image.attribution"),
        "image_source": ("imageSource",),
    },
    trust_source_id=True,
    id_field="id",
)

_REGISTRY: Dict[str, MappingTable] = {}
_REGISTRY_LOCK = threading.Lock()


def register_mapping(table: MappingTable, *, replace: bool = False) -> MappingTable:
    """Add ``table`` to the registry under ``table.name``."""
    with _REGISTRY_LOCK:
        if table.name in _REGISTRY and not replace:
            raise ValueError(f"Mapping table '{table.name}' is already registered")
        _REGISTRY[table.name] = table
    return table


def get_mapping(name: str) -> MappingTable:
    """Return the registered table called ``name``.

    Raises:
        KeyError: If no such table exists
    """
    with _REGISTRY_LOCK:
        try:
            return _REGISTRY[name]
        except KeyError:
            raise KeyError(
                f"Unknown mapping table '{name}'. Registered: {sorted(_REGISTRY)}"
            ) from None


register_mapping(DEFAULT_MAPPING)
register_mapping(CMV_MAPPING)


# ============================================================================
# Value parsers
# ============================================================================


def lookup_path(raw: Mapping[str, Any], dotted: str) -> Any:
    """Resolve ``"a.b.c"`` against nested mappings; ``None`` when absent."""
    node: Any = raw
    for part in dotted.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


_YEAR_RE = re.compile(r"\b(\d{4})\b")


def parse_year(value: Any) -> Optional[int]:
    """Parse a release year from ints, numeric strings or dates.

    Returns ``None`` for missing values.

    Raises:
        ValueError: If a value is present but yields no year in 1900..2100
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"not a year: {value!r}")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"not a year: {value!r}")
        year = int(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        match = _YEAR_RE.search(text)
        if not match:
            raise ValueError(f"no year in {text!r}")
        year = int(match.group(1))
    if not MIN_RELEASE_YEAR <= year <= MAX_RELEASE_YEAR:
        raise ValueError(f"year {year} outside {MIN_RELEASE_YEAR}..{MAX_RELEASE_YEAR}")
    return year


_PRICE_RE = re.compile(r"(\d[\d,]*(?:\.\d+)?)")


def parse_price(value: Any) -> Optional[float]:
    """Parse ``3899``, ``"$3,899.00"`` or ``"USD 3899"``; ``None`` if unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None
    match = _PRICE_RE.search(str(value))
    if not match:
        return None
    return float(match.group(1).replace(",", ""))


_MEGAPIXEL_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:mp|megapixels?)\b", re.IGNORECASE)


def parse_megapixels(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    match = _MEGAPIXEL_RE.search(str(value))
    return float(match.group(1)) if match else None


_FRAMERATE_RE = re.compile(r"(?<![\d.])(\d{1,3}(?:\.\d+)?)\s*(?:fps|p)\b", re.IGNORECASE)


def parse_framerate(value: Any) -> Optional[float]:
    """Parse ``120``, ``"120fps"`` or ``"4K 120p"`` into frames per second.

    When several rates appear the highest is returned.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    rates = [float(m) for m in _FRAMERATE_RE.findall(str(value))]
    return max(rates) if rates else None


_K_RE = re.compile(r"\b(\d{1,2}(?:\.\d)?)\s*k\b", re.IGNORECASE)
_LINES_RE = re.compile(r"\b(\d{3,4})\s*[pi]\b", re.IGNORECASE)
_DIMENSIONS_RE = re.compile(r"\b(\d{3,5})\s*[x×]\s*(\d{3,5})\b", re.IGNORECASE)


def parse_resolution(value: Any) -> Optional[str]:
    """Canonical video resolution label (``"8K"``, ``"4K"``, ``"1080p"``)."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.upper() == "N/A":
        return None

    match = _K_RE.search(text)
    if match:
        label = match.group(1)
        return f"{label.rstrip('0').rstrip('.') if '.' in label else label}K"

    match = _DIMENSIONS_RE.search(text)
    if match:
        lines = min(int(match.group(1)), int(match.group(2)))
    else:
        match = _LINES_RE.search(text)
        if not match:
            return None
        lines = int(match.group(1))

    for threshold, label in _RESOLUTION_LABELS:
        if lines >= threshold:
            return label
    return f"{lines}p"


def canonical_sensor_size(value: Any, table: MappingTable = DEFAULT_MAPPING) -> Optional[str]:
    """Map free text such as ``"45MP Full-Frame CMOS"`` onto the sensor vocabulary."""
    if value is None:
        return None
    text = str(value).strip().lower()
    if not text:
        return None
    if text in table.sensor_sizes:
        return table.sensor_sizes[text]
    for variant in sorted(table.sensor_sizes, key=len, reverse=True):
        if re.search(rf"(?<![a-z0-9]){re.escape(variant)}(?![a-z0-9])", text):
            return table.sensor_sizes[variant]
    return None


def canonical_category(value: Any, table: MappingTable = DEFAULT_MAPPING) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).strip().lower().split())
    if not text:
        return None
    return table.categories.get(text, text.replace(" ", "-"))
