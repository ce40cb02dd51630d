"""Tests for mapping tables and value parsers."""

from __future__ import annotations

import pytest

from CameraVault.CatalogSync.mappings import (
    DEFAULT_MAPPING,
    MappingTable,
    canonical_category,
    canonical_sensor_size,
    get_mapping,
    lookup_path,
    parse_framerate,
    parse_megapixels,
    parse_price,
    parse_resolution,
    parse_year,
    register_mapping,
)


class TestRegistry:
    def test_builtin_tables_registered(self):
        assert get_mapping("default") is DEFAULT_MAPPING
        assert get_mapping("cmv").trust_source_id

    def test_unknown_table_raises_key_error(self):
        with pytest.raises(KeyError, match="Unknown mapping table"):
            get_mapping("does-not-exist")

    def test_duplicate_registration_rejected(self):
        with pytest.raises(ValueError):
            register_mapping(MappingTable(name="default", aliases={}))

    def test_pick_skips_blank_values(self):
        raw = {"brand": "  ", "manufacturer": "Leica"}
        assert DEFAULT_MAPPING.pick(raw, "brand") == "Leica"

    def test_pick_follows_dotted_aliases(self):
        raw = {"price": {"msrp": "$2,499"}}
        assert DEFAULT_MAPPING.pick(raw, "msrp") == "$2,499"

    def test_lookup_path_missing(self):
        assert lookup_path({"a": {"b": 1}}, "a.c") is None
        assert lookup_path({"a": 3}, "a.b") is None


@pytest.mark.parametrize(
    "value,expected",
    [
        (2020, 2020),
        ("2020", 2020),
        ("Announced March 2018", 2018),
        (2021.0, 2021),
        (None, None),
        ("", None),
    ],
)
def test_parse_year(value, expected):
    assert parse_year(value) == expected


@pytest.mark.parametrize("value", ["soon", 1850, 2500, True, 2020.5])
def test_parse_year_rejects(value):
    with pytest.raises(ValueError):
        parse_year(value)


def test_parse_price():
    assert parse_price("$3,899.00") == 3899.0
    assert parse_price("USD 1299") == 1299.0
    assert parse_price(2499) == 2499.0
    assert parse_price(-1) is None
    assert parse_price("TBA") is None


def test_parse_megapixels():
    assert parse_megapixels("45MP Full-Frame CMOS") == 45.0
    assert parse_megapixels("24.2 megapixels") == 24.2
    assert parse_megapixels(61) == 61.0
    assert parse_megapixels("Full Frame") is None


def test_parse_framerate_picks_highest_and_ignores_line_counts():
    assert parse_framerate("4K 60p, 1080p 120fps") == 120.0
    assert parse_framerate("1080p") is None
    assert parse_framerate(30) == 30.0


@pytest.mark.parametrize(
    "value,expected",
    [
        ("8K RAW", "8K"),
        ("4K 120p", "4K"),
        ("6.2K", "6.2K"),
        ("3840x2160", "4K"),
        ("1080p", "1080p"),
        ("N/A", None),
        (None, None),
    ],
)
def test_parse_resolution(value, expected):
    assert parse_resolution(value) == expected


def test_canonical_sensor_size():
    assert canonical_sensor_size("45MP Full-Frame CMOS") == "Full Frame"
    assert canonical_sensor_size("APS-C X-Trans") == "APS-C"
    assert canonical_sensor_size("Super35") == "Super 35"
    assert canonical_sensor_size("Micro Four Thirds") == "Micro Four Thirds"
    assert canonical_sensor_size("mystery") is None


def test_canonical_category():
    assert canonical_category("Mirrorless") == "mirrorless"
    assert canonical_category("SLR") == "dslr"
    assert canonical_category("Medium Format") == "medium-format"
    assert canonical_category("Action Cam") == "action-cam"
    assert canonical_category(None) is None
