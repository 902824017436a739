from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

METADATA_VERSION = "1.2"
METADATA_VERSION_V13 = "1.3"
LOCK_VERSION = "canon.lock.v2"
HASH_ALGO = "sha256"
REPORT_VERSION = "check.v2"
REPORT_VERSION_V3 = "check.v3"
CONFIG_VERSION = "canonrc.v1"

CHECK_IDS: tuple[str, ...] = (
    "metadata_schema_valid",
    "characters_valid",
    "locations_valid",
    "timeline_consistent",
    "continuity_valid",
    "canon_version_match",
    "contributor_valid",
)
CHECK_IDS_V13: tuple[str, ...] = CHECK_IDS + ("derived_from_valid",)

SUPPORTED_LANGS = ("ko", "en")

MetadataVersion = Literal["1.2", "1.3"]


class SchemaVersionError(Exception):
    """A document declares an unexpected (or no) schema version.

    ``actual`` is the raw value found, or ``None`` when the field is absent
    or the input is not a JSON object at all.
    """

    def __init__(self, expected: str, actual: Any = None) -> None:
        super().__init__(f'Expected schema version "{expected}", got {_describe(actual)}')
        self.expected = expected
        self.actual = actual


def _describe(value: Any) -> str:
    if value is None:
        return "undefined"
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return repr(value)


@dataclass(frozen=True)
class ParsedMetadata:
    version: MetadataVersion
    meta: dict[str, Any]
    raw: dict[str, Any]


def _gate(raw: Any, key: str, expected: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise SchemaVersionError(expected, None)
    if raw.get(key) != expected:
        raise SchemaVersionError(expected, raw.get(key))
    return raw


def parse_metadata(raw: Any) -> ParsedMetadata:
    obj = _gate(raw, "schema_version", METADATA_VERSION)
    return ParsedMetadata(METADATA_VERSION, obj, obj)


def parse_metadata_v1_3(raw: Any) -> ParsedMetadata:
    obj = _gate(raw, "schema_version", METADATA_VERSION_V13)
    return ParsedMetadata(METADATA_VERSION_V13, obj, obj)


def parse_metadata_any(raw: Any) -> ParsedMetadata:
    expected = f"{METADATA_VERSION} or {METADATA_VERSION_V13}"
    if not isinstance(raw, dict):
        raise SchemaVersionError(expected, None)
    version = raw.get("schema_version")
    if version == METADATA_VERSION:
        return parse_metadata(raw)
    if version == METADATA_VERSION_V13:
        return parse_metadata_v1_3(raw)
    raise SchemaVersionError(expected, version)


def parse_canon_lock(raw: Any) -> dict[str, Any]:
    return _gate(raw, "schema_version", LOCK_VERSION)


# Reports use camelCase "schemaVersion", unlike metadata and lock documents.
def assert_report_version(report: Any) -> None:
    _gate(report, "schemaVersion", REPORT_VERSION)


def assert_report_version_v3(report: Any) -> None:
    _gate(report, "schemaVersion", REPORT_VERSION_V3)
