"""Canon compliance checks.

Pure functions, no I/O. Every check returns a ``CheckResult``; data-shape
problems inside an already version-gated document are reported as failing
checks and never raised.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Set
from datetime import datetime, timezone
from typing import Any, Callable

from schemas.contract import (
    CHECK_IDS,
    CHECK_IDS_V13,
    METADATA_VERSION,
    METADATA_VERSION_V13,
    REPORT_VERSION,
    REPORT_VERSION_V3,
    SUPPORTED_LANGS,
    ParsedMetadata,
)
from schemas.models import CheckResult, RepoCheckReport, RepoModel, ReportSummary, StoryCheckReport
from services.sanitize_service import has_excessive_combining, has_prohibited_codepoints

REQUIRED_FIELDS = (
    "schema_version",
    "canon_ref",
    "id",
    "episode",
    "title",
    "timeline",
    "synopsis",
    "characters",
    "locations",
    "contributor",
    "canon_status",
)
REQUIRED_FIELDS_V13 = REQUIRED_FIELDS + ("lang",)

CANON_STATUSES = ("canonical", "non-canonical")
CANON_STATUSES_V13 = CANON_STATUSES + ("derivative",)

TIMELINE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
# GitHub-style handle: 1-39 chars, no leading or trailing hyphen
HANDLE_RE = re.compile(r"[A-Za-z0-9_](?:[A-Za-z0-9_-]{0,37}[A-Za-z0-9_])?")

SKIPPED_MESSAGE = "skipped: metadata schema invalid"


def _check(check_id: str, passed: bool, message: str | None = None) -> CheckResult:
    return CheckResult(check_id, passed, None if passed else message)


def _is_finite_number(value: Any) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    # ints beyond float range read as Infinity
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _is_bilingual(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("ko"), str) and isinstance(value.get("en"), str)


def _common_field_errors(meta: dict[str, Any]) -> str | None:
    if not _is_finite_number(meta["episode"]):
        return "episode must be a finite number"
    for key in ("characters", "locations"):
        value = meta[key]
        if not isinstance(value, list):
            return f"{key} must be an array"
        if not all(isinstance(x, str) for x in value):
            return f"{key} array must contain only strings"
    for key in ("canon_ref", "id", "contributor", "timeline"):
        if not isinstance(meta[key], str):
            return f"{key} must be a string"
    return None


def _slug_error(meta: dict[str, Any], slug: str | None) -> str | None:
    if slug is not None and meta["id"] != slug:
        return f'metadata.id "{meta["id"]}" does not match directory slug "{slug}"'
    return None


def check_metadata_schema(meta: dict[str, Any], slug: str | None = None) -> CheckResult:
    missing = [f for f in REQUIRED_FIELDS if f not in meta]
    if missing:
        return _check("metadata_schema_valid", False, f"Missing fields: {', '.join(missing)}")
    if meta["schema_version"] != METADATA_VERSION:
        return _check("metadata_schema_valid", False, f'Expected schema_version "{METADATA_VERSION}", got "{meta["schema_version"]}"')
    for key in ("title", "synopsis"):
        if not _is_bilingual(meta[key]):
            return _check("metadata_schema_valid", False, f"{key} must be an object with string ko and en fields")
    error = _common_field_errors(meta)
    if error:
        return _check("metadata_schema_valid", False, error)
    if meta["canon_status"] not in CANON_STATUSES:
        return _check("metadata_schema_valid", False, 'canon_status must be "canonical" or "non-canonical"')
    error = _slug_error(meta, slug)
    return _check("metadata_schema_valid", error is None, error)


def check_metadata_schema_v1_3(meta: dict[str, Any], slug: str | None = None) -> CheckResult:
    missing = [f for f in REQUIRED_FIELDS_V13 if f not in meta]
    if missing:
        return _check("metadata_schema_valid", False, f"Missing fields: {', '.join(missing)}")
    if meta["schema_version"] != METADATA_VERSION_V13:
        return _check("metadata_schema_valid", False, f'Expected schema_version "{METADATA_VERSION_V13}", got "{meta["schema_version"]}"')
    for key in ("title", "synopsis"):
        if not isinstance(meta[key], str):
            return _check("metadata_schema_valid", False, f"{key} must be a string")
    if meta["lang"] not in SUPPORTED_LANGS:
        return _check("metadata_schema_valid", False, f"lang must be one of: {', '.join(SUPPORTED_LANGS)}")
    error = _common_field_errors(meta)
    if error:
        return _check("metadata_schema_valid", False, error)
    if meta["canon_status"] not in CANON_STATUSES_V13:
        return _check("metadata_schema_valid", False, 'canon_status must be "canonical", "non-canonical" or "derivative"')
    derived_from = meta.get("derived_from")
    if derived_from is not None and not isinstance(derived_from, str):
        return _check("metadata_schema_valid", False, "derived_from must be a string")
    for key in ("title", "synopsis"):
        if has_excessive_combining(meta[key]):
            return _check("metadata_schema_valid", False, f"{key} contains excessive combining marks")
        if has_prohibited_codepoints(meta[key]):
            return _check("metadata_schema_valid", False, f"{key} contains prohibited Unicode codepoints")
    error = _slug_error(meta, slug)
    return _check("metadata_schema_valid", error is None, error)


def check_characters(meta: dict[str, Any], known_characters: Set[str]) -> CheckResult:
    missing = [str(c) for c in meta.get("characters") or [] if not isinstance(c, str) or c not in known_characters]
    return _check("characters_valid", not missing, f"Unknown characters: {', '.join(missing)}")


def check_locations(meta: dict[str, Any], known_locations: Set[str]) -> CheckResult:
    missing = [str(loc) for loc in meta.get("locations") or [] if not isinstance(loc, str) or loc not in known_locations]
    return _check("locations_valid", not missing, f"Unknown locations: {', '.join(missing)}")


def check_timeline(meta: dict[str, Any]) -> CheckResult:
    timeline = meta.get("timeline")
    message = f'Invalid timeline date: "{timeline}"'
    if not isinstance(timeline, str) or not TIMELINE_RE.fullmatch(timeline):
        return _check("timeline_consistent", False, message)
    y, m, d = (int(part) for part in timeline.split("-"))
    try:
        round_trip = datetime(y, m, d, tzinfo=timezone.utc).date().isoformat()
    except ValueError:
        return _check("timeline_consistent", False, message)
    return _check("timeline_consistent", round_trip == timeline, message)


def _episode_ref_error(label: str, value: Any, known_episodes: Set[str]) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or value not in known_episodes:
        return f'{label} "{value}" not found'
    return None


def check_continuity(meta: dict[str, Any], known_episodes: Set[str]) -> CheckResult:
    tc = meta.get("temporal_context")
    if tc is None:
        return _check("continuity_valid", True)
    if not isinstance(tc, dict):
        return _check("continuity_valid", False, "temporal_context must be an object")

    broken: list[str] = []
    for key in ("prev_episode", "next_episode"):
        error = _episode_ref_error(key, tc.get(key), known_episodes)
        if error:
            broken.append(error)
    echoes = tc.get("thematic_echoes")
    if echoes is not None:
        if not isinstance(echoes, list):
            broken.append("thematic_echoes must be an array")
        else:
            for echo in echoes:
                error = _episode_ref_error("thematic_echo", echo, known_episodes)
                if error:
                    broken.append(error)
    return _check("continuity_valid", not broken, "; ".join(broken))


def check_canon_version(meta: dict[str, Any], canon_lock: dict[str, Any] | None) -> CheckResult:
    if canon_lock is None:
        return _check("canon_version_match", False, "canon.lock.json not found")
    canon_ref = meta.get("canon_ref")
    commit = canon_lock.get("canon_commit")
    return _check("canon_version_match", canon_ref == commit, f'canon_ref "{canon_ref}" does not match lock "{commit}"')


def check_contributor(meta: dict[str, Any]) -> CheckResult:
    contributor = meta.get("contributor")
    if not isinstance(contributor, str) or not contributor.strip():
        return _check("contributor_valid", False, "contributor must be a non-empty string")
    return _check(
        "contributor_valid",
        HANDLE_RE.fullmatch(contributor) is not None,
        f'contributor "{contributor}" is not a valid handle (1-39 letters, digits, "_" or "-", no leading or trailing "-")',
    )


def check_derived_from(meta: dict[str, Any], known_episodes: Set[str]) -> CheckResult:
    status = meta.get("canon_status")
    derived_from = meta.get("derived_from")
    is_set = derived_from not in (None, "")
    if status == "derivative" and not is_set:
        return _check("derived_from_valid", False, 'canon_status "derivative" requires derived_from')
    if status != "derivative" and is_set:
        return _check("derived_from_valid", False, 'derived_from should only be set when canon_status is "derivative"')
    if is_set and (not isinstance(derived_from, str) or derived_from not in known_episodes):
        return _check("derived_from_valid", False, f'derived_from "{derived_from}" not found')
    return _check("derived_from_valid", True)


def _story_report(story_id: str, check_ids: tuple[str, ...], schema: CheckResult, rest: Callable[[], list[CheckResult]]) -> StoryCheckReport:
    if schema.passed:
        checks = [schema, *rest()]
    else:
        checks = [schema] + [CheckResult(cid, False, SKIPPED_MESSAGE) for cid in check_ids[1:]]
    return StoryCheckReport(story_id=story_id, checks=checks, all_pass=all(c.passed for c in checks))


def _story_id(meta: dict[str, Any], slug: str | None) -> str:
    if slug is not None:
        return slug
    return str(meta.get("id", ""))


def validate_story(
    meta: dict[str, Any],
    *,
    known_characters: Set[str],
    known_locations: Set[str],
    known_episodes: Set[str],
    canon_lock: dict[str, Any] | None,
    slug: str | None = None,
) -> StoryCheckReport:
    return _story_report(
        _story_id(meta, slug),
        CHECK_IDS,
        check_metadata_schema(meta, slug),
        lambda: [
            check_characters(meta, known_characters),
            check_locations(meta, known_locations),
            check_timeline(meta),
            check_continuity(meta, known_episodes),
            check_canon_version(meta, canon_lock),
            check_contributor(meta),
        ],
    )


def validate_story_v1_3(
    meta: dict[str, Any],
    *,
    known_characters: Set[str],
    known_locations: Set[str],
    known_episodes: Set[str],
    canon_lock: dict[str, Any] | None,
    slug: str | None = None,
) -> StoryCheckReport:
    return _story_report(
        _story_id(meta, slug),
        CHECK_IDS_V13,
        check_metadata_schema_v1_3(meta, slug),
        lambda: [
            check_characters(meta, known_characters),
            check_locations(meta, known_locations),
            check_timeline(meta),
            check_continuity(meta, known_episodes),
            check_canon_version(meta, canon_lock),
            check_contributor(meta),
            check_derived_from(meta, known_episodes),
        ],
    )


def _aggregate(schema_version: str, stories: list[StoryCheckReport]) -> RepoCheckReport:
    total_stories = len(stories)
    passing_stories = sum(1 for s in stories if s.all_pass)
    total_checks = sum(len(s.checks) for s in stories)
    passing_checks = sum(1 for s in stories for c in s.checks if c.passed)
    return RepoCheckReport(
        schema_version=schema_version,
        summary=ReportSummary(
            score=passing_stories / total_stories if total_stories else 0,
            total_checks=total_checks,
            passing_checks=passing_checks,
        ),
        stories=stories,
        total_stories=total_stories,
        passing_stories=passing_stories,
    )


def _context(model: RepoModel) -> dict[str, Any]:
    return {
        "known_characters": model.characters,
        "known_locations": model.locations,
        "known_episodes": model.episodes,
        "canon_lock": model.canon_lock,
    }


def validate_repo(model: RepoModel) -> RepoCheckReport:
    ctx = _context(model)
    stories = [validate_story(parsed.raw, slug=slug, **ctx) for slug, parsed in model.stories.items()]
    return _aggregate(REPORT_VERSION, stories)


def _validate_parsed(parsed: ParsedMetadata, slug: str, ctx: dict[str, Any]) -> StoryCheckReport:
    if parsed.version == METADATA_VERSION:
        return validate_story(parsed.raw, slug=slug, **ctx)
    if parsed.version == METADATA_VERSION_V13:
        return validate_story_v1_3(parsed.raw, slug=slug, **ctx)
    raise AssertionError(f"unhandled metadata version: {parsed.version}")


def validate_repo_any(model: RepoModel) -> RepoCheckReport:
    ctx = _context(model)
    stories = [_validate_parsed(parsed, slug, ctx) for slug, parsed in model.stories.items()]
    return _aggregate(REPORT_VERSION_V3, stories)


def failing_checks(report: RepoCheckReport, ignore: Iterable[str] = ()) -> dict[str, list[str]]:
    ignored = set(ignore)
    out: dict[str, list[str]] = {}
    for story in report.stories:
        failed = [c.id for c in story.checks if not c.passed and c.id not in ignored]
        if failed:
            out[story.story_id] = failed
    return out
