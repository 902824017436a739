from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from schemas.contract import METADATA_VERSION, METADATA_VERSION_V13, SUPPORTED_LANGS
from services.config_service import CanonConfig, load_canon_config
from storage.fs_store import RepoStore
from storage.repo_loader import STORIES_DIR

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".v12.bak"


def _pick(value: Any, lang: str) -> str:
    if isinstance(value, str):
        return value
    if not isinstance(value, dict):
        return ""
    for key in (lang, "ko", "en"):
        if isinstance(value.get(key), str):
            return value[key]
    return ""


def migrate_v1_2_to_v1_3(raw: dict[str, Any], lang: str) -> dict[str, Any]:
    """Flatten bilingual title/synopsis to ``lang`` and stamp 1.3. Other fields pass through."""
    out = dict(raw)
    out["schema_version"] = METADATA_VERSION_V13
    out["lang"] = lang
    out["title"] = _pick(raw.get("title"), lang)
    out["synopsis"] = _pick(raw.get("synopsis"), lang)
    return out


@dataclass
class MigrationResult:
    lang: str
    applied: bool
    migrated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "lang": self.lang,
            "applied": self.applied,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class MigrationService:
    def run(
        self,
        repo: RepoStore,
        lang: str | None = None,
        *,
        apply: bool = False,
        config: CanonConfig | None = None,
    ) -> MigrationResult:
        if not repo.safe_path(STORIES_DIR).is_dir():
            raise FileNotFoundError("stories/ directory not found")
        if lang is None:
            lang = (config or load_canon_config(repo)).default_lang
        if lang not in SUPPORTED_LANGS:
            raise ValueError(f"lang must be one of: {', '.join(SUPPORTED_LANGS)}")

        result = MigrationResult(lang=lang, applied=apply)
        with repo.write_lock():
            for slug in repo.list_subdirs(STORIES_DIR):
                rel = f"{STORIES_DIR}/{slug}/metadata.json"
                if not repo.exists(rel):
                    continue
                try:
                    raw = repo.read_json(rel)
                except json.JSONDecodeError:
                    result.errors[slug] = "malformed JSON"
                    continue
                version = raw.get("schema_version") if isinstance(raw, dict) else None
                if version == METADATA_VERSION_V13:
                    result.skipped.append(slug)
                    continue
                if version != METADATA_VERSION:
                    result.errors[slug] = f'unsupported schema_version "{version}" (only v1.2 to v1.3 supported)'
                    continue

                if apply:
                    repo.copy_file(rel, rel + BACKUP_SUFFIX)
                    repo.write_json(rel, migrate_v1_2_to_v1_3(raw, lang))
                    logger.info("migrated %s to v1.3 (lang=%s)", slug, lang)
                result.migrated.append(slug)

        logger.info(
            "%d migrated, %d skipped, %d errors%s",
            len(result.migrated), len(result.skipped), len(result.errors), "" if apply else " (dry run)",
        )
        return result
