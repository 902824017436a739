from pathlib import Path
import json
import sys

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from services.config_service import CanonConfig
from services.migrate_service import MigrationService, migrate_v1_2_to_v1_3
from services.validate_service import validate_repo_any
from storage.fs_store import RepoStore
from storage.repo_loader import load_repo_any

from canon_fixtures import lock_doc, make_canon_repo, story_v12, story_v13, write_json


def read_meta(root: Path, slug: str) -> dict:
    return json.loads((root / "stories" / slug / "metadata.json").read_text(encoding="utf-8"))


def test_migrate_document_picks_language_and_keeps_fields():
    raw = story_v12(word_count={"ko": 1200, "en": 800}, themes=["loss"])
    out = migrate_v1_2_to_v1_3(raw, "en")
    assert out["schema_version"] == "1.3"
    assert out["lang"] == "en"
    assert out["title"] == "The First Story"
    assert out["synopsis"] == "A beginning"
    assert out["word_count"] == {"ko": 1200, "en": 800}
    assert out["themes"] == ["loss"]
    assert raw["schema_version"] == "1.2"


def test_migrate_document_language_fallback():
    out = migrate_v1_2_to_v1_3(story_v12(title={"en": "Only English"}, synopsis=None), "ko")
    assert out["title"] == "Only English"
    assert out["synopsis"] == ""


def test_dry_run_writes_nothing(tmp_path: Path):
    root = make_canon_repo(tmp_path, {"ep01": story_v12("ep01")})
    before = (root / "stories" / "ep01" / "metadata.json").read_bytes()
    result = MigrationService().run(RepoStore(root), "ko")
    assert result.migrated == ["ep01"]
    assert not result.applied
    assert (root / "stories" / "ep01" / "metadata.json").read_bytes() == before
    assert not (root / "stories" / "ep01" / "metadata.json.v12.bak").exists()


def test_apply_backs_up_and_rewrites(tmp_path: Path):
    root = make_canon_repo(tmp_path, {"ep01": story_v12("ep01"), "ep02": story_v13("ep02")}, lock=lock_doc())
    original = (root / "stories" / "ep01" / "metadata.json").read_bytes()

    result = MigrationService().run(RepoStore(root), "ko", apply=True)
    assert result.migrated == ["ep01"]
    assert result.skipped == ["ep02"]
    assert result.ok
    assert (root / "stories" / "ep01" / "metadata.json.v12.bak").read_bytes() == original
    assert read_meta(root, "ep01")["title"] == "첫 번째 이야기"

    report = validate_repo_any(load_repo_any(RepoStore(root)))
    assert report.passing_stories == 2

    again = MigrationService().run(RepoStore(root), "ko", apply=True)
    assert again.migrated == []
    assert again.skipped == ["ep01", "ep02"]


def test_errors_for_malformed_and_unknown_versions(tmp_path: Path):
    root = make_canon_repo(tmp_path, {"ep01": story_v12("ep01"), "ep02": {"schema_version": "1.0"}})
    (root / "stories" / "ep03").mkdir()
    (root / "stories" / "ep03" / "metadata.json").write_text("{oops", encoding="utf-8")

    result = MigrationService().run(RepoStore(root), "ko")
    assert result.migrated == ["ep01"]
    assert set(result.errors) == {"ep02", "ep03"}
    assert result.errors["ep03"] == "malformed JSON"
    assert not result.ok


def test_lang_from_config(tmp_path: Path):
    root = make_canon_repo(tmp_path, {"ep01": story_v12("ep01")})
    write_json(root / ".canonrc.json", {"schema_version": "canonrc.v1", "default_lang": "en"})
    assert MigrationService().run(RepoStore(root)).lang == "en"
    assert MigrationService().run(RepoStore(root), config=CanonConfig(default_lang="ko")).lang == "ko"


def test_unsupported_lang_and_missing_stories(tmp_path: Path):
    root = make_canon_repo(tmp_path / "repo")
    with pytest.raises(ValueError):
        MigrationService().run(RepoStore(root), "fr")
    with pytest.raises(FileNotFoundError):
        MigrationService().run(RepoStore(tmp_path / "empty"), "ko")
