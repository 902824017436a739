from pathlib import Path
import contextlib
import hashlib
import json
import shutil
import subprocess
import sys

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import services.lock_service as lock_service
from services.lock_service import (
    CanonDirMissingError,
    CommitUnavailableError,
    ComplianceError,
    LockService,
    collect_canon_files,
    compute_worldbuilding_hash,
    merge_contributors,
    resolve_canon_commit,
    update_story_refs,
)
from storage.fs_store import RepoStore

from canon_fixtures import COMMIT, lock_doc, make_canon_repo, story_v12, story_v13

NEW_COMMIT = "b" * 40


def fixed_service(commit: str = NEW_COMMIT) -> LockService:
    return LockService(commit_resolver=lambda _root: commit, clock=lambda: "2024-05-01T12:00:00.000Z")


def test_hash_matches_nul_framed_sha256(tmp_path: Path):
    canon = tmp_path / "canon"
    (canon / "b").mkdir(parents=True)
    (canon / "a.txt").write_bytes(b"alpha")
    (canon / "b" / "c.txt").write_bytes(b"")

    assert collect_canon_files(canon) == ["a.txt", "b/c.txt"]
    expected = hashlib.sha256(b"a.txt\0alpha\0b/c.txt\0\0").hexdigest()
    assert compute_worldbuilding_hash(canon) == expected


def test_hash_is_deterministic_and_sensitive(tmp_path: Path):
    canon = tmp_path / "canon"
    canon.mkdir()
    (canon / "x.json").write_text("{}", encoding="utf-8")
    first = compute_worldbuilding_hash(canon)
    assert compute_worldbuilding_hash(canon) == first

    (canon / "x.json").write_text("{ }", encoding="utf-8")
    changed_bytes = compute_worldbuilding_hash(canon)
    assert changed_bytes != first

    (canon / "x.json").rename(canon / "y.json")
    assert compute_worldbuilding_hash(canon) != changed_bytes


def test_hash_framing_separates_path_and_content(tmp_path: Path):
    one = tmp_path / "one"
    two = tmp_path / "two"
    one.mkdir()
    two.mkdir()
    (one / "ab").write_bytes(b"c")
    (two / "a").write_bytes(b"bc")
    assert compute_worldbuilding_hash(one) != compute_worldbuilding_hash(two)


def test_empty_canon_hash(tmp_path: Path):
    (tmp_path / "canon").mkdir()
    assert compute_worldbuilding_hash(tmp_path / "canon") == hashlib.sha256(b"").hexdigest()


def test_merge_contributors_is_append_only():
    merged = merge_contributors(["zoe", "alice"], ["bob", "alice", "", None])
    assert merged == ["alice", "bob", "zoe"]


def test_genesis_lock_skips_compliance(tmp_path: Path):
    root = make_canon_repo(tmp_path, {"ep01": story_v12(canon_ref="whatever", contributor="carol")})
    lock = fixed_service().regenerate(RepoStore(root))

    assert lock == {
        "schema_version": "canon.lock.v2",
        "canon_commit": NEW_COMMIT,
        "worldbuilding_hash": compute_worldbuilding_hash(root / "canon"),
        "hash_algo": "sha256",
        "generated_at": "2024-05-01T12:00:00.000Z",
        "contributors": ["carol"],
    }
    on_disk = json.loads((root / "canon.lock.json").read_text(encoding="utf-8"))
    assert on_disk == lock


def test_lock_refused_when_stories_fail(tmp_path: Path):
    root = make_canon_repo(
        tmp_path,
        {"ep01": story_v12("ep01"), "ep02": story_v12("ep02", characters=["stranger"])},
        lock=lock_doc(),
    )
    before = (root / "canon.lock.json").read_bytes()
    with pytest.raises(ComplianceError) as exc:
        fixed_service().regenerate(RepoStore(root))
    assert exc.value.failures == {"ep02": ["characters_valid"]}
    assert (root / "canon.lock.json").read_bytes() == before


def test_lock_preserves_previous_contributors(tmp_path: Path):
    root = make_canon_repo(tmp_path, {"ep01": story_v12()}, lock=lock_doc(contributors=["old-timer"]))
    lock = fixed_service().regenerate(RepoStore(root))
    assert lock["contributors"] == ["alice", "old-timer"]


def test_stale_refs_block_relock_unless_ignored(tmp_path: Path):
    root = make_canon_repo(tmp_path, {"ep01": story_v12()}, lock=lock_doc(commit="c" * 40))
    repo = RepoStore(root)
    with pytest.raises(ComplianceError) as exc:
        fixed_service().regenerate(repo)
    assert exc.value.failures == {"ep01": ["canon_version_match"]}

    lock = fixed_service().regenerate(repo, ignore_version_match=True)
    assert lock["canon_commit"] == NEW_COMMIT


def test_update_refs_rewrites_story_metadata(tmp_path: Path):
    root = make_canon_repo(tmp_path, {"ep01": story_v12("ep01"), "ep02": story_v12("ep02", canon_ref=NEW_COMMIT)})
    repo = RepoStore(root)
    lock = fixed_service().regenerate(repo)
    updated = update_story_refs(repo, lock["canon_commit"])
    assert updated == ["ep01"]
    meta = json.loads((root / "stories" / "ep01" / "metadata.json").read_text(encoding="utf-8"))
    assert meta["canon_ref"] == NEW_COMMIT
    assert meta["title"] == {"ko": "첫 번째 이야기", "en": "The First Story"}

    # Refs now match, so a regular relock passes the compliance gate.
    fixed_service().regenerate(repo)


def test_v13_lock_path(tmp_path: Path):
    root = make_canon_repo(tmp_path, {"ep01": story_v13("ep01", contributor="dana")}, lock=lock_doc())
    lock = fixed_service().regenerate(RepoStore(root), schema="1.3")
    assert lock["contributors"] == ["dana"]


def test_missing_canon_dir(tmp_path: Path):
    with pytest.raises(CanonDirMissingError):
        fixed_service().regenerate(RepoStore(tmp_path))


def test_commit_failure_writes_nothing(tmp_path: Path):
    root = make_canon_repo(tmp_path)

    def no_commit(_root):
        raise CommitUnavailableError("no git")

    with pytest.raises(CommitUnavailableError):
        LockService(commit_resolver=no_commit).regenerate(RepoStore(root))
    assert not (root / "canon.lock.json").exists()


def test_resolve_commit_outside_git(tmp_path: Path):
    with pytest.raises(CommitUnavailableError):
        resolve_canon_commit(tmp_path)


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_lock_uses_git_head(tmp_path: Path):
    root = make_canon_repo(tmp_path)
    git = ["git", "-c", "user.name=t", "-c", "user.email=t@example.com"]
    subprocess.run(["git", "init", "-q"], cwd=root, check=True)
    subprocess.run(git + ["add", "."], cwd=root, check=True)
    subprocess.run(git + ["commit", "-q", "-m", "init"], cwd=root, check=True)
    head = subprocess.run(["git", "rev-parse", "HEAD"], cwd=root, check=True, capture_output=True, text=True).stdout.strip()

    lock = LockService().regenerate(RepoStore(root))
    assert lock["canon_commit"] == head
    assert lock["generated_at"].endswith("Z")


def test_update_refs_reads_stories_under_the_write_lock(tmp_path: Path, monkeypatch):
    events = []

    class RecordingRepo(RepoStore):
        def write_lock(self):
            @contextlib.contextmanager
            def held():
                events.append("acquire")
                yield
                events.append("release")
            return held()

    real_load = lock_service.load_repo

    def recording_load(repo):
        events.append("load")
        return real_load(repo)

    monkeypatch.setattr(lock_service, "load_repo", recording_load)
    root = make_canon_repo(tmp_path, {"ep01": story_v12("ep01")})
    assert update_story_refs(RecordingRepo(root), NEW_COMMIT) == ["ep01"]
    assert events == ["acquire", "load", "release"]
