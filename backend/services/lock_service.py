"""canon.lock.json generation.

The worldbuilding hash is a pure function of the files under ``canon/``:
paths are made relative to ``canon/`` with forward slashes and sorted, then
for each file ``path \\0 bytes \\0`` is fed to a single SHA-256. The NUL
framing keeps ``ab``+``c`` and ``a``+``bc`` apart.
"""

from __future__ import annotations

import hashlib
import logging
import os
import subprocess
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from schemas.contract import HASH_ALGO, LOCK_VERSION, METADATA_VERSION_V13
from services.check_service import normalize_schema
from services.validate_service import failing_checks, validate_repo, validate_repo_any
from storage.fs_store import RepoStore
from storage.repo_loader import LOCK_FILE, STORIES_DIR, load_repo, load_repo_any

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 16


class LockError(RuntimeError):
    pass


class CanonDirMissingError(LockError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"canon/ directory not found: {path}")
        self.path = path


class ComplianceError(LockError):
    def __init__(self, failures: dict[str, list[str]]) -> None:
        super().__init__("compliance check failed, lock refused")
        self.failures = failures


class CommitUnavailableError(LockError):
    pass


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def collect_canon_files(canon_dir: Path) -> list[str]:
    out = []
    for dirpath, _dirnames, filenames in os.walk(canon_dir):
        for name in filenames:
            out.append((Path(dirpath) / name).relative_to(canon_dir).as_posix())
    return sorted(out)


def compute_worldbuilding_hash(canon_dir: Path) -> str:
    digest = hashlib.sha256()
    for rel in collect_canon_files(canon_dir):
        digest.update(rel.encode("utf-8"))
        digest.update(b"\0")
        with (canon_dir / rel).open("rb") as f:
            while chunk := f.read(CHUNK_SIZE):
                digest.update(chunk)
        digest.update(b"\0")
    return digest.hexdigest()


def merge_contributors(previous: Iterable[str], current: Iterable[str]) -> list[str]:
    merged = {c for c in previous if isinstance(c, str) and c}
    merged.update(c for c in current if isinstance(c, str) and c)
    return sorted(merged)


def resolve_canon_commit(repo_root: Path) -> str:
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=repo_root,
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        raise CommitUnavailableError("git rev-parse HEAD failed. canon.lock.json requires a commit ref.") from e
    commit = proc.stdout.strip()
    if not commit:
        raise CommitUnavailableError("git rev-parse HEAD returned no commit")
    return commit


class LockService:
    def __init__(
        self,
        commit_resolver: Callable[[Path], str] = resolve_canon_commit,
        clock: Callable[[], str] = now_iso,
    ) -> None:
        self.commit_resolver = commit_resolver
        self.clock = clock

    def regenerate(self, repo: RepoStore, *, schema: str | None = None, ignore_version_match: bool = False) -> dict[str, Any]:
        canon_dir = repo.safe_path("canon")
        if not canon_dir.is_dir():
            raise CanonDirMissingError(canon_dir)

        with repo.write_lock():
            v13 = normalize_schema(schema) == METADATA_VERSION_V13
            model = load_repo_any(repo) if v13 else load_repo(repo)

            if model.canon_lock is not None:
                report = validate_repo_any(model) if v13 else validate_repo(model)
                ignore = ("canon_version_match",) if ignore_version_match else ()
                failures = failing_checks(report, ignore=ignore)
                if failures:
                    logger.warning("lock refused for %s: %d failing stories", repo.root, len(failures))
                    raise ComplianceError(failures)
            else:
                logger.info("no canon.lock.json in %s, writing genesis lock", repo.root)

            commit = self.commit_resolver(repo.root)
            previous = (model.canon_lock or {}).get("contributors")
            lock = {
                "schema_version": LOCK_VERSION,
                "canon_commit": commit,
                "worldbuilding_hash": compute_worldbuilding_hash(canon_dir),
                "hash_algo": HASH_ALGO,
                "generated_at": self.clock(),
                "contributors": merge_contributors(
                    previous if isinstance(previous, list) else [],
                    (parsed.raw.get("contributor") for parsed in model.stories.values()),
                ),
            }
            repo.write_json(LOCK_FILE, lock)
        logger.info("canon.lock.json updated: commit=%s hash=%s", commit, lock["worldbuilding_hash"])
        return lock


def update_story_refs(repo: RepoStore, commit: str, *, schema: str | None = None) -> list[str]:
    """Point every story's canon_ref at ``commit``. Runs after the lock is written."""
    v13 = normalize_schema(schema) == METADATA_VERSION_V13
    updated = []
    with repo.write_lock():
        model = load_repo_any(repo) if v13 else load_repo(repo)
        for slug, parsed in model.stories.items():
            if parsed.raw.get("canon_ref") == commit:
                continue
            repo.write_json(f"{STORIES_DIR}/{slug}/metadata.json", {**parsed.raw, "canon_ref": commit})
            updated.append(slug)
    logger.info("canon_ref updated in %d stories", len(updated))
    return updated
