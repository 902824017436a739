from __future__ import annotations

import contextlib
import json
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ContextManager

from filelock import FileLock

CANON_SUBDIRS = ["canon/characters", "canon/worldbuilding/locations", "stories"]


def dump_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2) + "\n"


@dataclass
class RepoStore:
    """A single canon repo on disk. Every path is confined to ``root``."""

    root: Path
    lock_file: Path | None = None

    def __post_init__(self) -> None:
        self.root = Path(self.root).resolve()

    def safe_path(self, *parts: str) -> Path:
        target = self.root.joinpath(*parts).resolve()
        if target != self.root and not target.is_relative_to(self.root):
            raise ValueError("Path traversal blocked")
        return target

    def exists(self, rel: str) -> bool:
        return self.safe_path(rel).exists()

    def read_text(self, rel: str) -> str:
        return self.safe_path(rel).read_text(encoding="utf-8")

    def read_json(self, rel: str) -> Any:
        return json.loads(self.read_text(rel))

    def write_json(self, rel: str, data: Any) -> None:
        path = self.safe_path(rel)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(dump_json(data))
            os.replace(tmp, path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)
            raise

    def copy_file(self, rel: str, dest_rel: str) -> None:
        shutil.copyfile(self.safe_path(rel), self.safe_path(dest_rel))

    def list_subdirs(self, rel: str) -> list[str]:
        path = self.safe_path(rel)
        if not path.is_dir():
            return []
        return sorted(p.name for p in path.iterdir() if p.is_dir())

    def list_canon_entries(self, rel: str) -> list[str]:
        """One entry per entity: ``<id>/`` directories or ``<id>.json`` files."""
        path = self.safe_path(rel)
        if not path.is_dir():
            return []
        names = []
        for p in path.iterdir():
            name = p.name if p.is_dir() else p.name.removesuffix(".json")
            if name != "index":
                names.append(name)
        return sorted(names)

    def write_lock(self) -> ContextManager[Any]:
        if self.lock_file is None:
            return contextlib.nullcontext()
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(self.lock_file))

    def ensure_layout(self) -> list[str]:
        created = []
        for rel in CANON_SUBDIRS:
            path = self.safe_path(rel)
            if not path.exists():
                created.append(rel)
            path.mkdir(parents=True, exist_ok=True)
        return created


@dataclass
class FSStore:
    """Workspace of canon repos served by the HTTP API, one directory per repo."""

    data_dir: Path

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _repo_dir(self, repo_id: str) -> Path:
        base = self.data_dir.resolve()
        target = (base / repo_id).resolve()
        if target == base or not target.is_relative_to(base) or repo_id.startswith("_"):
            raise ValueError("Invalid repo path")
        return target

    def repo(self, repo_id: str) -> RepoStore:
        root = self._repo_dir(repo_id)
        if not root.is_dir():
            raise FileNotFoundError(f"repo not found: {repo_id}")
        return RepoStore(root, lock_file=self.data_dir / "_locks" / f"{repo_id}.lock")

    def list_repos(self) -> list[dict[str, Any]]:
        out = []
        for p in self.data_dir.iterdir():
            if p.is_dir() and not p.name.startswith("_") and (p / "canon").is_dir():
                out.append({"id": p.name, "has_lock": (p / "canon.lock.json").exists()})
        return sorted(out, key=lambda x: x["id"])
