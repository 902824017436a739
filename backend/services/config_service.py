from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any

from schemas.contract import CONFIG_VERSION, SUPPORTED_LANGS
from storage.fs_store import RepoStore

CONFIG_FILE = ".canonrc.json"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class CanonConfig:
    schema_version: str = CONFIG_VERSION
    author: str = ""
    default_lang: str = "ko"
    repo_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        if out["repo_url"] is None:
            del out["repo_url"]
        return out


def _read_json(repo: RepoStore) -> dict[str, Any]:
    if not repo.exists(CONFIG_FILE):
        return {}
    text = repo.read_text(CONFIG_FILE).strip()
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{CONFIG_FILE} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILE} must contain a JSON object")
    return data


def load_canon_config(repo: RepoStore) -> CanonConfig:
    data = _read_json(repo)
    if not data:
        return CanonConfig()
    version = data.get("schema_version", CONFIG_VERSION)
    if version != CONFIG_VERSION:
        raise ConfigError(f'{CONFIG_FILE}: expected schema_version "{CONFIG_VERSION}", got "{version}"')
    lang = data.get("default_lang", "ko")
    if lang not in SUPPORTED_LANGS:
        raise ConfigError(f"{CONFIG_FILE}: default_lang must be one of: {', '.join(SUPPORTED_LANGS)}")
    repo_url = data.get("repo_url")
    return CanonConfig(
        author=str(data.get("author") or ""),
        default_lang=lang,
        repo_url=str(repo_url) if repo_url else None,
    )


def write_default_config(repo: RepoStore) -> bool:
    if repo.exists(CONFIG_FILE):
        return False
    repo.write_json(CONFIG_FILE, CanonConfig().to_dict())
    return True


def init_repo(repo: RepoStore) -> list[str]:
    """Create the canon layout and a default config. Never writes a lock."""
    created = repo.ensure_layout()
    if write_default_config(repo):
        created.append(CONFIG_FILE)
    return created
