from __future__ import annotations

import logging
from typing import Any, Callable

from schemas.contract import ParsedMetadata, parse_canon_lock, parse_metadata, parse_metadata_any
from schemas.models import RepoModel
from storage.fs_store import RepoStore

logger = logging.getLogger(__name__)

LOCK_FILE = "canon.lock.json"
CHARACTERS_DIR = "canon/characters"
LOCATIONS_DIR = "canon/worldbuilding/locations"
STORIES_DIR = "stories"


def read_canon_lock(repo: RepoStore) -> dict[str, Any] | None:
    if not repo.exists(LOCK_FILE):
        return None
    return parse_canon_lock(repo.read_json(LOCK_FILE))


def _load(repo: RepoStore, parse: Callable[[Any], ParsedMetadata]) -> RepoModel:
    canon_lock = read_canon_lock(repo)
    characters = frozenset(repo.list_canon_entries(CHARACTERS_DIR))
    locations = frozenset(repo.list_canon_entries(LOCATIONS_DIR))
    slugs = repo.list_subdirs(STORIES_DIR)

    stories: dict[str, ParsedMetadata] = {}
    for slug in slugs:
        rel = f"{STORIES_DIR}/{slug}/metadata.json"
        if repo.exists(rel):
            stories[slug] = parse(repo.read_json(rel))

    logger.debug(
        "loaded %s: %d characters, %d locations, %d episodes, %d stories, lock=%s",
        repo.root, len(characters), len(locations), len(slugs), len(stories), canon_lock is not None,
    )
    return RepoModel(
        canon_lock=canon_lock,
        characters=characters,
        locations=locations,
        episodes=frozenset(slugs),
        stories=stories,
    )


def load_repo(repo: RepoStore) -> RepoModel:
    """Load a repo whose stories are all v1.2 metadata."""
    return _load(repo, parse_metadata)


def load_repo_any(repo: RepoStore) -> RepoModel:
    return _load(repo, parse_metadata_any)
