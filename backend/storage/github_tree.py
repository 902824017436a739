"""Build a RepoModel from pre-fetched GitHub tree data. No network access."""

from __future__ import annotations

import json
from typing import Any, Callable

from schemas.contract import ParsedMetadata, parse_canon_lock, parse_metadata, parse_metadata_any
from schemas.models import GitHubRepoInput, GitHubTreeEntry, RepoModel


def _entity_name(entry: GitHubTreeEntry, prefix: str) -> str | None:
    if not entry.path.startswith(prefix):
        return None
    rest = entry.path[len(prefix):]
    if not rest or "/" in rest:
        return None
    name = rest if entry.type == "tree" else rest.removesuffix(".json")
    return None if name == "index" else name


def _collect(tree: list[GitHubTreeEntry], prefix: str) -> frozenset[str]:
    names = (_entity_name(e, prefix) for e in tree)
    return frozenset(n for n in names if n)


def _build(data: GitHubRepoInput, parse: Callable[[Any], ParsedMetadata]) -> RepoModel:
    lock_text = data.files.get("canon.lock.json")
    canon_lock = parse_canon_lock(json.loads(lock_text)) if lock_text else None

    slugs = sorted(
        e.path.split("/")[1]
        for e in data.tree
        if e.type == "tree" and e.path.startswith("stories/") and len(e.path.split("/")) == 2
    )
    stories: dict[str, ParsedMetadata] = {}
    for slug in slugs:
        content = data.files.get(f"stories/{slug}/metadata.json")
        if content:
            stories[slug] = parse(json.loads(content))

    return RepoModel(
        canon_lock=canon_lock,
        characters=_collect(data.tree, "canon/characters/"),
        locations=_collect(data.tree, "canon/worldbuilding/locations/"),
        episodes=frozenset(slugs),
        stories=stories,
    )


def build_repo_model(data: GitHubRepoInput) -> RepoModel:
    return _build(data, parse_metadata)


def build_repo_model_any(data: GitHubRepoInput) -> RepoModel:
    return _build(data, parse_metadata_any)
