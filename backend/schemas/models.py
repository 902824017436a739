from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, TypedDict

from schemas.contract import ParsedMetadata


class Bilingual(TypedDict):
    ko: str
    en: str


class TemporalContext(TypedDict, total=False):
    prev_episode: Optional[str]
    next_episode: Optional[str]
    thematic_echoes: list[str]


class StoryMetadata(TypedDict, total=False):
    schema_version: Literal["1.2"]
    canon_ref: str
    id: str
    episode: float
    title: Bilingual
    timeline: str
    synopsis: Bilingual
    characters: list[str]
    locations: list[str]
    contributor: str
    canon_status: Literal["canonical", "non-canonical"]
    themes: list[str]
    canon_events: list[str]
    word_count: dict[str, int]
    temporal_context: TemporalContext


class StoryMetadataV13(TypedDict, total=False):
    schema_version: Literal["1.3"]
    canon_ref: str
    id: str
    episode: float
    lang: Literal["ko", "en"]
    title: str
    timeline: str
    synopsis: str
    characters: list[str]
    locations: list[str]
    contributor: str
    canon_status: Literal["canonical", "non-canonical", "derivative"]
    derived_from: str
    themes: list[str]
    canon_events: list[str]
    word_count: dict[str, int]
    temporal_context: TemporalContext


class CanonLock(TypedDict):
    schema_version: Literal["canon.lock.v2"]
    canon_commit: str
    worldbuilding_hash: str
    hash_algo: Literal["sha256"]
    generated_at: str
    contributors: list[str]


@dataclass(frozen=True)
class RepoModel:
    """I/O-free snapshot of a canon repo, rebuilt on every invocation."""

    canon_lock: dict[str, Any] | None
    characters: frozenset[str]
    locations: frozenset[str]
    episodes: frozenset[str]
    stories: dict[str, ParsedMetadata] = field(default_factory=dict)


@dataclass(frozen=True)
class CheckResult:
    id: str
    passed: bool
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "pass": self.passed}
        if not self.passed and self.message:
            out["message"] = self.message
        return out


@dataclass(frozen=True)
class StoryCheckReport:
    story_id: str
    checks: list[CheckResult]
    all_pass: bool

    def to_dict(self) -> dict[str, Any]:
        return {"storyId": self.story_id, "checks": [c.to_dict() for c in self.checks], "allPass": self.all_pass}


@dataclass(frozen=True)
class ReportSummary:
    score: float
    total_checks: int
    passing_checks: int


@dataclass(frozen=True)
class RepoCheckReport:
    schema_version: str
    summary: ReportSummary
    stories: list[StoryCheckReport]
    total_stories: int
    passing_stories: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "summary": {
                "score": self.summary.score,
                "totalChecks": self.summary.total_checks,
                "passingChecks": self.summary.passing_checks,
            },
            "stories": [s.to_dict() for s in self.stories],
            "totalStories": self.total_stories,
            "passingStories": self.passing_stories,
        }


@dataclass(frozen=True)
class GitHubTreeEntry:
    path: str
    type: Literal["blob", "tree"]
    sha: str = ""


@dataclass(frozen=True)
class GitHubRepoInput:
    tree: list[GitHubTreeEntry]
    files: dict[str, str]

    @classmethod
    def from_api(cls, tree_payload: dict[str, Any], files: dict[str, str]) -> "GitHubRepoInput":
        """Build from a raw Git Trees API response (``{"tree": [...]}``)."""
        entries = [
            GitHubTreeEntry(path=str(e.get("path", "")), type=e.get("type", "blob"), sha=str(e.get("sha", "")))
            for e in tree_payload.get("tree", [])
            if e.get("type") in ("blob", "tree")
        ]
        return cls(tree=entries, files=dict(files))
