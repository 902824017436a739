from __future__ import annotations

from schemas.contract import METADATA_VERSION, METADATA_VERSION_V13, SchemaVersionError
from schemas.models import RepoCheckReport
from services.validate_service import validate_repo, validate_repo_any
from storage.fs_store import RepoStore
from storage.repo_loader import load_repo, load_repo_any

UPGRADE_HINT = "v1.3 metadata detected; rerun with --schema v1.3"


def normalize_schema(schema: str | None) -> str:
    value = (schema or METADATA_VERSION).removeprefix("v")
    if value not in (METADATA_VERSION, METADATA_VERSION_V13):
        raise ValueError(f"unsupported schema: {schema}")
    return value


def run_check(repo: RepoStore, schema: str | None = None) -> RepoCheckReport:
    if normalize_schema(schema) == METADATA_VERSION_V13:
        return validate_repo_any(load_repo_any(repo))
    return validate_repo(load_repo(repo))


def check_succeeded(report: RepoCheckReport) -> bool:
    return report.total_stories > 0 and report.passing_stories == report.total_stories


def upgrade_hint(err: SchemaVersionError) -> str | None:
    if str(err.actual) == METADATA_VERSION_V13:
        return UPGRADE_HINT
    return None
