import json

from fastapi import APIRouter, Body, Depends, HTTPException

from routers.repos import get_store, open_repo
from schemas.contract import SchemaVersionError
from services.check_service import upgrade_hint
from services.lock_service import CanonDirMissingError, CommitUnavailableError, ComplianceError, LockService, update_story_refs
from storage.fs_store import FSStore
from storage.repo_loader import read_canon_lock

router = APIRouter(prefix="/api/repos/{repo_id}/lock")


def get_lock_service() -> LockService:
    from main import lock_service

    return lock_service


@router.get("")
def current_lock(repo_id: str, s: FSStore = Depends(get_store)):
    lock = read_canon_lock(open_repo(s, repo_id))
    if lock is None:
        raise HTTPException(status_code=404, detail="canon.lock.json not found")
    return lock


@router.post("")
def regenerate_lock(
    repo_id: str,
    body: dict | None = Body(default=None),
    s: FSStore = Depends(get_store),
    svc: LockService = Depends(get_lock_service),
):
    body = body or {}
    repo = open_repo(s, repo_id)
    schema = body.get("schema")
    try:
        lock = svc.regenerate(repo, schema=schema, ignore_version_match=bool(body.get("ignore_version_match")))
        updated = update_story_refs(repo, lock["canon_commit"], schema=schema) if body.get("update_refs") else []
    except ComplianceError as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "failures": e.failures}) from e
    except (CanonDirMissingError, CommitUnavailableError) as e:
        raise HTTPException(status_code=424, detail=str(e)) from e
    except SchemaVersionError as e:
        raise HTTPException(
            status_code=409,
            detail={"expected": e.expected, "actual": e.actual, "hint": upgrade_hint(e), "message": str(e)},
        ) from e
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=422, detail=f"failed to read repo: {e}") from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"lock": lock, "updated_refs": updated}
