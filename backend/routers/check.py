import json

from fastapi import APIRouter, Depends, HTTPException

from routers.repos import get_store, open_repo
from schemas.contract import SchemaVersionError
from services.check_service import run_check, upgrade_hint
from storage.fs_store import FSStore

router = APIRouter(prefix="/api/repos/{repo_id}/check")


@router.get("")
def check_repo(repo_id: str, schema: str = "1.2", s: FSStore = Depends(get_store)):
    repo = open_repo(s, repo_id)
    try:
        report = run_check(repo, schema)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=422, detail=f"failed to read repo: {e}") from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except SchemaVersionError as e:
        raise HTTPException(
            status_code=409,
            detail={"expected": e.expected, "actual": e.actual, "hint": upgrade_hint(e), "message": str(e)},
        ) from e
    return report.to_dict()
