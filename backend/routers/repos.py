from fastapi import APIRouter, Depends, HTTPException

from services.config_service import ConfigError, load_canon_config
from storage.fs_store import FSStore, RepoStore


def get_store() -> FSStore:
    from main import store

    return store


router = APIRouter(prefix="/api/repos")


def open_repo(s: FSStore, repo_id: str) -> RepoStore:
    try:
        return s.repo(repo_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.get("")
def list_repos(s: FSStore = Depends(get_store)):
    return s.list_repos()


@router.get("/{repo_id}/config")
def repo_config(repo_id: str, s: FSStore = Depends(get_store)):
    repo = open_repo(s, repo_id)
    try:
        return load_canon_config(repo).to_dict()
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
