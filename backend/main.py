import logging
import os
from pathlib import Path
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

BACKEND_DIR = Path(__file__).resolve().parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from routers import check, health, lock, repos, schema
from services.lock_service import LockService
from storage.fs_store import FSStore

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv('CANON_DATA_DIR', BACKEND_DIR.parents[0] / 'data'))
store = FSStore(DATA_DIR)
lock_service = LockService()
logger.info('serving canon repos from %s', DATA_DIR)

frontend_port = os.getenv('CANON_FRONTEND_PORT', '5173')
allowed_origins = [
    f'http://127.0.0.1:{frontend_port}',
    f'http://localhost:{frontend_port}',
]

app = FastAPI(title='Canon Workbench API')
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(health.router)
app.include_router(schema.router)
app.include_router(repos.router)
app.include_router(check.router)
app.include_router(lock.router)
