from fastapi import APIRouter

from schemas.contract import (
    CHECK_IDS,
    CHECK_IDS_V13,
    CONFIG_VERSION,
    HASH_ALGO,
    LOCK_VERSION,
    METADATA_VERSION,
    METADATA_VERSION_V13,
    REPORT_VERSION,
    REPORT_VERSION_V3,
)

router = APIRouter(prefix="/api/schema")


@router.get('/versions')
def versions():
    return {
        "metadata": [METADATA_VERSION, METADATA_VERSION_V13],
        "lock": LOCK_VERSION,
        "hash_algo": HASH_ALGO,
        "report": {METADATA_VERSION: REPORT_VERSION, METADATA_VERSION_V13: REPORT_VERSION_V3},
        "config": CONFIG_VERSION,
        "checks": {METADATA_VERSION: list(CHECK_IDS), METADATA_VERSION_V13: list(CHECK_IDS_V13)},
    }
