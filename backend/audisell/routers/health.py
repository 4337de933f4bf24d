import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from jose import JWTError

from audisell.core import database as _db
from audisell.core.auth import create_access_token, decode_access_token
from audisell.core.config import settings
from audisell.limits import exempt

log = logging.getLogger(__name__)

router = APIRouter()


def _check_db() -> Dict[str, Any]:
    started = time.perf_counter()
    try:
        # Dereference the engine at call time so patched engines are honoured
        with _db.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
    except Exception as exc:
        log.warning("[health] database check failed: %s", exc)
        return {"status": "fail", "error": str(exc)[:200]}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 2)}


def _check_storage() -> Dict[str, Any]:
    root = Path(settings.MEDIA_ROOT)
    try:
        root.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=str(root), prefix=".health-", delete=True):
            pass
    except OSError as exc:
        return {"status": "fail", "error": str(exc)[:200]}
    return {"status": "ok", "writable": os.access(str(root), os.W_OK)}


def _check_auth() -> Dict[str, Any]:
    try:
        token = create_access_token({"sub": "health-check"})
        ok = decode_access_token(token).get("sub") == "health-check"
    except JWTError as exc:
        return {"status": "fail", "error": str(exc)[:200]}
    return {"status": "ok" if ok else "fail"}


@router.get("/api/health/detailed")
@exempt
def health_detailed():
    checks = {
        "database": _check_db(),
        "storage": _check_storage(),
        "auth": _check_auth(),
    }
    if checks["database"]["status"] != "ok":
        overall, code = "unhealthy", 503
    elif any(c["status"] != "ok" for c in checks.values()):
        overall, code = "degraded", 200
    else:
        overall, code = "healthy", 200
    body = {"status": overall, "checks": checks, "environment": settings.APP_ENV}
    return JSONResponse(status_code=code, content=body)
