from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from timetabler.api.deps import get_worker_pool
from timetabler.db.bootstrap import missing_tables

router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/health/ready")
def health_ready() -> JSONResponse:
    db_ok = True
    db_error: str | None = None
    missing: list[str] = []
    try:
        missing = missing_tables()
    except Exception as exc:  # pragma: no cover - environment dependent
        db_ok = False
        db_error = str(exc)

    ready = db_ok and not missing
    payload = {
        "status": "ok" if ready else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": {"ok": db_ok, "missing_tables": missing, "error": db_error},
        "workers": {"max": get_worker_pool().max_workers, "in_flight": get_worker_pool().in_flight},
    }
    return JSONResponse(status_code=200 if ready else 503, content=payload)
