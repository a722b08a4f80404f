from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from timetabler.api.deps import get_worker_pool
from timetabler.api.routes import conflicts, health, snapshots, timetables
from timetabler.core.config import get_settings
from timetabler.core.exceptions import AppError
from timetabler.core.middleware import RequestSizeLimitMiddleware, RequestTimingMiddleware
from timetabler.db.bootstrap import ensure_runtime_schema

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ensure_runtime_schema()
    yield
    get_worker_pool().shutdown()
    get_worker_pool.cache_clear()


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("Unhandled application error on %s: %s", request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "details": exc.details},
    )


app = FastAPI(title=settings.project_name, lifespan=lifespan)
app.add_exception_handler(AppError, app_error_handler)

app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_size_bytes)
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(snapshots.router, prefix=f"{settings.api_prefix}/snapshots", tags=["snapshots"])
app.include_router(timetables.router, prefix=f"{settings.api_prefix}/timetables", tags=["timetables"])
app.include_router(conflicts.router, prefix=f"{settings.api_prefix}/conflicts", tags=["conflicts"])
