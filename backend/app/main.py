from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import bulk_operations, calendar, health, timetable, undo
from app.core.config import get_settings
from app.core.exceptions import AppError
from app.core.middleware import RequestContextMiddleware, RequestSizeLimitMiddleware
from app.db.bootstrap import ensure_runtime_schema
from app.db.session import SessionLocal
from app.services.undo_ledger import UndoLedger

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logging.basicConfig(level=settings.log_level.upper())
    ensure_runtime_schema()
    if settings.undo_sweep_on_startup:
        db = SessionLocal()
        try:
            UndoLedger(db, settings).sweep_expired()
        finally:
            db.close()
    yield


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("APP ERROR | path=%s | status=%s | message=%s", request.url.path, exc.status_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "details": exc.details},
    )


app = FastAPI(title=settings.project_name, lifespan=lifespan)
app.add_exception_handler(AppError, app_error_handler)

app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_size_bytes)
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(timetable.router, prefix=f"{settings.api_prefix}/timetable", tags=["timetable"])
app.include_router(
    bulk_operations.router,
    prefix=f"{settings.api_prefix}/timetable/bulk-operations",
    tags=["bulk-operations"],
)
app.include_router(undo.router, prefix=f"{settings.api_prefix}/undo", tags=["undo"])
app.include_router(calendar.router, prefix=f"{settings.api_prefix}/calendar", tags=["calendar"])
