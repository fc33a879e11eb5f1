import logging

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError, OperationalError

from upload_service.api.v1.deps import get_db, require_api_key
from upload_service.api.v1.routers.files import router as files_router
from upload_service.common.config import get_settings
from upload_service.common.logging import setup_logging
from upload_service.infra.db.alembic_support import get_head_revision, upgrade_to_head
from upload_service.infra.db.models import (
    FILE_VIEWERS_TABLE,
    FILEABLES_TABLE,
    FILES_TABLE,
)
from upload_service.infra.db.session import get_engine
from upload_service.infra.observability.metrics import metrics_app
from upload_service.infra.observability.middleware import MetricsMiddleware

ERROR_CODE_BY_STATUS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    415: "unsupported_media_type",
    429: "too_many_requests",
    500: "internal_error",
    502: "bad_gateway",
    503: "service_unavailable",
}

REQUIRED_TABLES = frozenset({FILES_TABLE, FILE_VIEWERS_TABLE, FILEABLES_TABLE})


def _normalize_detail(detail):
    if isinstance(detail, dict):
        maybe_code = detail.get("error_code")
        cleaned = {k: v for k, v in detail.items() if k != "error_code"}
        if len(cleaned) == 1 and "message" in cleaned:
            cleaned = cleaned["message"]
        if not cleaned:
            cleaned = None
        return cleaned, maybe_code if isinstance(maybe_code, str) else None
    return detail, None


def _resolve_error_code(status_code: int, override: str | None = None) -> str:
    if override:
        return override
    if status_code == 422:
        return "validation_error"
    return ERROR_CODE_BY_STATUS.get(status_code, "unknown_error")


def _describe_db_target(db_url: str) -> str:
    """Connection target without the password, for log lines."""
    try:
        url = make_url(db_url)
    except ArgumentError:
        return "<invalid DB_URL>"

    if url.drivername.startswith("sqlite"):
        return f"{url.drivername}:///{url.database or ':memory:'}"
    user = url.username or "?"
    host = url.host or "?"
    port = f":{url.port}" if url.port else ""
    database = f"/{url.database}" if url.database else ""
    return f"{url.drivername}://{user}@{host}{port}{database}"


def _run_startup_migrations(db_url: str) -> None:
    startup_logger = logging.getLogger("upload_service.startup")
    target = _describe_db_target(db_url)
    startup_logger.info("auto_migration_precheck db_target=%s", target)
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except OperationalError as exc:
        startup_logger.error(
            "auto_migration_connection_failed db_target=%s error=%s", target, exc
        )
        raise
    try:
        upgrade_to_head()
    except Exception as exc:
        startup_logger.exception(
            "auto_migration_failed db_target=%s error=%s", target, exc
        )
        raise
    startup_logger.info("auto_migration_succeeded db_target=%s", target)


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    app = FastAPI(
        title="Upload Service",
        version="v1.0",
        description="Multipart uploads to S3-compatible object storage",
    )

    if settings.CORS_ENABLED:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(
        files_router,
        prefix="/api/v1",
        tags=["files"],
        dependencies=[Depends(require_api_key)],
    )

    if settings.ENABLE_METRICS:
        app.add_middleware(MetricsMiddleware)
        app.mount("/metrics", metrics_app)

    @app.on_event("startup")
    def on_startup() -> None:
        if settings.AUTO_APPLY_MIGRATIONS:
            _run_startup_migrations(settings.DB_URL)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger = logging.getLogger("http")
        normalized_detail, code_override = _normalize_detail(exc.detail)
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "http_exception status=%s detail=%s method=%s path=%s request_id=%s",
            exc.status_code,
            normalized_detail,
            request.method,
            request.url.path,
            request.headers.get("X-Request-Id"),
            extra={
                "extra": {
                    "status": exc.status_code,
                    "detail": normalized_detail,
                    "method": request.method,
                    "route": request.url.path,
                    "request_id": request.headers.get("X-Request-Id"),
                    "user_id": request.headers.get("X-User-Id") or "<missing>",
                }
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            media_type="application/problem+json",
            headers=getattr(exc, "headers", None),
            content={
                "type": "about:blank",
                "title": "HTTP Error",
                "status": exc.status_code,
                "detail": normalized_detail,
                "error_code": _resolve_error_code(exc.status_code, code_override),
                "instance": str(request.url),
                "request_id": request.headers.get("X-Request-Id"),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        return JSONResponse(
            status_code=422,
            media_type="application/problem+json",
            content={
                "type": "about:blank",
                "title": "Validation Error",
                "status": 422,
                "detail": jsonable_encoder(exc.errors()),
                "error_code": _resolve_error_code(422),
                "instance": str(request.url),
                "request_id": request.headers.get("X-Request-Id"),
            },
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/ready")
    def ready(db=Depends(get_db)):
        detail: dict[str, object] = {}
        try:
            bind = db.get_bind()
            db.execute(text("SELECT 1"))
            tables = set(inspect(bind).get_table_names())
            missing = sorted(REQUIRED_TABLES - tables)
            if missing:
                detail["missing_tables"] = missing

            if "alembic_version" in tables:
                head = get_head_revision()
                current = db.execute(
                    text("SELECT version_num FROM alembic_version")
                ).scalar_one_or_none()
                if head and current != head:
                    detail["migrations"] = {
                        "status": "out_of_date",
                        "current": current,
                        "expected": head,
                    }
            else:
                detail["migrations"] = {"status": "version_table_missing"}
        except OperationalError as exc:
            return {"status": "not_ready", "detail": {"db": str(exc)}}

        if not settings.S3_BUCKET:
            detail["storage"] = "S3_BUCKET is not configured"

        if detail:
            return {"status": "not_ready", "detail": detail}
        return {"status": "ready"}

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("upload_service.main:app", host="0.0.0.0", port=8000, reload=True)
