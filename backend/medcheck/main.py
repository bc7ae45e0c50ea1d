import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from medcheck.config import Settings, get_settings
from medcheck.exceptions import AnalyzerError, StorageUnavailableError
from medcheck.logging_config import configure_logging
from medcheck.routers import auth as auth_router
from medcheck.routers import interactions, patients
from medcheck.seed import seed_demo_data
from medcheck.services.analyzer import ClinicalTextAnalyzer, build_analyzer
from medcheck.services.storage import Storage

logger = logging.getLogger(__name__)


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Patient data must not be cached by browsers or proxies."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0"
        response.headers["Expires"] = "0"
        response.headers["Pragma"] = "no-cache"
        return response


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith("/api"):
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info("%s %s %s in %.0fms", request.method, request.url.path, response.status_code, duration_ms)
        return response


def _field_errors(errors: list[dict]) -> list[dict]:
    fields = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields.append({"field": ".".join(loc), "message": err.get("msg", "invalid value")})
    return fields


async def validation_error_handler(request: Request, exc: Exception):
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation failed", "errors": _field_errors(exc.errors())},
    )


async def analyzer_error_handler(request: Request, exc: AnalyzerError):
    return JSONResponse(status_code=502, content={"detail": exc.reason})


async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError):
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    analyzer: Optional[ClinicalTextAnalyzer] = None,
) -> FastAPI:
    """Build the application. `storage`/`analyzer` may be injected; otherwise
    they are created from settings at startup."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_storage = app.state.storage is None
        if owns_storage:
            app.state.storage = await Storage.connect(settings)
            if settings.seed_demo_data:
                await seed_demo_data(app.state.storage, settings)
        if app.state.analyzer is None:
            app.state.analyzer = build_analyzer(settings)
        yield
        if owns_storage:
            await app.state.storage.close()
            app.state.storage = None

    app = FastAPI(
        title="MedCheck Clinical Assistant",
        description="Patient records, drug-interaction checks and treatment recommendations",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.storage = storage
    app.state.analyzer = analyzer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(NoCacheMiddleware)
    app.add_middleware(RequestLogMiddleware)

    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(AnalyzerError, analyzer_error_handler)
    app.add_exception_handler(StorageUnavailableError, storage_unavailable_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(auth_router.router, prefix="/api", tags=["Auth"])
    app.include_router(patients.router, prefix="/api/patients", tags=["Patients"])
    app.include_router(interactions.router, prefix="/api", tags=["Interactions"])

    @app.get("/api/health")
    async def health_check(request: Request):
        storage = request.app.state.storage
        return {
            "status": "healthy",
            "service": "medcheck",
            "storage": storage.status() if storage else None,
        }

    return app
