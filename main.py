import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from contact_store import ContactStore
from db_models import ErrorResponse, FinalResponse, IdentifyRequest
from errors import Conflict, EmptyChain, InvalidInput, NotFound, ReconciliationError, StoreUnavailable
from logging_setup import configure_logging
from reconciliation import ReconciliationEngine
from settings import Settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "bitespeed-identity-reconciliation"
VERSION = "1.1.0"

ERROR_STATUS = {
    InvalidInput: 400,
    NotFound: 404,
    Conflict: 409,
    EmptyChain: 500,
    StoreUnavailable: 503,
}


def _error_body(request: Request, status_code: int, message: str, code: str, errors=None) -> dict:
    return ErrorResponse(
        message=message,
        statusCode=status_code,
        code=code,
        timestamp=datetime.now(timezone.utc).isoformat(),
        path=request.url.path,
        errors=errors,
    ).model_dump(exclude_none=True)


def get_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.engine


router = APIRouter()


@router.get("/health")
def health(request: Request):
    database_ok = request.app.state.store.ping()
    return {
        "status": "healthy" if database_ok else "degraded",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {"database": database_ok},
    }


@router.post("/identify", response_model=FinalResponse)
def identify(request: IdentifyRequest, engine: ReconciliationEngine = Depends(get_engine)):
    contact = engine.resolve(request.email, request.phoneNumber)
    return FinalResponse(contact=contact)


@router.get("/contacts/{contact_id}/chain", response_model=FinalResponse)
def contact_chain(contact_id: int, engine: ReconciliationEngine = Depends(get_engine)):
    """Consolidated view of the chain containing ``contact_id``, for admin and debugging."""
    return FinalResponse(contact=engine.get_chain(contact_id))


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the API with its store and engine wired in explicitly."""
    settings = settings or Settings()
    configure_logging(settings.log_level)

    store = ContactStore(settings.db_path, timeout=settings.db_timeout)
    engine = ReconciliationEngine(store, retries=settings.resolve_retries)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.init_schema()
        logger.info("Identity service ready (db=%s)", settings.db_path)
        yield

    app = FastAPI(
        title="Bitespeed Contact Reconciliation API",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(router)
    if settings.api_prefix:
        app.include_router(router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        prefix = settings.api_prefix
        return {
            "message": "Bitespeed API is up",
            "version": VERSION,
            "endpoints": {
                "identify": f"{prefix}/identify",
                "health": f"{prefix}/health",
                "contactChain": f"{prefix}/contacts/{{id}}/chain",
            },
        }

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = (time.perf_counter() - started) * 1000
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed)
        return response

    @app.exception_handler(ReconciliationError)
    async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
        status_code = ERROR_STATUS[type(exc)]
        if status_code >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(
            status_code=status_code,
            content=_error_body(request, status_code, exc.message, exc.code),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert validation errors to 400 with one line per field."""
        errors = []
        for error in exc.errors():
            field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            errors.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
        return JSONResponse(
            status_code=400,
            content=_error_body(request, 400, "Invalid request data", InvalidInput.code, errors),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = f"Route {request.url.path} not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.status_code, message, "http_error"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_body(request, 500, "Internal server error", "internal_error"),
        )

    return app


def run():
    """Start the server. Equivalent to ``uvicorn main:create_app --factory``."""
    import uvicorn

    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
