import logging
import time
import uuid
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .config import get_settings

settings = get_settings()
if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=0.1,
        environment=settings.environment or "production",
    )

from .database import get_db  # noqa: E402
from .dependencies import limiter  # noqa: E402
from .exceptions import CompanyNotFoundError, ResearchValidationError  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from .scheduler import start_scheduler, stop_scheduler

    if settings.scheduler_enabled:
        start_scheduler()

    yield

    stop_scheduler()


class TrailingSlashMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.url.path != "/" and request.url.path.endswith("/"):
            scope = request.scope
            scope["path"] = scope["path"].rstrip("/")
            if "raw_path" in scope and isinstance(scope["raw_path"], (bytes, bytearray)):
                scope["raw_path"] = scope["raw_path"].rstrip(b"/")
        return await call_next(request)


app = FastAPI(
    title="InvestorBase Research API",
    description="""
## InvestorBase Research API

AI-backed market research for companies under assessment:

- **Companies** - The companies research is requested for
- **Research** - One provider call per request, parsed into news highlights, market insights, a summary and sources
- **Investor research** - The same pipeline with an investor-partner prompt and numbered investor sections
- **Sections** - Any named section of a stored research text, located, extracted and rendered as a markup tree
""",
    version="1.0.0",
    lifespan=lifespan,
    redirect_slashes=False,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Starlette runs last-added middleware first; CORS goes last so it wraps everything
_cors_origins = [o for o in [settings.frontend_url, "http://localhost:3000", "http://localhost:5173"] if o]
_cors_origins = list(dict.fromkeys(_cors_origins))
app.add_middleware(TrailingSlashMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    # reuse an upstream X-Request-ID when present
    request_id = request.headers.get("X-Request-ID", "")[:64] or uuid.uuid4().hex[:8]
    start = time.perf_counter()

    response = await call_next(request)

    logger.info(
        "[%s] %s %s -> %d (%.2fs)",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        time.perf_counter() - start,
    )

    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def rewrite_unversioned_api_paths(request: Request, call_next):
    # /api/xxx -> /api/v1/xxx, rewritten in place
    path = request.url.path
    if path.startswith("/api/") and not path.startswith("/api/v1/"):
        request.scope["path"] = path.replace("/api/", "/api/v1/", 1)
    return await call_next(request)


from .routers import companies, research  # noqa: E402

api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(companies.router, prefix="/companies", tags=["Companies"])
api_v1.include_router(research.router, prefix="/research", tags=["Research"])

app.include_router(api_v1)


@app.exception_handler(ResearchValidationError)
async def research_validation_handler(request: Request, exc: ResearchValidationError):
    logger.warning("Research request rejected: path=%s error=%s", request.url.path, exc.message)
    return JSONResponse(status_code=422, content={"detail": exc.message, "message": exc.message})


@app.exception_handler(CompanyNotFoundError)
async def company_not_found_handler(request: Request, exc: CompanyNotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return validation errors with a user-friendly message for the first error."""
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0]
        msg = first.get("msg", "Invalid input")
        loc = first.get("loc", ())
        if len(loc) >= 2:
            message = f"{loc[-1]}: {msg}"
        else:
            message = msg
    logger.warning("Request validation error: path=%s errors=%s", request.url.path, errors)
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(errors), "message": message},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        raise exc
    logger.exception("Unhandled exception: %s (path=%s)", exc, request.url.path)
    if settings.debug:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health", status_code=200)
async def health_check(db=Depends(get_db)):
    """
    Deep health check with database connectivity.

    **Response:** {status: "ok"|"degraded", checks: {database: "ok"|"error: ..."}}
    """
    health: dict = {"status": "ok", "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health["checks"]["database"] = "ok"
    except Exception as e:
        health["checks"]["database"] = f"error: {e}"
        health["status"] = "degraded"

    return health
