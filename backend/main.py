# main.py - Humanitarian Report System API
# Features:
# - Request correlation IDs (also bound into structured log context)
# - Security headers
# - Report export error mapping (404 for foreign/missing, generic 500 for render failures)
# - WebSocket collaboration channel
# - Health check with DB verification

import os
import json
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from database import init_db, close_db, get_db_session
from export_service import ExportRenderError, ReportNotFound
from logging_system import RequestContext, log_error, reset_current_context, set_current_context
from telemetry import setup_telemetry

VERSION = "1.0.0"

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("humanitarian-reports")


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append("⚠️  JWT_SECRET_KEY is not set or shorter than 32 chars; tokens will not survive a restart")

    if not os.getenv("PUBLIC_APP_URL"):
        warnings.append("⚠️  PUBLIC_APP_URL not set; share links will use the request base URL")

    try:
        timeout = float(os.getenv("TYPING_TIMEOUT_SECONDS", "1.0"))
        if timeout <= 0:
            warnings.append("⚠️  TYPING_TIMEOUT_SECONDS must be positive")
    except ValueError:
        warnings.append("⚠️  TYPING_TIMEOUT_SECONDS is not a number")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting Humanitarian Report System v{VERSION}...")
    await init_db()
    _check_startup_config()
    # Initialise OpenTelemetry (no-op if OTEL_EXPORTER_OTLP_ENDPOINT not set)
    setup_telemetry(app)
    yield
    logger.info("🛑 Shutting down Humanitarian Report System...")
    await close_db()


app = FastAPI(
    title="Humanitarian Report System",
    description="Report authoring, multi-format export, share links and live collaboration",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID", "Content-Disposition", "X-Export-Id"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    correlation_id = request.headers.get("X-Correlation-ID", request_id)
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id
    token = set_current_context(RequestContext.create(request_id=request_id, correlation_id=correlation_id))

    start = time.perf_counter()
    try:
        response = await call_next(request)
    finally:
        reset_current_context(token)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} → {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    # Rendered reports carry an inline stylesheet and no scripts
    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; script-src 'self'; "
        "style-src 'self' 'unsafe-inline'; img-src 'self' data: https:; "
        "connect-src 'self' wss: https:;"
    )
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": list(err.get("loc", [])),
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return JSONResponse(
        status_code=422,
        content={
            "detail": errors,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(ReportNotFound)
async def report_not_found_handler(request: Request, exc: ReportNotFound):
    return JSONResponse(
        status_code=404,
        content={
            "detail": "Report not found",
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(ExportRenderError)
async def export_render_error_handler(request: Request, exc: ExportRenderError):
    # The underlying message lives on the ReportExport row, not in the response
    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Failed to generate {exc.export_format.value.lower()} export",
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    log_error("Unhandled exception", error=exc, metadata={"path": request.url.path, "method": request.method})
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import collaboration, exports, reports, versions

# exports first: its /batch-export route must win over /{report_id} patterns
app.include_router(exports.router)
app.include_router(reports.router)
app.include_router(versions.router)
app.include_router(collaboration.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async for db in get_db_session():
            from sqlalchemy import text
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            break
    except Exception as e:
        db_status = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
        "services": {
            "api": "operational",
            "export": "operational",
            "collaboration": "operational",
        },
    }


@app.get("/")
async def root():
    return {
        "name": "Humanitarian Report System",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
        "status": "operational",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
        workers=int(os.getenv("WORKERS", 1)),
    )
