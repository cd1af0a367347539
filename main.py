import os
import time
import traceback
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from studyforge.core.config import settings
from studyforge.core.logging_config import setup_logging, get_logger, RequestLogger
from studyforge.core.middleware import SecurityHeadersMiddleware
from studyforge.core.rate_limit import limiter
from studyforge.db.database import init_db
from studyforge.api.routes import auth, files, study_sets

# Initialize logging first (auto-determines level based on environment)
setup_logging(
    app_name="studyforge",
    log_level=settings.log_level,  # Empty = auto (DEBUG in dev, WARNING in prod)
    environment=settings.environment,
    enable_console=True,
    enable_file=settings.log_to_file,
    log_dir=settings.log_dir,
)

logger = get_logger(__name__)
request_logger = RequestLogger(get_logger("studyforge.requests"))

logger.info("Starting StudyForge application...")

# Create database tables (the memory backend keeps nothing on disk)
if settings.storage_backend == "database":
    init_db()
    logger.info("Database tables created/verified")
else:
    logger.info("Storage backend is in-memory; data is lost on restart")

os.makedirs(settings.upload_dir, exist_ok=True)


app = FastAPI(
    title=settings.app_name,
    description="Turn uploaded documents into flashcards and quizzes",
    version="0.1.0",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Global exception handler: logs full tracebacks for 500 errors
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions, log full traceback, return 500."""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc}\n"
        f"{traceback.format_exc()}"
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests with timing."""
    start_time = time.time()
    client_ip = request.client.host if request.client else "unknown"

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    request_logger.log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=duration_ms,
        client_ip=client_ip,
        user_id=getattr(request.state, "user_id", None),
    )

    return response


# CORS middleware: restrict origins (never use wildcard with credentials)
if settings.allowed_origins:
    cors_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
else:
    # Safe defaults: local dev + deployed frontend
    cors_origins = [
        "http://localhost:5173",
        "http://localhost:8000",
        settings.frontend_url,
    ]
    if settings.environment == "production":
        # In production, only allow the configured frontend URL
        cors_origins = [settings.frontend_url]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# Security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Include all API routers at /api prefix
app.include_router(auth.router, prefix="/api")
app.include_router(files.router, prefix="/api")
app.include_router(study_sets.router, prefix="/api")

logger.info("API routes registered at /api")


@app.get("/health")
def health_check():
    logger.debug("Health check requested")
    return {"status": "healthy"}


@app.get("/")
def root():
    return {"message": "StudyForge API", "app": settings.app_name, "docs": "/docs"}


@app.on_event("startup")
async def startup_event():
    from studyforge.services.scheduler import start_scheduler

    start_scheduler()
    logger.info("StudyForge application started successfully")


@app.on_event("shutdown")
async def shutdown_event():
    from studyforge.services.scheduler import stop_scheduler
    stop_scheduler()
    logger.info("StudyForge application shutting down")
