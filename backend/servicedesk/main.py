"""FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .domain_errors import DomainError
from .problem_details import build_problem_details_response
from .routers import categorization, tickets

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

# Create app
app = FastAPI(
    title="Branch Service Desk",
    version="1.0.0",
    description="Ticket workflow and routing engine for the branch IT service desk"
)

# Production safety checks
if settings.ENV.lower() == "production" and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")
if settings.ENV.lower() == "production" and settings.JWT_SECRET_KEY == "change-me":
    raise RuntimeError("JWT_SECRET_KEY must be configured in production.")

# CORS
cors_methods = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
cors_headers = ["Authorization", "Content-Type"]
if settings.ENV.lower() != "production":
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    principal = getattr(request.state, "principal", None)
    include_internal = bool(principal is not None and principal.is_admin)
    if exc.http_status == 403:
        logger.info("request.denied path=%s code=%s predicate=%s", request.url.path, exc.code, exc.predicate)
    return build_problem_details_response(exc, include_internal=include_internal)


# Include routers
app.include_router(tickets.router, prefix="/api/v1")
app.include_router(categorization.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": "1.0.0",
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Branch Service Desk API",
        "version": "1.0.0",
        "docs": "/docs"
    }
