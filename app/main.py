"""
Absence workflow service - application entry point

Serves the approval workflow API under /api/v1. The escalation sweeper and
the outbox dispatcher run out of process (see scripts/).
"""
import logging
from urllib.parse import urlparse, urlunparse

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import OperationalError

from app.api.router import api_router
from app.core.config import settings
from app.core.errors import (
    WorkflowError,
    generic_exception_handler,
    http_exception_handler,
    operational_error_handler,
    validation_exception_handler,
    workflow_exception_handler,
)
from app.core.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


def _mask_database_url(url: str) -> str:
    """Hide the password of a server DATABASE_URL; sqlite paths are logged as is."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***"
    if parsed.scheme.startswith("sqlite") or not parsed.password:
        return url
    netloc = f"{parsed.username}:****@{parsed.hostname or ''}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


app = FastAPI(
    title="Absence Workflow Service",
    description="Multi-stage approval of absence and shift-change requests with payroll cutoff flags",
    version=settings.VERSION or "1.0.0",
)

# CORS before anything else touches the request
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(WorkflowError, workflow_exception_handler)
app.add_exception_handler(OperationalError, operational_error_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(api_router, prefix="/api/v1")


@app.on_event("startup")
def log_workflow_settings() -> None:
    """Log where the service points and the workflow knobs it runs with."""
    logger.info("DATABASE_URL (app): %s", _mask_database_url(settings.DATABASE_URL))
    logger.info(
        "Workflow settings: escalation_threshold=%sh payroll_tz=%s combined_roles=%s admin_roles=%s",
        settings.ESCALATION_THRESHOLD_HOURS,
        settings.PAYROLL_TIMEZONE,
        ",".join(settings.get_combined_supervisor_roles()),
        ",".join(settings.get_admin_roles()),
    )
