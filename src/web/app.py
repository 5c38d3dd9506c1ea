"""
FastAPI application for the benefit rules platform.

Routes (all under /api):
- /api/rules        : determinations, document checklists, rule authoring
- /api/evaluation   : test cases, evaluation runs and results
- /api/provisions   : provisions, ontology terms, mapping review, obligations
- /api/health       : liveness

Domain errors are translated to HTTP status codes here:
InvalidInput/RuleValidation -> 422, NotFound/RuleNotFound -> 404,
MappingState/RuleConflict -> 409, reference calculator errors -> 502.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from config.settings import Settings, get_settings
from core.api import API_TAGS, api_router
from core.errors import (
    BenefitRulesError,
    InvalidInputError,
    MappingStateError,
    NotFoundError,
    ReferenceVerificationError,
    RuleConflictError,
    RuleNotFoundError,
    RuleValidationError,
    ToleranceExceededError,
)
from core.service_registry import register_default_services, services
from middleware.correlation import CorrelationIdMiddleware, configure_logging

logger = logging.getLogger(__name__)


ERROR_STATUS = [
    (InvalidInputError, 422),
    (RuleValidationError, 422),
    (ToleranceExceededError, 422),
    (NotFoundError, 404),
    (RuleNotFoundError, 404),
    (MappingStateError, 409),
    (RuleConflictError, 409),
    (ReferenceVerificationError, 502),
]


def status_for(exc: BenefitRulesError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

async def benefit_rules_error_handler(request: Request, exc: BenefitRulesError):
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append(f"{field}: {error['msg']}")
    return JSONResponse(
        status_code=422,
        content={
            "error": "invalid_input",
            "message": "Invalid request data",
            "details": {"errors": errors},
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "details": {"type": type(exc).__name__},
        },
    )


# =============================================================================
# LIFESPAN
# =============================================================================

def _startup(settings: Settings) -> None:
    from config.rule_config_loader import seed_rule_store
    from database.connection import get_sync_engine, init_database

    init_database(get_sync_engine())
    store = services.require("rule_store")
    if settings.seed_rules_on_startup and not store.has_rules():
        created = seed_rule_store(store)
        logger.info(f"Seeded {created} rules from YAML parameters")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    _startup(settings)
    logger.info(f"{settings.name} {settings.version} started ({settings.environment})")
    yield
    from database.connection import close_sync_engine

    services.reset_all()
    close_sync_engine()
    logger.info(f"{settings.name} stopped")


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    use_lifespan: bool = True,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings (cached settings by default).
        session_factory: Database session factory for every service;
            the process-wide factory when omitted.
        use_lifespan: Create tables and optionally seed rules on startup.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    register_default_services(session_factory=session_factory)

    app = FastAPI(
        title=settings.name,
        version=settings.version,
        debug=settings.debug,
        openapi_tags=API_TAGS,
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.add_exception_handler(BenefitRulesError, benefit_rules_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(api_router)
    return app
