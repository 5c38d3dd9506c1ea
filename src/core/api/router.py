"""
API Router

Combines the rules, evaluation and provision routes under /api.
"""

import logging

from fastapi import APIRouter

from calculator.programs import ProgramRegistry
from config.settings import get_settings

from .evaluation_routes import router as evaluation_router
from .provision_routes import router as provision_router
from .rules_routes import router as rules_router

logger = logging.getLogger(__name__)

API_TAGS = [
    {"name": "Rules", "description": "Rule authoring and benefit determinations"},
    {"name": "Evaluation", "description": "Test cases, evaluation runs and results"},
    {"name": "Provisions", "description": "Legislative provisions, mappings and review"},
]

api_router = APIRouter(prefix="/api")

api_router.include_router(rules_router)
api_router.include_router(evaluation_router)
api_router.include_router(provision_router)


@api_router.get("/health")
def health_check():
    settings = get_settings()
    return {
        "status": "healthy",
        "version": settings.version,
        "environment": settings.environment,
        "programs": ProgramRegistry.get_supported_programs(),
    }
