"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
This makes it trivial to add /api/v2 later without touching existing routes.
"""

from fastapi import APIRouter

from api.routes import audit, health, runs, triggers, workflows
from api.schemas.common import error_responses

api_v1_router = APIRouter()

# Health (no auth required)
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Triggers
api_v1_router.include_router(
    triggers.router,
    prefix="/triggers",
    tags=["Triggers"],
    responses=error_responses(401, 403, 404, 503),
)

# Runs
api_v1_router.include_router(
    runs.router,
    prefix="/runs",
    tags=["Runs"],
    responses=error_responses(401, 403, 404, 409),
)

# Workflow definitions
api_v1_router.include_router(
    workflows.router,
    prefix="/workflows",
    tags=["Workflows"],
    responses=error_responses(401, 403, 404, 409),
)

# Audit log
api_v1_router.include_router(
    audit.router,
    prefix="/audit",
    tags=["Audit"],
    responses=error_responses(401, 403),
)
