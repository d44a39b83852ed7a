"""API routes package."""

from fastapi import APIRouter

from gatepass.api.routes import gate, residents, visits

# Main API router
api_router = APIRouter(prefix="/api/v1")

# Include route modules
api_router.include_router(visits.router)
api_router.include_router(residents.residents_router)
api_router.include_router(residents.estates_router)
api_router.include_router(gate.router)
