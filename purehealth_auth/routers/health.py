"""
Health Check Router
"""

from fastapi import APIRouter

from purehealth_auth import __version__
from purehealth_auth.models.contracts.common import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness check for load balancers and container health checks."""
    return HealthResponse(status="healthy", version=__version__)
