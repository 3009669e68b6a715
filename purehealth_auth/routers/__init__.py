"""API routers."""

from purehealth_auth.routers.health import router as health_router
from purehealth_auth.routers.users import router as users_router
from purehealth_auth.routers.webauthn import router as webauthn_router

__all__ = [
    "health_router",
    "users_router",
    "webauthn_router",
]
