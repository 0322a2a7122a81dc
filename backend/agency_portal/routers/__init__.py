"""Agency Portal - API Routers"""
from .auth import router as auth_router
from .providers import router as providers_router
from .enforcement import router as enforcement_router
from .scheduler import router as scheduler_router

__all__ = [
    "auth_router",
    "providers_router",
    "enforcement_router",
    "scheduler_router",
]
