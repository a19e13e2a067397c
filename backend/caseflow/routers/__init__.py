"""CaseFlow - API Routers"""
from .auth import router as auth_router
from .cases import router as cases_router
from .admin import router as admin_router
from .police import router as police_router
from .scammers import router as scammers_router

__all__ = [
    "auth_router",
    "cases_router",
    "admin_router",
    "police_router",
    "scammers_router",
]
