"""
API routers.
"""
from .crm_import import router as crm_import_router
from .crm_clients import router as crm_clients_router
from .crm_sheets import router as crm_sheets_router
from .activity import router as activity_router
from .realtime import router as realtime_router

__all__ = [
    "crm_import_router",
    "crm_clients_router",
    "crm_sheets_router",
    "activity_router",
    "realtime_router",
]
