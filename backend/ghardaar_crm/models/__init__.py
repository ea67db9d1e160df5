"""
SQLAlchemy models for the CRM backend.
"""
from .crm_client import CRMClient, LeadStage, LeadType, DealStatus
from .crm_sheet import CRMSheet
from .crm_staff import CRMStaff, CRMSheetAccess, CRMActivityLog

__all__ = [
    "CRMClient",
    "CRMSheet",
    "CRMStaff",
    "CRMSheetAccess",
    "CRMActivityLog",
    "LeadStage",
    "LeadType",
    "DealStatus",
]
