"""
CRM client model - a lead tracked in a CRM sheet.
"""
import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, Date, DateTime, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship

from ..database import Base


class LeadStage(str, Enum):
    """Follow-up state of a lead.

    The admin importer and the staff grid work with two different subsets of
    these values, see ADMIN_LEAD_STAGE_CONFIG and STAFF_LEAD_STAGE_CONFIG.
    """
    FOLLOW_UP_REQ = "follow_up_req"
    DNP = "dnp"
    DISQUALIFIED = "disqualified"
    CALLBACK_LATER = "callback_later"
    CALLBACK_REQUIRED = "callback_required"
    NATC = "natc"
    VISIT_BOOKED = "visit_booked"
    CALL_AFTER_1_2_MONTHS = "call_after_1_2_months"


class LeadType(str, Enum):
    """Buying-intent temperature of a lead."""
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


class DealStatus(str, Enum):
    """Whether the deal is open, locked (won) or lost."""
    OPEN = "open"
    LOCKED = "locked"
    LOST = "lost"


# Stage set used by the admin CSV importer and the admin grid
ADMIN_LEAD_STAGE_CONFIG = {
    LeadStage.FOLLOW_UP_REQ: {"label": "Follow Up Required", "color": "#f59e0b", "order": 1},
    LeadStage.DNP: {"label": "DNP", "color": "#6366f1", "order": 2},
    LeadStage.DISQUALIFIED: {"label": "Disqualified", "color": "#ef4444", "order": 3},
    LeadStage.CALLBACK_LATER: {"label": "CB after 2-3 Months", "color": "#8b5cf6", "order": 4},
}

# Stage set offered to staff for inline edits
STAFF_LEAD_STAGE_CONFIG = {
    LeadStage.DNP: {"label": "DNP", "color": "#6b7280", "order": 1},
    LeadStage.CALLBACK_REQUIRED: {"label": "Callback Required", "color": "#eab308", "order": 2},
    LeadStage.FOLLOW_UP_REQ: {"label": "Follow up Required", "color": "#f59e0b", "order": 3},
    LeadStage.NATC: {"label": "NATC", "color": "#9ca3af", "order": 4},
    LeadStage.VISIT_BOOKED: {"label": "VISIT BOOKED", "color": "#15803d", "order": 5},
    LeadStage.DISQUALIFIED: {"label": "Disqualified", "color": "#dc2626", "order": 6},
    LeadStage.CALL_AFTER_1_2_MONTHS: {"label": "Call after 1-2 Months", "color": "#8b5cf6", "order": 7},
}

LEAD_TYPE_CONFIG = {
    LeadType.HOT: {"label": "Hot", "color": "#ef4444", "order": 1},
    LeadType.WARM: {"label": "Warm", "color": "#f59e0b", "order": 2},
    LeadType.COLD: {"label": "Cold", "color": "#3b82f6", "order": 3},
}

DEAL_STATUS_CONFIG = {
    DealStatus.OPEN: {"label": "Open", "color": "#f59e0b", "order": 1},
    DealStatus.LOCKED: {"label": "Deal Locked", "color": "#22c55e", "order": 2},
    DealStatus.LOST: {"label": "Lost", "color": "#6b7280", "order": 3},
}


class CRMClient(Base):
    """A lead (prospective buyer) belonging to a CRM sheet."""

    __tablename__ = "crm_clients"

    # Primary key
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Contact info
    client_name = Column(String(255), nullable=False)
    customer_number = Column(String(50), nullable=True)

    # Pipeline
    lead_stage = Column(String(50), default=LeadStage.FOLLOW_UP_REQ.value, nullable=False)
    lead_type = Column(String(20), default=LeadType.COLD.value, nullable=False)
    deal_status = Column(String(20), default=DealStatus.OPEN.value, nullable=False)
    location_category = Column(String(255), nullable=True)
    expected_visit_date = Column(Date, nullable=True)

    # Calls
    calling_comment = Column(Text, nullable=True)  # Latest entry of the history
    calling_comment_history = Column(JSON, default=list)  # Newest first
    admin_notes = Column(Text, nullable=True)

    # Sheet relationship
    sheet_id = Column(String(36), ForeignKey("crm_sheets.id"), nullable=True, index=True)
    sheet = relationship("CRMSheet", back_populates="clients")

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<CRMClient {self.client_name} ({self.lead_stage}/{self.lead_type})>"
