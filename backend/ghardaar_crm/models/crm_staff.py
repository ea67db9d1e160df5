"""
Staff member model, the sheets they may work on and the activity log they
produce.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Text, ForeignKey, UniqueConstraint

from ..database import Base


class CRMStaff(Base):
    """A staff member who works the CRM sheets."""

    __tablename__ = "crm_staff"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<CRMStaff {self.name}>"


class CRMSheetAccess(Base):
    """Grant letting one staff member work on one sheet."""

    __tablename__ = "crm_sheet_access"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    staff_id = Column(String(36), ForeignKey("crm_staff.id"), nullable=False, index=True)
    sheet_id = Column(String(36), ForeignKey("crm_sheets.id"), nullable=False, index=True)
    granted_by = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # A sheet is granted to a staff member at most once
    __table_args__ = (
        UniqueConstraint("staff_id", "sheet_id", name="uq_sheet_access_staff_sheet"),
    )


class CRMActivityLog(Base):
    """Append-only audit trail of staff edits to CRM clients."""

    __tablename__ = "crm_activity_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Who
    staff_id = Column(String(36), nullable=True)
    staff_name = Column(String(255), nullable=True)

    # On what (denormalised so the log survives deletions)
    client_id = Column(String(36), nullable=False, index=True)
    client_name = Column(String(255), nullable=True)
    sheet_id = Column(String(36), nullable=True, index=True)
    sheet_name = Column(String(255), nullable=True)

    # What
    action_type = Column(String(30), nullable=False)  # update_field / add_comment
    field_changed = Column(String(100), nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)

    timestamp = Column(DateTime, default=datetime.utcnow)
