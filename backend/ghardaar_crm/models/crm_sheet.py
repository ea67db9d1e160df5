"""
CRM sheet model - a named grouping of clients, usually one imported file.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.orm import relationship

from ..database import Base


class CRMSheet(Base):
    """Named partition of CRM clients."""

    __tablename__ = "crm_sheets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)

    clients = relationship("CRMClient", back_populates="sheet", lazy="dynamic")

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<CRMSheet {self.name}>"
