from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func

from app.db.base_class import Base


class Company(Base):
    """A tenant. Every role, employee and tenant audit row points at one company."""
    __tablename__ = "companies"

    company_id = Column(String, primary_key=True)
    company_name = Column(String, nullable=False)
    email = Column(String, nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # Active, Trial, Suspended, Cancelled
    subscription_status = Column(String(20), default="Active", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Company {self.company_id}: {self.company_name}>"
