from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.sql import func

from app.db.base_class import Base


class Employee(Base):
    __tablename__ = "employees"  # type: ignore[assignment]

    employee_id = Column(String, primary_key=True)
    company_id = Column(String, ForeignKey("companies.company_id", ondelete="CASCADE"), nullable=False)
    role_id = Column(String, ForeignKey("roles.role_id", ondelete="SET NULL"), nullable=True)
    full_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    # Active, Inactive, Terminated, OnLeave
    employee_status = Column(String(20), default="Active", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


Index('idx_employees_company_id', Employee.company_id)
Index('idx_employees_role_id', Employee.role_id)
