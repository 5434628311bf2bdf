from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, JSON, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.sql import func

from app.db.base_class import Base


class Role(Base):
    """
    A tenant-owned role: a permission matrix, capability flags and a daily claim quota.

    ``version`` is bumped on every write and keys the permission cache.
    """
    __tablename__ = "roles"

    role_id = Column(String, primary_key=True)
    company_id = Column(String, ForeignKey("companies.company_id", ondelete="CASCADE"), nullable=False)
    role_name = Column(String, nullable=False)
    role_description = Column(Text, nullable=True)
    role_level = Column(Integer, default=1, nullable=False)

    # {"claim": ["Update", "View"], ...}
    permissions = Column(JSON, nullable=False, default=dict)
    # {"canExportData": true, ...}
    capabilities = Column(JSON, nullable=False, default=dict)
    max_claims_per_day = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    is_system_default = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, default=1, nullable=False)

    created_by = Column(String, nullable=True)
    last_modified_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('company_id', 'role_name', name='uq_roles_company_role_name'),
    )
    # Optimistic locking: UPDATEs match on the version they read and bump it
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Role {self.role_id}: {self.role_name} (level {self.role_level}, v{self.version})>"


Index('idx_roles_company_level', Role.company_id, Role.role_level)
