"""
Audit trail for the authorization core.

Entries are immutable once built: ``AuditLogEntry`` is a frozen value, the
``AuditLog`` table refuses ORM updates and deletes, and the repository only
appends and reads. Persistence happens off the request path through
``app.services.audit_recorder.AuditRecorder``.
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import Boolean, Column, DateTime, Index, JSON, String, Text, event, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.rbac import Action, Actor, ActorKind, Resource
from app.db.base_class import Base


class AuditAction(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"


class EntityType(str, Enum):
    COMPANY = "Company"
    EMPLOYEE = "Employee"
    CLIENT = "Client"
    CLAIM_TASK = "ClaimTask"
    SOW = "SOW"
    PATIENT = "Patient"
    PAYER = "Payer"
    DEPARTMENT = "Department"
    ROLE = "Role"


# Actions that never carry a before/after snapshot
SNAPSHOTLESS_ACTIONS = frozenset({AuditAction.READ, AuditAction.LOGIN, AuditAction.LOGOUT})

RESOURCE_ENTITY_TYPES: Dict[Resource, EntityType] = {
    Resource.COMPANY: EntityType.COMPANY,
    Resource.EMPLOYEE: EntityType.EMPLOYEE,
    Resource.CLIENT: EntityType.CLIENT,
    Resource.CLAIM: EntityType.CLAIM_TASK,
    Resource.SOW: EntityType.SOW,
    Resource.PATIENT: EntityType.PATIENT,
    Resource.PAYER: EntityType.PAYER,
    Resource.DEPARTMENT: EntityType.DEPARTMENT,
    Resource.ROLE: EntityType.ROLE,
}

ACTION_AUDIT_KINDS: Dict[Action, AuditAction] = {
    Action.CREATE: AuditAction.CREATE,
    Action.VIEW: AuditAction.READ,
    Action.EXPORT: AuditAction.READ,
    Action.UPDATE: AuditAction.UPDATE,
    Action.MANAGE: AuditAction.UPDATE,
    Action.APPROVE: AuditAction.UPDATE,
    Action.DELETE: AuditAction.DELETE,
}


def generate_log_id() -> str:
    return f"AUD-{uuid.uuid4().hex[:16].upper()}"


class AuditLogImmutableError(RuntimeError):
    """Raised when anything tries to modify or remove a persisted audit row."""


class AuditLog(Base):
    """Persisted audit record. Append-only."""
    __tablename__ = "audit_logs"

    log_id = Column(String, primary_key=True)
    company_id = Column(String, nullable=True)  # null for platform-level actions
    actor_ref = Column(String, nullable=False)
    actor_kind = Column(String(20), nullable=False)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(String, nullable=False)
    action = Column(String(10), nullable=False)
    before_state = Column(JSON, nullable=True)
    after_state = Column(JSON, nullable=True)
    endpoint = Column(String, nullable=True)
    method = Column(String(10), nullable=True)
    client_ip = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    success = Column(Boolean, default=True, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_audit_company_created', 'company_id', 'created_at'),
        Index('idx_audit_actor_action_created', 'actor_ref', 'action', 'created_at'),
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )

    def __repr__(self):
        return f"<AuditLog {self.log_id}: {self.actor_kind}:{self.actor_ref} {self.action} {self.entity_type}>"


@event.listens_for(AuditLog, 'before_update')
def _reject_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log {target.log_id} is append-only")


@event.listens_for(AuditLog, 'before_delete')
def _reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log {target.log_id} cannot be deleted")


@dataclass(frozen=True)
class AuditLogEntry:
    """
    One audit record, built at the decision point and never changed afterwards.

    Use ``AuditLogEntry.build`` rather than the constructor: it deep-copies the
    snapshots so later changes to the caller's objects cannot leak in, and
    drops them for actions that never carry state.
    """
    log_id: str
    tenant_id: Optional[str]
    actor_ref: str
    actor_kind: ActorKind
    entity_type: EntityType
    entity_id: str
    action: AuditAction
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def build(
        cls,
        *,
        actor: Actor,
        entity_type: EntityType,
        entity_id: str,
        action: AuditAction,
        tenant_id: Optional[str] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> "AuditLogEntry":
        """
        Build an entry for ``actor``.

        Args:
            actor: Resolved actor performing the action
            entity_type: Target entity type
            entity_id: Target entity identifier
            action: Audit action kind
            tenant_id: Owning tenant; defaults to the actor's tenant (None for platform admins)
            before: State before the change (ignored for READ/LOGIN/LOGOUT)
            after: State after the change (ignored for READ/LOGIN/LOGOUT)
            endpoint, method, client_ip, user_agent: Request metadata
            success: Whether the action succeeded
            error_message: Failure detail when ``success`` is False
        """
        action = AuditAction(action)
        if action in SNAPSHOTLESS_ACTIONS:
            before = after = None
        return cls(
            log_id=generate_log_id(),
            tenant_id=tenant_id if tenant_id is not None else actor.tenant_id,
            actor_ref=actor.actor_ref,
            actor_kind=actor.kind,
            entity_type=EntityType(entity_type),
            entity_id=str(entity_id),
            action=action,
            before=copy.deepcopy(before) if before is not None else None,
            after=copy.deepcopy(after) if after is not None else None,
            endpoint=endpoint,
            method=method,
            client_ip=client_ip,
            user_agent=user_agent,
            success=success,
            error_message=error_message,
        )

    @property
    def shard_key(self) -> str:
        return f"{self.entity_type.value}:{self.entity_id}"

    def to_record(self) -> AuditLog:
        return AuditLog(
            log_id=self.log_id,
            company_id=self.tenant_id,
            actor_ref=self.actor_ref,
            actor_kind=self.actor_kind.value,
            entity_type=self.entity_type.value,
            entity_id=self.entity_id,
            action=self.action.value,
            before_state=copy.deepcopy(self.before),
            after_state=copy.deepcopy(self.after),
            endpoint=self.endpoint,
            method=self.method,
            client_ip=self.client_ip,
            user_agent=self.user_agent,
            success=self.success,
            error_message=self.error_message,
            created_at=self.created_at,
        )

    @classmethod
    def from_record(cls, record: AuditLog) -> "AuditLogEntry":
        return cls(
            log_id=record.log_id,
            tenant_id=record.company_id,
            actor_ref=record.actor_ref,
            actor_kind=ActorKind(record.actor_kind),
            entity_type=EntityType(record.entity_type),
            entity_id=record.entity_id,
            action=AuditAction(record.action),
            before=record.before_state,
            after=record.after_state,
            endpoint=record.endpoint,
            method=record.method,
            client_ip=record.client_ip,
            user_agent=record.user_agent,
            success=record.success,
            error_message=record.error_message,
            created_at=record.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logId": self.log_id,
            "tenantRef": self.tenant_id,
            "actorRef": self.actor_ref,
            "actorKind": self.actor_kind.value,
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "action": self.action.value,
            "before": self.before,
            "after": self.after,
            "endpoint": self.endpoint,
            "method": self.method,
            "clientIp": self.client_ip,
            "userAgent": self.user_agent,
            "success": self.success,
            "errorMessage": self.error_message,
            "createdAt": self.created_at.isoformat(),
        }


class AuditLogRepository:
    """
    Append and read access to ``audit_logs``.

    There is no update or delete method; retention is handled
    outside this service.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def append(self, entry: AuditLogEntry) -> None:
        async with self._session_factory() as session:
            session.add(entry.to_record())
            await session.commit()

    async def get(self, log_id: str) -> Optional[AuditLogEntry]:
        async with self._session_factory() as session:
            result = await session.execute(select(AuditLog).where(AuditLog.log_id == log_id))
            record = result.scalar_one_or_none()
            return AuditLogEntry.from_record(record) if record else None

    async def query(
        self,
        tenant_id: Optional[str],
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        actor_ref: Optional[str] = None,
        action: Optional[AuditAction] = None,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogEntry]:
        """
        Query entries for one tenant (``None`` selects platform-level entries),
        newest first.
        """
        stmt = select(AuditLog)
        if tenant_id is None:
            stmt = stmt.where(AuditLog.company_id.is_(None))
        else:
            stmt = stmt.where(AuditLog.company_id == tenant_id)
        if start is not None:
            stmt = stmt.where(AuditLog.created_at >= start)
        if end is not None:
            stmt = stmt.where(AuditLog.created_at < end)
        if actor_ref is not None:
            stmt = stmt.where(AuditLog.actor_ref == actor_ref)
        if action is not None:
            stmt = stmt.where(AuditLog.action == AuditAction(action).value)
        if entity_type is not None:
            stmt = stmt.where(AuditLog.entity_type == EntityType(entity_type).value)
        if entity_id is not None:
            stmt = stmt.where(AuditLog.entity_id == entity_id)
        stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.log_id).limit(limit).offset(offset)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [AuditLogEntry.from_record(r) for r in result.scalars().all()]
