import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, Uuid, event, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # NULL actor means the action was system-initiated (seeding, CLI)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    action: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True
    )  # e.g. 'created', 'updated', 'deleted', 'roles_synced'
    target_type: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True
    )  # e.g. 'user', 'role', 'settings'
    target_id: Mapped[str | None] = mapped_column(String(255), index=True)
    target_name: Mapped[str | None] = mapped_column(String(255))
    properties: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )


class AppendOnlyViolation(RuntimeError):
    """Raised when the ORM is asked to modify or delete an audit entry."""


@event.listens_for(AuditLog, "before_update")
def _reject_update(mapper, connection, target: AuditLog) -> None:
    raise AppendOnlyViolation(f"audit log entry {target.id} is append-only")


@event.listens_for(AuditLog, "before_delete")
def _reject_delete(mapper, connection, target: AuditLog) -> None:
    raise AppendOnlyViolation(f"audit log entry {target.id} is append-only")
