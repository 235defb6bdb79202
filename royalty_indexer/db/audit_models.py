"""
Audit Log Database Models.

Every settlement, reconciliation and withdrawal leaves an entry with the
ledger state before and after, so balances can be traced back to sales.
"""

from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, Enum, Index, String, Text
from sqlalchemy.sql import func

from .base import Base

audit_action_enum = Enum(
    "sale_settled",
    "sale_reconciled",
    "royalties_withdrawn",
    name="audit_action",
)


class AuditLogModel(Base):
    """Audit log entry for a ledger mutation."""

    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True)
    ts = Column(DateTime(timezone=True), nullable=False, default=func.now(), index=True)

    # Who performed the action (e.g. "processor", "sweep", "cli")
    actor_id = Column(String(128), nullable=False, index=True)

    action = Column(audit_action_enum, nullable=False, index=True)

    # What was affected
    entity_kind = Column(String(50), nullable=False)
    entity_id = Column(String(200), nullable=False)

    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    note = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_kind", "entity_id"),
        Index("ix_audit_log_entity_ts", "entity_kind", "entity_id", "ts"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "ts": self.ts.isoformat() if self.ts else None,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "note": self.note,
        }
