"""
Audit Log Service.

Entries are added to the caller's session and committed with the ledger
mutation they describe, never on their own.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from .audit_models import AuditLogModel


class AuditService:
    """Service for managing audit log entries.

    Usage:
        audit = AuditService(db_session)
        audit.log_settlement(sale_id, after={...}, actor_id="sweep")
        db_session.commit()
    """

    def __init__(self, db: Session):
        self.db = db

    def _record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        actor_id: str,
        note: Optional[str],
    ) -> AuditLogModel:
        entry = AuditLogModel(
            id=str(uuid.uuid4()),
            ts=datetime.now(timezone.utc),
            actor_id=actor_id,
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
        )
        self.db.add(entry)
        return entry

    def log_settlement(
        self,
        sale_id: str,
        after: Dict[str, Any],
        actor_id: str = "system",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the settlement of a sale.

        Args:
            sale_id: ID of the settled sale
            after: Settlement summary (total, allocation count, flags)
            actor_id: Component that performed the settlement
            note: Optional human-readable note

        Returns:
            The pending AuditLogModel
        """
        return self._record(
            "sale_settled", "Sale", sale_id, {"settled": False}, after, actor_id, note
        )

    def log_reconciliation(
        self,
        sale_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        actor_id: str = "system",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log allocations added to an incompletely resolved sale."""
        return self._record(
            "sale_reconciled", "Sale", sale_id, before, after, actor_id, note
        )

    def log_withdrawal(
        self,
        beneficiary: str,
        amount: int,
        actor_id: str = "system",
    ) -> AuditLogModel:
        """Log a withdrawal draining a pending balance."""
        return self._record(
            "royalties_withdrawn",
            "PendingRoyalty",
            beneficiary,
            {"amount": str(amount)},
            {"amount": "0"},
            actor_id,
            f"Withdrew {amount}",
        )

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get audit history for a specific entity, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(desc(AuditLogModel.ts))
            .offset(offset)
            .limit(limit)
            .all()
        )
