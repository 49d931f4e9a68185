"""
Audit Log Repository - append-only trail of entity changes

Use cases call this explicitly after a mutation; nothing is recorded
implicitly on flush.
"""
from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session

from expense_tracker.infrastructure.db.models import AuditLogModel
from expense_tracker.utils.dates import utcnow

ENTITY_TYPES = frozenset({"User", "Family", "Expense", "Budget", "RecurringExpense"})
ACTIONS = frozenset({
    "CREATE", "UPDATE", "DELETE", "SOFT_DELETE", "RESTORE",
    "APPROVE", "REJECT", "MATERIALIZE", "DEACTIVATE", "RESET",
})


class AuditLogRepository:

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        entity_type: str,
        entity_id: int,
        action: str,
        changes: Optional[Dict[str, Any]] = None,
        user_id: Optional[int] = None,
        family_id: Optional[int] = None,
        occurred_at: Optional[datetime] = None,
    ) -> int:
        """
        Add an audit record to the current transaction (flush only, no commit)

        Args:
            entity_type: One of ENTITY_TYPES
            entity_id: ID of the changed row
            action: One of ACTIONS
            changes: JSON-serializable snapshot of what changed
            user_id: Who performed the action (None for background jobs)
            family_id: Family context, if any
            occurred_at: When it happened (default: now)

        Returns:
            audit record ID

        Example:
            >>> repo = AuditLogRepository(db)
            >>> repo.append("Expense", 42, "APPROVE", {"approved_by": 7}, user_id=7)
        """
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"unknown entity_type: {entity_type}")
        if action not in ACTIONS:
            raise ValueError(f"unknown action: {action}")

        record = AuditLogModel(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            user_id=user_id,
            family_id=family_id,
            changes=changes or {},
            occurred_at=occurred_at or utcnow(),
        )
        self.db.add(record)
        self.db.flush()
        return record.id

    def get_trail(self, entity_type: str, entity_id: int, limit: int = 50) -> List[AuditLogModel]:
        """
        Audit trail of one entity, newest first
        """
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_type == entity_type,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(AuditLogModel.occurred_at.desc(), AuditLogModel.id.desc())
            .limit(limit)
            .all()
        )
