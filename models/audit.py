"""Audit trail records for rule mutations and evaluations."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.enums import AuditAction
from models.rules import format_timestamp, new_id, parse_timestamp, utc_now


@dataclass(frozen=True)
class RuleChangeLog:
    field: str
    old_value: Any = None
    new_value: Any = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleChangeLog":
        return cls(
            field=data["field"],
            old_value=data.get("old_value"),
            new_value=data.get("new_value"),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class RuleAuditLog:
    """A single immutable audit entry. ``sequence`` orders entries globally."""
    rule_id: str
    action: AuditAction
    user_id: str
    timestamp: datetime = field(default_factory=utc_now)
    changes: Optional[RuleChangeLog] = None
    metadata: Optional[Dict[str, Any]] = None
    impacted_alerts: Optional[List[str]] = None
    sequence: int = 0
    id: str = field(default_factory=lambda: new_id("audit"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "action": self.action.value,
            "user_id": self.user_id,
            "timestamp": format_timestamp(self.timestamp),
            "changes": self.changes.to_dict() if self.changes else None,
            "metadata": dict(self.metadata) if self.metadata else None,
            "impacted_alerts": list(self.impacted_alerts) if self.impacted_alerts else None,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleAuditLog":
        changes = data.get("changes")
        return cls(
            id=data.get("id") or new_id("audit"),
            rule_id=data["rule_id"],
            action=AuditAction(data["action"]),
            user_id=data.get("user_id", "system"),
            timestamp=parse_timestamp(data.get("timestamp")) or utc_now(),
            changes=RuleChangeLog.from_dict(changes) if changes else None,
            metadata=data.get("metadata"),
            impacted_alerts=data.get("impacted_alerts"),
            sequence=int(data.get("sequence", 0)),
        )
