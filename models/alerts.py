"""Dataclasses for alerts materialized by rules and their rule linkage."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.enums import LinkageType
from models.rules import format_timestamp, new_id, utc_now


@dataclass
class AlertRecord:
    rule_id: str = ""
    rule_name: str = ""
    title: str = ""
    description: str = ""
    severity: str = "warning"
    status: str = "active"
    source: str = ""
    tags: List[str] = field(default_factory=list)
    assigned_team: Optional[str] = None
    related_events: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = new_id("alert")

    @property
    def message(self):
        return self.description or self.title

    @property
    def triggered_at(self):
        return self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "status": self.status,
            "source": self.source,
            "tags": list(self.tags),
            "assigned_team": self.assigned_team,
            "related_events": list(self.related_events),
            "metadata": dict(self.metadata),
            "created_at": format_timestamp(self.created_at),
        }


@dataclass
class AlertRuleLinkage:
    alert_id: str
    rule_id: str
    linkage_type: LinkageType = LinkageType.TRIGGERED_BY
    confidence: float = 1.0
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "rule_id": self.rule_id,
            "linkage_type": self.linkage_type.value,
            "confidence": self.confidence,
            "context": dict(self.context),
            "timestamp": format_timestamp(self.timestamp),
        }
