"""Operational event records produced by the ingestion side."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.rules import format_timestamp, new_id, parse_timestamp, utc_now

_MISSING = object()


@dataclass
class Event:
    type: str = "system"
    source: str = ""
    title: str = ""
    description: str = ""
    severity: str = "info"
    summary: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    correlation_id: Optional[str] = None
    promoted: bool = False
    promoted_alert_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = new_id("evt")

    def get_field(self, name):
        """Resolve a rule condition field against this event.

        Lookup order: top-level attribute, dotted path (``metadata.cpu``),
        then a bare key in ``metadata`` and finally in ``payload``.
        Returns None when nothing matches.
        """
        if not name:
            return None
        if name in self.__dataclass_fields__:
            value = getattr(self, name)
            return format_timestamp(value) if isinstance(value, datetime) else value

        if "." in name:
            head, *rest = name.split(".")
            current = getattr(self, head, _MISSING) if head in self.__dataclass_fields__ else _MISSING
            if current is _MISSING:
                current = self.metadata.get(head, self.payload.get(head, _MISSING))
            for part in rest:
                if isinstance(current, dict) and part in current:
                    current = current[part]
                else:
                    return None
            return None if current is _MISSING else current

        if name in self.metadata:
            return self.metadata[name]
        return self.payload.get(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": format_timestamp(self.timestamp),
            "type": self.type,
            "source": self.source,
            "title": self.title,
            "summary": self.summary,
            "description": self.description,
            "severity": self.severity,
            "metadata": dict(self.metadata),
            "payload": dict(self.payload),
            "tags": list(self.tags),
            "correlation_id": self.correlation_id,
            "promoted": self.promoted,
            "promoted_alert_id": self.promoted_alert_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        return cls(
            id=data.get("id", ""),
            timestamp=parse_timestamp(data.get("timestamp")) or utc_now(),
            type=data.get("type", "system"),
            source=data.get("source", ""),
            title=data.get("title", ""),
            summary=data.get("summary", ""),
            description=data.get("description", ""),
            severity=data.get("severity", "info"),
            metadata=dict(data.get("metadata") or {}),
            payload=dict(data.get("payload") or {}),
            tags=list(data.get("tags") or []),
            correlation_id=data.get("correlation_id"),
            promoted=bool(data.get("promoted", False)),
            promoted_alert_id=data.get("promoted_alert_id"),
        )
