"""Dataclasses for rules, their conditions, actions, and statistics."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from models.enums import ActionType, ConditionOperator, LogicalOperator


def new_id(prefix):
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def utc_now():
    return datetime.now(timezone.utc)


def parse_timestamp(value):
    """Parse an ISO-8601 string (or pass through a datetime); None stays None."""
    if value is None or isinstance(value, datetime):
        return value
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value):
    return value.isoformat() if value else None


# ── Condition values ────────────────────────────────────
#
# Condition values are stored as a tagged union so the evaluator can dispatch
# on the expected type instead of relying on implicit coercion.


@dataclass(frozen=True)
class StringValue:
    value: str

    @property
    def raw(self):
        return self.value


@dataclass(frozen=True)
class NumberValue:
    value: float

    @property
    def raw(self):
        if isinstance(self.value, float) and self.value.is_integer():
            return int(self.value)
        return self.value


@dataclass(frozen=True)
class BoolValue:
    value: bool

    @property
    def raw(self):
        return self.value


@dataclass(frozen=True)
class ListValue:
    items: tuple

    @property
    def raw(self):
        return [item.raw for item in self.items]


def condition_value(raw) -> Any:
    """Wrap a plain JSON-ish value in its ConditionValue tag."""
    if isinstance(raw, (StringValue, NumberValue, BoolValue, ListValue)):
        return raw
    # bool first: bool is a subclass of int
    if isinstance(raw, bool):
        return BoolValue(raw)
    if isinstance(raw, (int, float)):
        return NumberValue(float(raw))
    if isinstance(raw, (list, tuple, set, frozenset)):
        return ListValue(tuple(condition_value(item) for item in raw))
    if raw is None:
        return StringValue("")
    return StringValue(str(raw))


# ── Rule parts ──────────────────────────────────────────


@dataclass
class RuleCondition:
    field: str
    operator: ConditionOperator
    value: Any
    logical_operator: Optional[LogicalOperator] = None
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = new_id("cond")
        if not isinstance(self.operator, ConditionOperator):
            self.operator = ConditionOperator(self.operator)
        if self.logical_operator is not None and not isinstance(self.logical_operator, LogicalOperator):
            self.logical_operator = LogicalOperator(str(self.logical_operator).upper())
        self.value = condition_value(self.value)

    def describe(self):
        return f"{self.field} {self.operator.value} {self.value.raw!r}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "field": self.field,
            "operator": self.operator.value,
            "value": self.value.raw,
            "logical_operator": self.logical_operator.value if self.logical_operator else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleCondition":
        return cls(
            id=data.get("id", ""),
            field=data["field"],
            operator=data["operator"],
            value=data.get("value"),
            logical_operator=data.get("logical_operator") or data.get("logicalOperator"),
        )


@dataclass
class RuleAction:
    type: ActionType
    config: Dict[str, Any] = field(default_factory=dict)
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = new_id("act")
        if not isinstance(self.type, ActionType):
            self.type = ActionType(self.type)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type.value, "config": dict(self.config)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleAction":
        return cls(id=data.get("id", ""), type=data["type"], config=dict(data.get("config") or {}))


@dataclass
class RuleStatistics:
    """Per-rule counters. Only the StatisticsAggregator mutates these."""
    times_triggered: int = 0
    alerts_created: int = 0
    last_triggered: Optional[datetime] = None
    average_execution_time: float = 0.0
    success_rate: float = 100.0
    evaluation_count: int = 0
    false_positive_rate: float = 0.0
    performance_impact_score: float = 1.0
    successful_evaluations: int = 0
    failed_evaluations: int = 0
    action_failures: int = 0
    true_positives: int = 0
    false_positives: int = 0
    cpu_usage: float = 0.0
    memory_usage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "times_triggered": self.times_triggered,
            "alerts_created": self.alerts_created,
            "last_triggered": format_timestamp(self.last_triggered),
            "average_execution_time": round(self.average_execution_time, 4),
            "success_rate": round(self.success_rate, 2),
            "evaluation_count": self.evaluation_count,
            "false_positive_rate": round(self.false_positive_rate, 2),
            "performance_impact_score": self.performance_impact_score,
            "successful_evaluations": self.successful_evaluations,
            "failed_evaluations": self.failed_evaluations,
            "action_failures": self.action_failures,
            "true_positives": self.true_positives,
            "false_positives": self.false_positives,
            "cpu_usage": self.cpu_usage,
            "memory_usage": self.memory_usage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleStatistics":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["last_triggered"] = parse_timestamp(known.get("last_triggered"))
        return cls(**known)


@dataclass
class Rule:
    name: str
    conditions: List[RuleCondition] = field(default_factory=list)
    actions: List[RuleAction] = field(default_factory=list)
    priority: int = 0
    description: str = ""
    is_active: bool = True
    tags: List[str] = field(default_factory=list)
    created_by: str = "system"
    last_modified_by: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    id: str = ""
    sequence: int = 0
    is_deleted: bool = False

    def __post_init__(self):
        if not self.id:
            self.id = new_id("rule")
        if not self.last_modified_by:
            self.last_modified_by = self.created_by
        self.priority = int(self.priority)

    def to_dict(self, statistics: Optional[RuleStatistics] = None) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "priority": self.priority,
            "tags": list(self.tags),
            "created_by": self.created_by,
            "last_modified_by": self.last_modified_by,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "sequence": self.sequence,
            "is_deleted": self.is_deleted,
        }
        if statistics is not None:
            data["statistics"] = statistics.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        return cls(
            id=data.get("id", ""),
            name=data["name"],
            description=data.get("description", ""),
            is_active=data.get("is_active", True),
            conditions=[RuleCondition.from_dict(c) for c in data.get("conditions", [])],
            actions=[RuleAction.from_dict(a) for a in data.get("actions", [])],
            priority=data.get("priority", 0),
            tags=list(data.get("tags", [])),
            created_by=data.get("created_by", "system"),
            last_modified_by=data.get("last_modified_by", ""),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(data.get("updated_at")) or utc_now(),
            sequence=int(data.get("sequence", 0)),
            is_deleted=bool(data.get("is_deleted", False)),
        )


@dataclass
class RuleTemplate:
    """Reusable starting point for a rule (conditions and actions without ids)."""
    id: str
    name: str
    description: str = ""
    category: str = "General"
    conditions: List[Dict[str, Any]] = field(default_factory=list)
    actions: List[Dict[str, Any]] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    def matches(self, search="", category=None):
        if category and category != "all" and self.category != category:
            return False
        if not search:
            return True
        needle = search.lower()
        return (
            needle in self.name.lower()
            or needle in self.description.lower()
            or any(needle in tag.lower() for tag in self.tags)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "conditions": [dict(c) for c in self.conditions],
            "actions": [dict(a) for a in self.actions],
            "tags": list(self.tags),
        }
