"""Enums for conditions, actions, audit entries, A/B tests, and events."""
from enum import Enum


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    REGEX = "regex"
    IN = "in"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ActionType(str, Enum):
    CREATE_ALERT = "create_alert"
    SEND_NOTIFICATION = "send_notification"
    ESCALATE = "escalate"
    TAG_EVENT = "tag_event"
    WEBHOOK = "webhook"


class AuditAction(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    TRIGGERED = "triggered"
    EVALUATED = "evaluated"
    AB_TEST_STARTED = "ab_test_started"
    AB_TEST_COMPLETED = "ab_test_completed"


class ABTestStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class VariantStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    COMPLETED = "completed"
    PAUSED = "paused"


class ActionStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class EventType(str, Enum):
    SYSTEM = "system"
    APPLICATION = "application"
    SECURITY = "security"
    PERFORMANCE = "performance"
    AUTH = "auth"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"
    LOW = "low"


class LinkageType(str, Enum):
    TRIGGERED_BY = "triggered_by"
    MODIFIED_BY = "modified_by"
    TESTED_AGAINST = "tested_against"
