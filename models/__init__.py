"""Data models."""
from models.enums import (
    ConditionOperator, LogicalOperator, ActionType, AuditAction, ABTestStatus,
    VariantStatus, ActionStatus, EventType, Severity, LinkageType,
)
from models.rules import (
    Rule, RuleCondition, RuleAction, RuleStatistics, RuleTemplate,
    StringValue, NumberValue, BoolValue, ListValue, condition_value,
)
from models.events import Event
from models.audit import RuleAuditLog, RuleChangeLog
from models.abtest import ABTest, ABTestVariant, ABTestResult, VariantMetrics
from models.alerts import AlertRecord, AlertRuleLinkage
