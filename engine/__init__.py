"""Rule evaluation and experimentation engine."""
from engine.abtest import ABTestEngine
from engine.audit import AuditLog
from engine.builder import build_engine
from engine.conditions import ConditionEvaluator
from engine.dispatcher import ActionDispatcher
from engine.matcher import RuleMatcher
from engine.rules_manager import RulesManager
from engine.scheduler import EvaluationScheduler
from engine.statistics import StatisticsAggregator
