"""Shared test fixtures."""
import os
import sys
import random
import threading
import pytest
import tempfile

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import load_config
from engine.audit import AuditLog
from engine.builder import build_engine
from engine.rules_manager import RulesManager
from engine.statistics import StatisticsAggregator
from models.database import Database
from models.events import Event
from models.rules import Rule, RuleAction, RuleCondition, new_id


class RecordingExecutor:
    """Action executor that records calls instead of touching the outside world."""

    def __init__(self, fail_types=()):
        self.calls = []
        self.fail_types = set(fail_types)
        self._lock = threading.Lock()

    def execute(self, action_type, config, event, rule):
        with self._lock:
            self.calls.append((action_type, rule.id, event.id))
        if action_type in self.fail_types:
            raise RuntimeError(f"{action_type} unavailable")
        if action_type == "create_alert":
            return {"alert_id": new_id("alert"), "severity": config.get("severity", event.severity)}
        return {"ok": True}


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    db = Database(db_path)
    db.connect()
    yield db
    db.close()
    os.unlink(db_path)


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def audit_log():
    return AuditLog()


@pytest.fixture
def stats():
    return StatisticsAggregator()


@pytest.fixture
def rules_manager(audit_log, stats):
    return RulesManager(audit_log, statistics=stats)


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def engine(config, executor):
    """Fully wired in-memory engine with a recording executor and seeded routing."""
    components = build_engine(config, executor=executor, rng=random.Random(42))
    yield components
    components["scheduler"].shutdown()


@pytest.fixture
def make_rule():
    def _make(name="Rule", conditions=None, actions=None, priority=0, **kwargs):
        return Rule(
            name=name,
            conditions=[c if isinstance(c, RuleCondition) else RuleCondition(**c) for c in (conditions or [])],
            actions=[a if isinstance(a, RuleAction) else RuleAction(**a) for a in (actions or [])],
            priority=priority,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_event():
    def _make(**kwargs):
        kwargs.setdefault("type", "system")
        kwargs.setdefault("source", "api-gateway")
        kwargs.setdefault("title", "High CPU usage")
        kwargs.setdefault("severity", "warning")
        return Event(**kwargs)
    return _make
