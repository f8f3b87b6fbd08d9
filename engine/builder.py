"""Wire the engine components together from a loaded config."""
import logging
from pathlib import Path

from engine.abtest import ABTestEngine
from engine.audit import AuditLog
from engine.channels import build_channels
from engine.dispatcher import ActionDispatcher
from engine.executors import DefaultActionExecutor
from engine.jobs import EngineJobs
from engine.matcher import RuleMatcher
from engine.rules_manager import RulesManager
from engine.scheduler import EvaluationScheduler
from engine.statistics import StatisticsAggregator

logger = logging.getLogger("opsrules.engine")

DEFAULT_TEMPLATES = Path(__file__).parent.parent / "config" / "rule_templates.yaml"


def build_engine(config, db=None, interactive=False, executor=None, rng=None):
    """Return a dict of wired components, loaded from ``db`` when given."""
    engine_cfg = config.get("engine", {})

    audit = AuditLog(store=db, batch_size=config.get("audit", {}).get("batch_size", 1))
    statistics = StatisticsAggregator(config)
    templates = config.get("templates", {}).get("path") or DEFAULT_TEMPLATES
    rules = RulesManager(audit, statistics=statistics, db=db, templates_path=templates)
    ab_engine = ABTestEngine(rules, audit, db=db, rng=rng, config=config)

    if executor is None:
        executor = DefaultActionExecutor(db=db, channels=build_channels(config, interactive), config=config)
    dispatcher = ActionDispatcher(
        executor,
        max_workers=engine_cfg.get("action_workers", 4),
        timeout=engine_cfg.get("action_timeout_seconds", 5.0),
    )
    scheduler = EvaluationScheduler(
        rules, statistics, audit, dispatcher,
        matcher=RuleMatcher(),
        ab_engine=ab_engine,
        max_workers=engine_cfg.get("max_workers", 4),
        audit_evaluations=config.get("audit", {}).get("record_evaluations", True),
    )
    jobs = EngineJobs(audit, statistics, ab_engine=ab_engine, db=db, config=config)

    if db is not None:
        rules.load()
        ab_engine.load()

    logger.debug(f"Engine built ({len(rules.snapshot())} active rules)")
    return {
        "config": config,
        "db": db,
        "audit": audit,
        "statistics": statistics,
        "rules": rules,
        "ab_engine": ab_engine,
        "dispatcher": dispatcher,
        "scheduler": scheduler,
        "jobs": jobs,
    }
