"""
Flask JSON query API for the rules engine.

Endpoints (read-only):
  GET /api/rules                         Rules with statistics; filter with active, tag, search;
                                         order with sort and order=asc|desc
  GET /api/rules/<id>                    One rule with statistics
  GET /api/rules/<id>/statistics         Rule statistics only
  GET /api/rules/<id>/audit              Audit entries for a rule, newest first (?action=&limit=)
  GET /api/rules/<id>/abtests            A/B tests using the rule as base
  GET /api/rules/<id>/alerts             Alerts created by the rule
  GET /api/audit                         Audit entries across all rules (?action=&limit=)
  GET /api/abtests/<id>                  One A/B test with its result history
  GET /api/abtests/<id>/results          Latest result per variant
  GET /api/analytics                     Roll-up of rule performance
  GET /api/templates                     Rule templates (?search=&category=)
  GET /health                            Liveness probe

Started via: python main.py web [--port 5000] [--host 127.0.0.1]
"""
import logging

from flask import Flask, jsonify, request

from engine.errors import ABTestNotFoundError, RuleNotFoundError, RulesEngineError

logger = logging.getLogger("opsrules.web.app")

MAX_LIMIT = 500


def create_app(config: dict, engines: dict) -> Flask:
    """
    Factory function. Receives initialized components from main.py or wsgi.py.

    Args:
        config: Application config dict
        engines: dict of wired components (rules, statistics, audit, ab_engine, db)
    """
    app = Flask(__name__)

    rules = engines["rules"]
    statistics = engines["statistics"]
    audit = engines["audit"]
    ab_engine = engines["ab_engine"]
    db = engines.get("db")

    def _limit(default=50):
        raw = request.args.get("limit")
        if raw is None or raw == "":
            return default
        try:
            return max(1, min(int(raw), MAX_LIMIT))
        except ValueError:
            raise ValueError(f"limit must be an integer, got {raw!r}")

    def _flag(name):
        value = request.args.get(name)
        if value is None or value == "":
            return None
        return value.lower() in ("1", "true", "yes")

    # ─── Errors ──────────────────────────────────────────

    @app.errorhandler(RuleNotFoundError)
    @app.errorhandler(ABTestNotFoundError)
    def not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(RulesEngineError)
    def bad_request(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(ValueError)
    def bad_value(e):
        return jsonify({"error": str(e)}), 400

    # ─── Rules ───────────────────────────────────────────

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "active_rules": len(rules.snapshot())})

    @app.route("/api/rules")
    def api_rules():
        found = rules.list_rules(
            active=_flag("active"),
            tag=request.args.get("tag") or None,
            search=request.args.get("search") or None,
            sort_by=request.args.get("sort", "priority"),
            descending=request.args.get("order", "desc").lower() != "asc",
        )
        return jsonify({
            "rules": [r.to_dict(statistics.get(r.id)) for r in found],
            "count": len(found),
        })

    @app.route("/api/rules/<rule_id>")
    def api_rule(rule_id):
        rule = rules.require_rule(rule_id)
        return jsonify(rule.to_dict(statistics.get(rule.id)))

    @app.route("/api/rules/<rule_id>/statistics")
    def api_rule_statistics(rule_id):
        rule = rules.require_rule(rule_id, include_deleted=True)
        return jsonify(statistics.get(rule.id).to_dict())

    @app.route("/api/rules/<rule_id>/audit")
    def api_rule_audit(rule_id):
        rules.require_rule(rule_id, include_deleted=True)
        entries = audit.entries(rule_id=rule_id, action=request.args.get("action") or None, limit=_limit())
        return jsonify({"entries": [e.to_dict() for e in entries], "count": len(entries)})

    @app.route("/api/rules/<rule_id>/abtests")
    def api_rule_abtests(rule_id):
        rules.require_rule(rule_id, include_deleted=True)
        tests = ab_engine.get_tests(rule_id)
        return jsonify({"tests": [t.to_dict(include_results=False) for t in tests], "count": len(tests)})

    @app.route("/api/rules/<rule_id>/alerts")
    def api_rule_alerts(rule_id):
        rules.require_rule(rule_id, include_deleted=True)
        alerts = db.get_alerts_for_rule(rule_id, limit=_limit()) if db is not None else []
        return jsonify({"alerts": alerts, "count": len(alerts)})

    # ─── Audit ───────────────────────────────────────────

    @app.route("/api/audit")
    def api_audit():
        entries = audit.entries(action=request.args.get("action") or None, limit=_limit())
        return jsonify({"entries": [e.to_dict() for e in entries], "count": len(entries)})

    # ─── A/B Tests ───────────────────────────────────────

    @app.route("/api/abtests/<test_id>")
    def api_abtest(test_id):
        test = ab_engine.get_test(test_id)
        data = test.to_dict()
        data["metrics"] = {vid: m.to_dict() for vid, m in ab_engine.get_metrics(test_id).items()}
        return jsonify(data)

    @app.route("/api/abtests/<test_id>/results")
    def api_abtest_results(test_id):
        latest = {}
        for result in ab_engine.get_results(test_id):
            latest[result.variant_id] = result
        return jsonify({"test_id": test_id, "results": [r.to_dict() for r in latest.values()]})

    # ─── Analytics / Templates ───────────────────────────

    @app.route("/api/analytics")
    def api_analytics():
        return jsonify(statistics.summary(rules.get_all_rules()))

    @app.route("/api/templates")
    def api_templates():
        templates = rules.get_templates(request.args.get("search", ""), request.args.get("category") or None)
        return jsonify({"templates": [t.to_dict() for t in templates], "count": len(templates)})

    return app
