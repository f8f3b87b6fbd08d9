#!/usr/bin/env python3
"""Ops Rules Engine - CLI Entry Point."""
import sys
import json
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import click
import yaml
from rich.console import Console
from rich.table import Table

from __version__ import __version__

console = Console()


def _init_components(config_path=None, verbose=False):
    """Lazy initialization of all components."""
    from utils.logger import setup_logging
    from config import load_config
    from models.database import Database
    from engine.builder import build_engine

    config = load_config(config_path)
    log_cfg = config.get("logging", {})
    setup_logging("DEBUG" if verbose else log_cfg.get("level", "INFO"), log_cfg.get("file"))

    db = Database(config["database"]["path"])
    db.connect()

    # Console notifications only when running interactively
    return build_engine(config, db=db, interactive=sys.stdout.isatty())


def _close_components(c):
    """Flush buffered audit entries and statistics, then release resources."""
    c["jobs"].flush_job()
    c["scheduler"].shutdown(wait=True)
    c["db"].close()


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="opsrules")
@click.pass_context
def cli(ctx, config_path, verbose):
    """Ops Rules Engine - evaluate events against rules, audit changes, A/B test rule variants."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _get_components(ctx):
    root = ctx.find_root()
    if "_components" not in root.obj:
        root.obj["_components"] = _init_components(root.obj.get("config_path"), root.obj.get("verbose"))
        root.call_on_close(lambda: _close_components(root.obj["_components"]))
    return root.obj["_components"]


def _fail(message):
    console.print(f"[red]✗[/red] {message}")
    sys.exit(1)


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


def _load_events(path):
    """Events from a JSON object, a JSON array, or JSON lines."""
    from models.events import Event

    text = Path(path).read_text().strip()
    if not text:
        return []
    try:
        data = json.loads(text)
        records = data if isinstance(data, list) else [data]
    except json.JSONDecodeError:
        records = [json.loads(line) for line in text.splitlines() if line.strip()]
    return [Event.from_dict(r) for r in records]


def _status_mark(ok):
    return "[green]✓[/green]" if ok else "[red]✗[/red]"


# ──────────────────────────────────────────────────────
# RULES
# ──────────────────────────────────────────────────────
@cli.group()
def rules():
    """Rule management."""
    pass


@rules.command("list")
@click.option("--active/--inactive", default=None, help="Filter by active state")
@click.option("--tag", default=None, help="Only rules with this tag")
@click.option("--search", default=None, help="Search name and description")
@click.option("--sort", "sort_by", default="priority",
              type=click.Choice(["priority", "name", "created_at", "updated_at", "times_triggered",
                                 "success_rate", "average_execution_time", "evaluation_count"]))
@click.option("--asc", is_flag=True, help="Ascending order")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def rules_list(ctx, active, tag, search, sort_by, asc, as_json):
    """List rules with their statistics."""
    from utils.formatters import format_ms, format_pct, time_ago

    c = _get_components(ctx)
    found = c["rules"].list_rules(active=active, tag=tag, search=search, sort_by=sort_by, descending=not asc)
    if as_json:
        _echo_json([r.to_dict(c["statistics"].get(r.id)) for r in found])
        return
    if not found:
        console.print("[dim]No rules found[/dim]")
        return

    table = Table(title="Rules", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Priority", justify="right")
    table.add_column("Active")
    table.add_column("Triggered", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Avg Time", justify="right")
    table.add_column("Last Triggered")
    for r in found:
        s = c["statistics"].get(r.id)
        table.add_row(r.id, r.name, str(r.priority), _status_mark(r.is_active), str(s.times_triggered),
                      format_pct(s.success_rate, with_color=True), format_ms(s.average_execution_time),
                      time_ago(s.last_triggered))
    console.print(table)


@rules.command("show")
@click.argument("rule_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def rules_show(ctx, rule_id, as_json):
    """Show one rule with its conditions, actions and statistics."""
    from engine.errors import RuleNotFoundError
    from utils.formatters import format_ms, format_pct

    c = _get_components(ctx)
    try:
        rule = c["rules"].require_rule(rule_id)
    except RuleNotFoundError as e:
        _fail(str(e))
    stats = c["statistics"].get(rule.id)
    if as_json:
        _echo_json(rule.to_dict(stats))
        return

    console.print(f"[bold]{rule.name}[/bold] [dim]({rule.id})[/dim]")
    if rule.description:
        console.print(f"  {rule.description}")
    console.print(f"  Priority {rule.priority}  Active {_status_mark(rule.is_active)}  Tags: {', '.join(rule.tags) or '-'}")
    console.print("\n[bold]Conditions[/bold]")
    for i, cond in enumerate(rule.conditions):
        joiner = f" {cond.logical_operator.value}" if cond.logical_operator and i < len(rule.conditions) - 1 else ""
        console.print(f"  {i + 1}. {cond.describe()}{joiner}")
    console.print("\n[bold]Actions[/bold]")
    for i, action in enumerate(rule.actions):
        console.print(f"  {i + 1}. {action.type.value} {json.dumps(action.config) if action.config else ''}")
    console.print(
        f"\n[bold]Statistics[/bold]  evaluations {stats.evaluation_count}, triggered {stats.times_triggered}, "
        f"success {format_pct(stats.success_rate)}, avg {format_ms(stats.average_execution_time)}, "
        f"false positives {format_pct(stats.false_positive_rate)}, impact {stats.performance_impact_score}/10"
    )


@rules.command("create")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--user", default="cli", help="User recorded in the audit log")
@click.pass_context
def rules_create(ctx, path, user):
    """Create a rule from a YAML or JSON definition file."""
    from engine.errors import RulesEngineError

    c = _get_components(ctx)
    with open(path) as f:
        data = yaml.safe_load(f)
    try:
        rule = c["rules"].create_rule(data, user_id=user)
    except (RulesEngineError, KeyError, TypeError, ValueError) as e:
        _fail(f"Invalid rule definition: {e}")
    console.print(f"[green]✓[/green] Created rule {rule.id} ({rule.name})")


@rules.command("from-template")
@click.argument("template_id")
@click.option("--name", default=None, help="Rule name (default: template name)")
@click.option("--priority", default=0, type=int)
@click.option("--inactive", is_flag=True, help="Create the rule disabled")
@click.option("--user", default="cli", help="User recorded in the audit log")
@click.pass_context
def rules_from_template(ctx, template_id, name, priority, inactive, user):
    """Create a rule from a template."""
    from engine.errors import ValidationError

    c = _get_components(ctx)
    try:
        rule = c["rules"].apply_template(template_id, user_id=user, name=name,
                                         priority=priority, is_active=not inactive)
    except ValidationError as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] Created rule {rule.id} from template {template_id}")


@rules.command("templates")
@click.option("--search", default="", help="Search name, description and tags")
@click.option("--category", default=None, help="Filter by category")
@click.pass_context
def rules_templates(ctx, search, category):
    """List rule templates."""
    c = _get_components(ctx)
    templates = c["rules"].get_templates(search, category)
    if not templates:
        console.print("[dim]No templates match[/dim]")
        return
    table = Table(title="Rule Templates", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Actions")
    table.add_column("Tags", style="dim")
    for t in templates:
        table.add_row(t.id, t.name, t.category, ", ".join(a["type"] for a in t.actions), ", ".join(t.tags))
    console.print(table)


def _set_active(ctx, rule_id, is_active, user, reason):
    from engine.errors import RulesEngineError

    c = _get_components(ctx)
    try:
        if is_active is None:
            rule = c["rules"].toggle_rule(rule_id, user_id=user, reason=reason)
        else:
            rule = c["rules"].set_active(rule_id, is_active, user_id=user, reason=reason)
    except RulesEngineError as e:
        _fail(str(e))
    state = "[green]active[/green]" if rule.is_active else "[yellow]inactive[/yellow]"
    console.print(f"Rule {rule.id} is now {state}")


@rules.command("enable")
@click.argument("rule_id")
@click.option("--user", default="cli")
@click.option("--reason", default=None)
@click.pass_context
def rules_enable(ctx, rule_id, user, reason):
    """Activate a rule."""
    _set_active(ctx, rule_id, True, user, reason)


@rules.command("disable")
@click.argument("rule_id")
@click.option("--user", default="cli")
@click.option("--reason", default=None)
@click.pass_context
def rules_disable(ctx, rule_id, user, reason):
    """Deactivate a rule."""
    _set_active(ctx, rule_id, False, user, reason)


@rules.command("toggle")
@click.argument("rule_id")
@click.option("--user", default="cli")
@click.option("--reason", default=None)
@click.pass_context
def rules_toggle(ctx, rule_id, user, reason):
    """Flip a rule between active and inactive."""
    _set_active(ctx, rule_id, None, user, reason)


@rules.command("delete")
@click.argument("rule_id")
@click.option("--user", default="cli")
@click.option("--reason", default=None)
@click.pass_context
def rules_delete(ctx, rule_id, user, reason):
    """Delete a rule. Refused while an A/B test still uses it."""
    from engine.errors import RuleInUseError, RuleNotFoundError

    c = _get_components(ctx)
    try:
        c["rules"].delete_rule(rule_id, user_id=user, reason=reason)
    except RuleInUseError as e:
        _fail(f"{e}. Complete or cancel the test first.")
    except RuleNotFoundError as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] Deleted rule {rule_id}")


@rules.command("feedback")
@click.argument("rule_id")
@click.option("--false-positive/--true-positive", "false_positive", required=True,
              help="Reviewer verdict on the rule's latest trigger")
@click.pass_context
def rules_feedback(ctx, rule_id, false_positive):
    """Record a reviewer verdict on a rule trigger."""
    from utils.formatters import format_pct

    c = _get_components(ctx)
    if c["rules"].get_rule(rule_id) is None:
        _fail(f"Rule not found: {rule_id}")
    stats = c["statistics"].record_feedback(rule_id, false_positive)
    console.print(f"Rule {rule_id}: false-positive rate now {format_pct(stats.false_positive_rate)}")


@rules.command("analytics")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def rules_analytics(ctx, as_json):
    """Roll-up of rule performance across all rules."""
    from utils.formatters import format_ms, format_pct

    c = _get_components(ctx)
    summary = c["statistics"].summary(c["rules"].get_all_rules())
    if as_json:
        _echo_json(summary)
        return
    console.print(f"[bold]Rules[/bold] {summary['total_rules']} ({summary['active_rules']} active)")
    console.print(f"[bold]Executions[/bold] {summary['total_executions']}, "
                  f"avg {format_ms(summary['average_execution_time'])}, "
                  f"success {format_pct(summary['success_rate'])}")
    if summary["top_performing_rules"]:
        table = Table(title="Top Rules", show_header=True)
        table.add_column("Rule")
        table.add_column("Triggered", justify="right")
        table.add_column("Success", justify="right")
        for row in summary["top_performing_rules"]:
            table.add_row(row["rule_name"], str(row["times_triggered"]), format_pct(row["success_rate"]))
        console.print(table)


# ──────────────────────────────────────────────────────
# EVENTS
# ──────────────────────────────────────────────────────
@cli.group()
def events():
    """Event processing."""
    pass


@events.command("process")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Output reports as JSON")
@click.pass_context
def events_process(ctx, path, as_json):
    """Evaluate every active rule against each event in a JSON / JSON lines file."""
    c = _get_components(ctx)
    try:
        batch = _load_events(path)
    except (json.JSONDecodeError, ValueError) as e:
        _fail(f"Could not read events: {e}")
    reports = c["scheduler"].process_batch(batch)
    if as_json:
        _echo_json([r.to_dict() for r in reports])
        return

    table = Table(title=f"Processed {len(reports)} event(s)", show_header=True)
    table.add_column("Event", style="dim")
    table.add_column("Matched Rules")
    table.add_column("Actions")
    table.add_column("Errors")
    for report in reports:
        matched = ", ".join(r.rule_name for r in report.matched_rules) or "[dim]none[/dim]"
        actions = ", ".join(a for r in report.matched_rules for a in r.executed_action_types) or "-"
        failed = sum(len([o for o in r.action_outcomes if not o.succeeded]) for r in report.results)
        errors = len(report.errors) + failed
        table.add_row(report.event_id, matched, actions, f"[red]{errors}[/red]" if errors else "0")
    console.print(table)


@events.command("test")
@click.argument("rule_id")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def events_test(ctx, rule_id, path):
    """Dry-run one rule against events without side effects."""
    c = _get_components(ctx)
    rule = c["rules"].get_rule(rule_id)
    if rule is None:
        _fail(f"Rule not found: {rule_id}")

    table = Table(title=f"Rule Test: {rule.name}", show_header=True)
    table.add_column("Event", style="dim")
    table.add_column("Passed")
    table.add_column("Conditions")
    table.add_column("Would Run")
    for event in _load_events(path):
        result = c["scheduler"].test_rule(rule, event)
        conditions = "  ".join(
            f"{'✓' if cr['passed'] else '✗'} {cr['condition']}" for cr in result["condition_results"]
        )
        table.add_row(event.id, "[green]YES[/green]" if result["passed"] else "[dim]no[/dim]",
                      conditions, ", ".join(result["actions_executed"]) or "-")
    console.print(table)


# ──────────────────────────────────────────────────────
# AUDIT
# ──────────────────────────────────────────────────────
@cli.command("audit")
@click.option("--rule", "rule_id", default=None, help="Only entries for this rule")
@click.option("--action", default=None,
              type=click.Choice(["created", "modified", "deleted", "triggered", "evaluated",
                                 "ab_test_started", "ab_test_completed"]))
@click.option("--limit", default=50, type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def audit(ctx, rule_id, action, limit, as_json):
    """Show the audit history, most recent first."""
    from utils.formatters import format_timestamp, truncate

    c = _get_components(ctx)
    entries = c["audit"].entries(rule_id=rule_id, action=action, limit=limit)
    if as_json:
        _echo_json([e.to_dict() for e in entries])
        return
    if not entries:
        console.print("[dim]No audit entries[/dim]")
        return
    table = Table(title="Audit Log", show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Rule")
    table.add_column("Action")
    table.add_column("User")
    table.add_column("Details")
    for e in entries:
        if e.changes:
            details = f"{e.changes.field}: {e.changes.old_value} → {e.changes.new_value}"
        elif e.impacted_alerts:
            details = f"alerts: {', '.join(e.impacted_alerts)}"
        else:
            details = json.dumps(e.metadata or {}, default=str)
        table.add_row(format_timestamp(e.timestamp), e.rule_id, e.action.value, e.user_id, truncate(details))
    console.print(table)


# ──────────────────────────────────────────────────────
# A/B TESTS
# ──────────────────────────────────────────────────────
@cli.group()
def abtest():
    """A/B testing of rule variants."""
    pass


@abtest.command("create")
@click.argument("rule_id")
@click.option("--name", required=True, help="Test name")
@click.option("--variant-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="YAML/JSON list of variants (default: control + test variant, 50/50)")
@click.option("--hypothesis", default="")
@click.option("--min-samples", default=100, type=int, help="Minimum sample size")
@click.option("--user", default="cli")
@click.pass_context
def abtest_create(ctx, rule_id, name, variant_file, hypothesis, min_samples, user):
    """Create a draft A/B test for a rule."""
    from engine.errors import RulesEngineError

    c = _get_components(ctx)
    variants = None
    if variant_file:
        with open(variant_file) as f:
            variants = yaml.safe_load(f)
    try:
        test = c["ab_engine"].create_test(name, rule_id, variants=variants, hypothesis=hypothesis,
                                          minimum_sample_size=min_samples, user_id=user)
    except (RulesEngineError, KeyError, ValueError) as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] Created A/B test {test.id} with {len(test.variants)} variants")


def _transition(ctx, name, *args, **kwargs):
    from engine.errors import RulesEngineError

    c = _get_components(ctx)
    try:
        return getattr(c["ab_engine"], name)(*args, **kwargs)
    except RulesEngineError as e:
        _fail(str(e))


@abtest.command("start")
@click.argument("test_id")
@click.option("--user", default="cli")
@click.pass_context
def abtest_start(ctx, test_id, user):
    """Start routing traffic to the test's variants."""
    test = _transition(ctx, "start_test", test_id, user_id=user)
    console.print(f"[green]✓[/green] A/B test {test.id} is running")


@abtest.command("pause-variant")
@click.argument("test_id")
@click.argument("variant_id")
@click.option("--rebalance", is_flag=True, help="Spread the variant's traffic over the others")
@click.option("--user", default="cli")
@click.pass_context
def abtest_pause_variant(ctx, test_id, variant_id, rebalance, user):
    """Pause one variant of a running test."""
    _transition(ctx, "pause_variant", test_id, variant_id, rebalance=rebalance, user_id=user)
    console.print(f"Variant {variant_id} paused")


@abtest.command("complete")
@click.argument("test_id")
@click.option("--user", default="cli")
@click.pass_context
def abtest_complete(ctx, test_id, user):
    """Complete a running test and record its final results."""
    test = _transition(ctx, "complete_test", test_id, user_id=user)
    console.print(f"[green]✓[/green] A/B test {test.id} completed ({test.current_sample_size} samples)")
    _print_results(test)


@abtest.command("cancel")
@click.argument("test_id")
@click.option("--reason", default=None)
@click.option("--user", default="cli")
@click.pass_context
def abtest_cancel(ctx, test_id, reason, user):
    """Cancel a draft or running test."""
    _transition(ctx, "cancel_test", test_id, user_id=user, reason=reason)
    console.print(f"A/B test {test_id} cancelled")


@abtest.command("outcome")
@click.argument("test_id")
@click.argument("event_id")
@click.option("--false-positive/--true-positive", "false_positive", required=True)
@click.option("--score", default=None, type=float, help="User satisfaction score")
@click.pass_context
def abtest_outcome(ctx, test_id, event_id, false_positive, score):
    """Attribute a reviewer verdict to the variant that handled an event."""
    variant_id = _transition(ctx, "record_outcome", test_id, event_id, not false_positive, score)
    console.print(f"Outcome recorded for variant {variant_id}")


@abtest.command("list")
@click.option("--rule", "rule_id", default=None, help="Only tests of this rule")
@click.pass_context
def abtest_list(ctx, rule_id):
    """List A/B tests."""
    c = _get_components(ctx)
    tests = c["ab_engine"].get_tests(rule_id)
    if not tests:
        console.print("[dim]No A/B tests[/dim]")
        return
    table = Table(title="A/B Tests", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Rule")
    table.add_column("Status")
    table.add_column("Samples", justify="right")
    for t in tests:
        table.add_row(t.id, t.name, t.base_rule_id, t.status.value,
                      f"{t.current_sample_size}/{t.minimum_sample_size}")
    console.print(table)


def _print_results(test):
    from utils.formatters import format_ms, format_p_value

    latest = {}
    for result in test.results:
        latest[result.variant_id] = result
    if not latest:
        console.print("[dim]No results calculated yet[/dim]")
        return
    table = Table(title=f"Results: {test.name}", show_header=True)
    table.add_column("Variant")
    table.add_column("Alerts", justify="right")
    table.add_column("TPR", justify="right")
    table.add_column("FPR", justify="right")
    table.add_column("Avg Time", justify="right")
    table.add_column("p-value", justify="right")
    table.add_column("CI", justify="right")
    for variant in test.variants:
        r = latest.get(variant.id)
        if r is None:
            continue
        label = f"{variant.name} (control)" if variant.is_control else variant.name
        table.add_row(label, str(r.alerts_generated), f"{r.true_positive_rate:.1%}", f"{r.false_positive_rate:.1%}",
                      format_ms(r.avg_execution_time), format_p_value(r.statistical_significance),
                      f"[{r.confidence_lower:+.3f}, {r.confidence_upper:+.3f}]")
    console.print(table)


@abtest.command("results")
@click.argument("test_id")
@click.option("--recalculate", is_flag=True, help="Append a fresh result snapshot first")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def abtest_results(ctx, test_id, recalculate, as_json):
    """Show the latest per-variant results of a test."""
    from engine.errors import ABTestNotFoundError

    c = _get_components(ctx)
    try:
        if recalculate:
            c["ab_engine"].calculate_results(test_id)
        test = c["ab_engine"].get_test(test_id)
    except ABTestNotFoundError as e:
        _fail(str(e))
    if as_json:
        _echo_json(test.to_dict())
        return
    _print_results(test)


# ──────────────────────────────────────────────────────
# WEB
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--host", default=None, type=str, help="Host to bind to")
@click.pass_context
def web(ctx, port, host):
    """Launch the JSON query API."""
    from web.app import create_app

    c = _get_components(ctx)
    web_cfg = c["config"].get("web", {})
    host = host or web_cfg.get("host", "127.0.0.1")
    port = port or web_cfg.get("port", 5000)

    app = create_app(c["config"], c)
    c["jobs"].start()

    console.print(f"\n[bold]Ops Rules Engine -- Query API[/bold]\n")
    console.print(f"  http://{host}:{port}/api/rules")
    console.print(f"\n  Press Ctrl+C to stop.\n")
    try:
        app.run(host=host, port=port, debug=False)
    finally:
        c["jobs"].stop()


if __name__ == "__main__":
    cli()
