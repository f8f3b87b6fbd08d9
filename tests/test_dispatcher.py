"""Tests for action dispatch: ordering, failure isolation, timeouts."""
import threading
import pytest

from engine.dispatcher import ActionDispatcher
from models.enums import ActionStatus
from conftest import RecordingExecutor


class SlowExecutor:
    """Blocks on webhook until released, so the dispatcher timeout fires."""

    def __init__(self):
        self.release = threading.Event()
        self.blocked = threading.Event()
        self.calls = []

    def execute(self, action_type, config, event, rule):
        self.calls.append(action_type)
        if action_type == "webhook":
            self.blocked.set()
            self.release.wait(timeout=5)
        return {"ok": True, "alert_id": "alert_1"} if action_type == "create_alert" else {"ok": True}


def _actions(*types):
    return [{"type": t, "config": {}} for t in types]


def test_actions_run_in_list_order(make_rule, make_event):
    executor = RecordingExecutor()
    dispatcher = ActionDispatcher(executor)
    rule = make_rule(actions=_actions("tag_event", "create_alert", "send_notification"))
    event = make_event()

    result = dispatcher.execute(rule.actions, event, rule)
    assert [c[0] for c in executor.calls] == ["tag_event", "create_alert", "send_notification"]
    assert result.executed_action_types == ["tag_event", "create_alert", "send_notification"]
    assert result.alerts_created == 1
    assert len(result.alert_ids) == 1
    dispatcher.shutdown()


def test_failed_action_does_not_stop_siblings(make_rule, make_event):
    executor = RecordingExecutor(fail_types={"send_notification"})
    dispatcher = ActionDispatcher(executor)
    rule = make_rule(actions=_actions("send_notification", "create_alert"))

    result = dispatcher.execute(rule.actions, make_event(), rule)
    assert [o.status for o in result.outcomes] == [ActionStatus.FAILED, ActionStatus.SUCCEEDED]
    assert "unavailable" in result.outcomes[0].error
    assert result.executed_action_types == ["create_alert"]
    assert len(result.failures) == 1
    dispatcher.shutdown()


def test_timed_out_action_is_recorded_and_siblings_run(make_rule, make_event):
    executor = SlowExecutor()
    dispatcher = ActionDispatcher(executor, timeout=0.05)
    rule = make_rule(actions=_actions("webhook", "tag_event"))

    result = dispatcher.execute(rule.actions, make_event(), rule)
    executor.release.set()
    assert result.outcomes[0].status == ActionStatus.TIMED_OUT
    assert result.outcomes[1].status == ActionStatus.SUCCEEDED
    assert result.outcomes[0].to_dict()["status"] == "timed_out"
    dispatcher.shutdown()


def test_no_actions_gives_empty_result(make_rule, make_event):
    dispatcher = ActionDispatcher(RecordingExecutor())
    rule = make_rule()
    result = dispatcher.execute(rule.actions, make_event(), rule)
    assert result.outcomes == []
    assert result.alerts_created == 0
    dispatcher.shutdown()


def test_dispatch_after_shutdown_fails_per_action(make_rule, make_event):
    dispatcher = ActionDispatcher(RecordingExecutor())
    dispatcher.shutdown()
    rule = make_rule(actions=_actions("tag_event"))
    result = dispatcher.execute(rule.actions, make_event(), rule)
    assert result.outcomes[0].status == ActionStatus.FAILED


def test_hung_effect_does_not_starve_next_action(make_rule, make_event):
    executor = SlowExecutor()
    dispatcher = ActionDispatcher(executor, max_workers=1, timeout=0.3)
    rule = make_rule(actions=_actions("webhook", "create_alert"))

    result = dispatcher.execute(rule.actions, make_event(), rule)
    executor.release.set()
    assert [o.status for o in result.outcomes] == [ActionStatus.TIMED_OUT, ActionStatus.SUCCEEDED]
    assert result.alerts_created == 1
    assert result.alert_ids == ["alert_1"]
    dispatcher.shutdown()


def test_action_without_free_worker_is_cancelled(make_rule, make_event):
    executor = SlowExecutor()
    dispatcher = ActionDispatcher(executor, max_workers=1, timeout=5, queue_timeout=0.05)
    slow_rule = make_rule(actions=_actions("webhook"))
    fast_rule = make_rule(actions=_actions("tag_event"))
    event = make_event()

    background = threading.Thread(target=dispatcher.execute, args=(slow_rule.actions, event, slow_rule))
    background.start()
    assert executor.blocked.wait(timeout=2)

    result = dispatcher.execute(fast_rule.actions, event, fast_rule)
    executor.release.set()
    background.join(timeout=5)
    dispatcher.shutdown(wait=True)

    assert result.outcomes[0].status == ActionStatus.FAILED
    assert "no free action worker" in result.outcomes[0].error
    assert executor.calls == ["webhook"]
