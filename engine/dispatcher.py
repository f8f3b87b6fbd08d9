"""Action dispatch: route a matched rule's actions to the action executor."""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models.enums import ActionStatus, ActionType

logger = logging.getLogger("opsrules.engine.dispatcher")


@dataclass
class ActionOutcome:
    action_id: str
    action_type: ActionType
    status: ActionStatus
    detail: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def succeeded(self):
        return self.status == ActionStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "action_type": self.action_type.value,
            "status": self.status.value,
            "detail": self.detail,
            "error": self.error,
            "duration_ms": round(self.duration_ms, 3),
        }


@dataclass
class DispatchResult:
    outcomes: List[ActionOutcome] = field(default_factory=list)

    @property
    def executed_action_types(self) -> List[str]:
        return [o.action_type.value for o in self.outcomes if o.succeeded]

    @property
    def failures(self) -> List[ActionOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def alerts_created(self) -> int:
        return sum(1 for o in self.outcomes
                   if o.succeeded and o.action_type == ActionType.CREATE_ALERT)

    @property
    def alert_ids(self) -> List[str]:
        return [o.detail["alert_id"] for o in self.outcomes
                if o.succeeded and isinstance(o.detail, dict) and o.detail.get("alert_id")]


class ActionDispatcher:
    """Runs actions in list order, each on a worker pool with a bounded timeout.

    The timeout covers the effect's own run, not time spent waiting for a
    worker. An action that gets no worker within ``queue_timeout`` is
    cancelled and never runs. A timed-out effect is left running in the
    background; its pool is retired so later actions do not queue behind it.
    """

    def __init__(self, executor, max_workers=4, timeout=5.0, queue_timeout=None):
        self.executor = executor
        self.max_workers = max_workers
        self.timeout = timeout
        self.queue_timeout = max(timeout, 1.0) if queue_timeout is None else queue_timeout
        self._lock = threading.Lock()
        self._closed = False
        self._pool = self._new_pool()

    def _new_pool(self):
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="action")

    def _retire_pool(self, pool):
        # queued work on the old pool still runs; only new submissions move
        with self._lock:
            if self._pool is pool and not self._closed:
                self._pool = self._new_pool()
                pool.shutdown(wait=False)
                logger.info("Action pool replaced after a timed-out effect")

    def execute(self, actions, event, rule) -> DispatchResult:
        result = DispatchResult()
        for action in actions:
            result.outcomes.append(self._run_one(action, event, rule))
        return result

    def _run_one(self, action, event, rule) -> ActionOutcome:
        started = threading.Event()

        def run():
            started.set()
            return self.executor.execute(action.type.value, dict(action.config), event, rule)

        start = time.perf_counter()
        try:
            with self._lock:
                pool = self._pool
                future = pool.submit(run)
        except RuntimeError as e:
            # pool already shut down
            return ActionOutcome(action.id, action.type, ActionStatus.FAILED, error=str(e))

        if not started.wait(self.queue_timeout) and future.cancel():
            error = f"no free action worker within {self.queue_timeout}s"
            logger.warning(f"Action {action.type.value} of rule {rule.id} skipped: {error}")
            return ActionOutcome(action.id, action.type, ActionStatus.FAILED, error=error,
                                 duration_ms=(time.perf_counter() - start) * 1000)

        try:
            detail = future.result(timeout=self.timeout)
            status, error = ActionStatus.SUCCEEDED, None
        except FutureTimeout:
            detail, status = {}, ActionStatus.TIMED_OUT
            error = f"timed out after {self.timeout}s"
            logger.warning(f"Action {action.type.value} of rule {rule.id} {error}")
            self._retire_pool(pool)
        except Exception as e:
            detail, status, error = {}, ActionStatus.FAILED, str(e)
            logger.warning(f"Action {action.type.value} of rule {rule.id} failed: {e}")

        return ActionOutcome(
            action_id=action.id,
            action_type=action.type,
            status=status,
            detail=detail if isinstance(detail, dict) else {"result": detail},
            error=error,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    def shutdown(self, wait=False):
        with self._lock:
            self._closed = True
            pool = self._pool
        pool.shutdown(wait=wait)
