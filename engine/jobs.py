"""Background housekeeping: audit flush, statistics flush, A/B recalculation."""
import logging
import threading
import time

import schedule

from engine.errors import AuditWriteError
from models.enums import ABTestStatus

logger = logging.getLogger("opsrules.engine.jobs")


class EngineJobs:
    def __init__(self, audit, statistics, ab_engine=None, db=None, config=None):
        cfg = (config or {}).get("jobs", {})
        self.audit = audit
        self.statistics = statistics
        self.ab_engine = ab_engine
        self.db = db
        self.flush_interval = int(cfg.get("flush_interval_seconds", 10))
        self.recalc_interval = int(cfg.get("abtest_recalc_interval_seconds", 300))
        self._scheduler = schedule.Scheduler()
        self._thread = None
        self._running = False
        self._consecutive_failures = 0

    def start(self):
        if self._running:
            return
        self._running = True

        self._scheduler.every(self.flush_interval).seconds.do(self.flush_job)
        if self.ab_engine is not None:
            self._scheduler.every(self.recalc_interval).seconds.do(self.recalculate_job)

        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()
        logger.info(f"Engine jobs started (flush every {self.flush_interval}s)")

    def stop(self):
        self._running = False
        self._scheduler.clear()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        # final flush so nothing buffered is lost on shutdown
        self.flush_job()
        logger.info("Engine jobs stopped")

    def _run_loop(self):
        while self._running:
            self._scheduler.run_pending()
            time.sleep(1)

    def flush_job(self):
        """Write statistics, A/B state and buffered audit entries to the store.

        Statistics and A/B state are written first so an audit store failure
        does not hold them back.
        """
        if self.db is not None:
            self.statistics.flush(self.db)
        if self.ab_engine is not None:
            self.ab_engine.flush()
        try:
            written = self.audit.flush()
        except AuditWriteError as e:
            self._consecutive_failures += 1
            logger.error(f"Audit flush failed ({self._consecutive_failures} consecutive): {e}")
            if self._consecutive_failures >= 5:
                logger.critical(f"{self.audit.pending_count} audit entries still unwritten after 5+ attempts")
            return 0
        self._consecutive_failures = 0
        return written

    def recalculate_job(self):
        """Refresh result snapshots of every running A/B test."""
        refreshed = 0
        for test in self.ab_engine.get_tests():
            if test.status != ABTestStatus.RUNNING:
                continue
            try:
                self.ab_engine.calculate_results(test.id)
                refreshed += 1
            except Exception as e:
                logger.warning(f"Recalculation of A/B test {test.id} failed: {e}")
        return refreshed
