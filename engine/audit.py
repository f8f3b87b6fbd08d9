"""Append-only audit trail of rule mutations, evaluations and A/B test events."""
import logging
import threading
from typing import List, Optional

from engine.errors import AuditWriteError
from models.audit import RuleAuditLog, RuleChangeLog
from models.enums import AuditAction
from models.rules import utc_now

logger = logging.getLogger("opsrules.engine.audit")


class AuditLog:
    """Sequenced, optionally buffered audit writer.

    Entries get a global sequence number at record time, so per-rule order is
    chronological. With a store, entries are buffered and written in batches
    of ``batch_size``; without one they are kept in memory. Entries are never
    updated or removed.
    """

    def __init__(self, store=None, batch_size=1):
        self.store = store
        self.batch_size = max(int(batch_size), 1)
        self._entries: List[RuleAuditLog] = []
        self._pending: List[RuleAuditLog] = []
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._sequence = store.max_audit_sequence() if store is not None else 0

    def record(self, rule_id, action, user_id="system", changes=None, metadata=None,
               impacted_alerts=None) -> RuleAuditLog:
        """Append one entry. Raises AuditWriteError if the store rejects the batch."""
        if not isinstance(action, AuditAction):
            action = AuditAction(action)
        if isinstance(changes, dict):
            changes = RuleChangeLog(**changes)
        with self._lock:
            self._sequence += 1
            entry = RuleAuditLog(
                rule_id=rule_id,
                action=action,
                user_id=user_id,
                timestamp=utc_now(),
                changes=changes,
                metadata=dict(metadata) if metadata else None,
                impacted_alerts=list(impacted_alerts) if impacted_alerts else None,
                sequence=self._sequence,
            )
            if self.store is None:
                self._entries.append(entry)
                return entry
            self._pending.append(entry)
            should_flush = len(self._pending) >= self.batch_size

        if should_flush:
            self.flush()
        return entry

    def flush(self) -> int:
        """Write buffered entries to the store, oldest first."""
        if self.store is None:
            return 0
        with self._flush_lock:
            with self._lock:
                batch, self._pending = self._pending, []
            if not batch:
                return 0
            try:
                self.store.append_audit_entries(batch)
            except Exception as e:
                with self._lock:
                    self._pending = batch + self._pending
                logger.error(f"Audit write failed for {len(batch)} entr(y/ies): {e}")
                raise AuditWriteError(f"Audit write failed: {e}", entries=batch) from e
        return len(batch)

    @property
    def pending_count(self):
        with self._lock:
            return len(self._pending)

    def entries(self, rule_id: Optional[str] = None, action=None, limit: Optional[int] = None) -> List[RuleAuditLog]:
        """Entries filtered by rule and action, most recent first."""
        if action is not None and not isinstance(action, AuditAction):
            action = AuditAction(action)
        with self._lock:
            local = list(self._entries) + list(self._pending)
        if self.store is not None:
            stored = self.store.get_audit_entries(rule_id=rule_id, action=action.value if action else None)
            seen = {e.id for e in stored}
            local = stored + [e for e in local if e.id not in seen]

        selected = [
            e for e in local
            if (rule_id is None or e.rule_id == rule_id) and (action is None or e.action == action)
        ]
        selected.sort(key=lambda e: (e.timestamp, e.sequence), reverse=True)
        return selected[:limit] if limit else selected
