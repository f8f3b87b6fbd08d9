"""SQLite database for rules, statistics, audit entries, A/B tests, and alerts."""
import json
import logging
import sqlite3
import threading
from pathlib import Path

from models.abtest import ABTest, ABTestResult, VariantMetrics
from models.alerts import AlertRecord
from models.audit import RuleAuditLog
from models.rules import Rule, RuleStatistics, format_timestamp

logger = logging.getLogger("opsrules.db")


class Database:
    def __init__(self, db_path="data/opsrules.db"):
        self.db_path = db_path
        self.conn = None
        self._lock = threading.RLock()

    def connect(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()
        return self

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.close()

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS rules (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                priority INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                sequence INTEGER NOT NULL,
                updated_at TEXT NOT NULL,
                body TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS rule_statistics (
                rule_id TEXT PRIMARY KEY,
                body TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS audit_log (
                id TEXT PRIMARY KEY,
                sequence INTEGER NOT NULL,
                rule_id TEXT NOT NULL,
                action TEXT NOT NULL,
                user_id TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                body TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_audit_rule
                ON audit_log(rule_id, sequence);
            CREATE INDEX IF NOT EXISTS idx_audit_action
                ON audit_log(action);

            CREATE TABLE IF NOT EXISTS ab_tests (
                id TEXT PRIMARY KEY,
                base_rule_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                body TEXT NOT NULL,
                metrics TEXT NOT NULL DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS ab_results (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                test_id TEXT NOT NULL,
                variant_id TEXT NOT NULL,
                calculated_at TEXT NOT NULL,
                body TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_ab_results_test
                ON ab_results(test_id, id);
            CREATE TABLE IF NOT EXISTS ab_assignments (
                test_id TEXT NOT NULL,
                event_id TEXT NOT NULL,
                variant_id TEXT NOT NULL,
                PRIMARY KEY (test_id, event_id)
            );

            CREATE TABLE IF NOT EXISTS alerts (
                id TEXT PRIMARY KEY,
                rule_id TEXT NOT NULL,
                rule_name TEXT,
                title TEXT,
                severity TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                body TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_alerts_created
                ON alerts(created_at);

            CREATE TABLE IF NOT EXISTS alert_rule_links (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                alert_id TEXT NOT NULL,
                rule_id TEXT NOT NULL,
                linkage_type TEXT NOT NULL,
                confidence REAL,
                context TEXT,
                timestamp TEXT NOT NULL
            );
        """)
        self.conn.commit()

    def _write(self, sql, params=()):
        with self._lock:
            cur = self.conn.execute(sql, params)
            self.conn.commit()
            return cur

    # --- Rules ---

    def save_rule(self, rule: Rule):
        self._write("""
            INSERT OR REPLACE INTO rules
            (id, name, priority, is_active, is_deleted, sequence, updated_at, body)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            rule.id, rule.name, rule.priority, int(rule.is_active), int(rule.is_deleted),
            rule.sequence, format_timestamp(rule.updated_at), json.dumps(rule.to_dict()),
        ))
        logger.debug(f"Saved rule {rule.id}")

    def get_rules(self, include_deleted=False):
        query = "SELECT body FROM rules"
        if not include_deleted:
            query += " WHERE is_deleted = 0"
        query += " ORDER BY sequence ASC"
        with self._lock:
            rows = self.conn.execute(query).fetchall()
        return [Rule.from_dict(json.loads(r["body"])) for r in rows]

    # --- Statistics ---

    def save_statistics(self, rule_id, stats: RuleStatistics):
        self._write("""
            INSERT OR REPLACE INTO rule_statistics (rule_id, body, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
        """, (rule_id, json.dumps(stats.to_dict())))

    def get_all_statistics(self):
        with self._lock:
            rows = self.conn.execute("SELECT rule_id, body FROM rule_statistics").fetchall()
        return {r["rule_id"]: RuleStatistics.from_dict(json.loads(r["body"])) for r in rows}

    # --- Audit Log ---

    def append_audit_entries(self, entries):
        """Insert a batch atomically; a failure leaves nothing written."""
        rows = [
            (e.id, e.sequence, e.rule_id, e.action.value, e.user_id,
             format_timestamp(e.timestamp), json.dumps(e.to_dict()))
            for e in entries
        ]
        with self._lock:
            try:
                self.conn.executemany("""
                    INSERT INTO audit_log (id, sequence, rule_id, action, user_id, timestamp, body)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, rows)
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                raise
        logger.debug(f"Appended {len(rows)} audit entries")

    def get_audit_entries(self, rule_id=None, action=None, limit=None):
        query = "SELECT body FROM audit_log WHERE 1=1"
        params = []
        if rule_id:
            query += " AND rule_id = ?"
            params.append(rule_id)
        if action:
            query += " AND action = ?"
            params.append(action)
        query += " ORDER BY timestamp DESC, sequence DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [RuleAuditLog.from_dict(json.loads(r["body"])) for r in rows]

    def max_audit_sequence(self):
        with self._lock:
            row = self.conn.execute("SELECT MAX(sequence) AS seq FROM audit_log").fetchone()
        return row["seq"] or 0

    # --- A/B Tests ---

    def save_ab_test(self, test: ABTest, metrics=None):
        """Upsert the test definition and its running variant metrics.

        Result snapshots are stored separately by append_ab_results.
        """
        metrics_body = {
            vid: {
                "evaluation_count": m.evaluation_count,
                "alerts_generated": m.alerts_generated,
                "true_positives": m.true_positives,
                "false_positives": m.false_positives,
                "total_execution_time": m.total_execution_time,
                "satisfaction_scores": list(m.satisfaction_scores),
            }
            for vid, m in (metrics or {}).items()
        }
        self._write("""
            INSERT OR REPLACE INTO ab_tests (id, base_rule_id, status, created_at, body, metrics)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            test.id, test.base_rule_id, test.status.value, format_timestamp(test.created_at),
            json.dumps(test.to_dict(include_results=False)), json.dumps(metrics_body),
        ))

    def append_ab_results(self, results):
        with self._lock:
            self.conn.executemany("""
                INSERT INTO ab_results (test_id, variant_id, calculated_at, body)
                VALUES (?, ?, ?, ?)
            """, [(r.test_id, r.variant_id, format_timestamp(r.calculated_at), json.dumps(r.to_dict()))
                  for r in results])
            self.conn.commit()

    def get_ab_results(self, test_id):
        with self._lock:
            rows = self.conn.execute(
                "SELECT body FROM ab_results WHERE test_id = ? ORDER BY id ASC", (test_id,)
            ).fetchall()
        return [ABTestResult.from_dict(json.loads(r["body"])) for r in rows]

    def save_ab_assignments(self, test_id, assignments):
        """Remember which variant handled each event, for later outcome attribution."""
        with self._lock:
            self.conn.executemany("""
                INSERT OR REPLACE INTO ab_assignments (test_id, event_id, variant_id)
                VALUES (?, ?, ?)
            """, [(test_id, event_id, variant_id) for event_id, variant_id in assignments.items()])
            self.conn.commit()

    def get_ab_assignments(self, test_id):
        with self._lock:
            rows = self.conn.execute(
                "SELECT event_id, variant_id FROM ab_assignments WHERE test_id = ?", (test_id,)
            ).fetchall()
        return {r["event_id"]: r["variant_id"] for r in rows}

    def get_ab_tests_with_metrics(self):
        with self._lock:
            rows = self.conn.execute(
                "SELECT body, metrics FROM ab_tests ORDER BY created_at ASC"
            ).fetchall()
        loaded = []
        for row in rows:
            test = ABTest.from_dict(json.loads(row["body"]))
            test.results = self.get_ab_results(test.id)
            metrics = {
                vid: VariantMetrics(variant_id=vid, **values)
                for vid, values in json.loads(row["metrics"]).items()
            }
            loaded.append((test, metrics))
        return loaded

    # --- Alerts ---

    def save_alert(self, alert: AlertRecord):
        self._write("""
            INSERT OR REPLACE INTO alerts
            (id, rule_id, rule_name, title, severity, status, created_at, body)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            alert.id, alert.rule_id, alert.rule_name, alert.title, alert.severity,
            alert.status, format_timestamp(alert.created_at), json.dumps(alert.to_dict()),
        ))

    def save_alert_linkage(self, linkage):
        self._write("""
            INSERT INTO alert_rule_links (alert_id, rule_id, linkage_type, confidence, context, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            linkage.alert_id, linkage.rule_id, linkage.linkage_type.value, linkage.confidence,
            json.dumps(linkage.context), format_timestamp(linkage.timestamp),
        ))

    def get_recent_alerts(self, limit=50):
        with self._lock:
            rows = self.conn.execute(
                "SELECT body FROM alerts ORDER BY created_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [json.loads(r["body"]) for r in rows]

    def get_alerts_for_rule(self, rule_id, limit=50):
        with self._lock:
            rows = self.conn.execute("""
                SELECT a.body FROM alerts a
                JOIN alert_rule_links l ON l.alert_id = a.id
                WHERE l.rule_id = ?
                ORDER BY a.created_at DESC LIMIT ?
            """, (rule_id, limit)).fetchall()
        return [json.loads(r["body"]) for r in rows]

    def get_alert_stats(self):
        with self._lock:
            rows = self.conn.execute(
                "SELECT severity, COUNT(*) AS count FROM alerts GROUP BY severity"
            ).fetchall()
        return {r["severity"]: r["count"] for r in rows}
