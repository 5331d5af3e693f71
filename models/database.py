"""SQLite database for storing alert records and the notification delivery log."""
import json
import sqlite3
import logging
import threading
from pathlib import Path

from models.alerts import Alert, DeliveryRecord, to_iso

logger = logging.getLogger("gridwatch.db")


class Database:
    def __init__(self, db_path="data/gridwatch.db"):
        self.db_path = db_path
        self.conn = None
        self._lock = threading.Lock()

    def connect(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
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
            CREATE TABLE IF NOT EXISTS alerts (
                id TEXT PRIMARY KEY,
                rule_id TEXT,
                title TEXT NOT NULL,
                severity TEXT NOT NULL,
                category TEXT NOT NULL,
                status TEXT NOT NULL,
                escalation_level INTEGER NOT NULL DEFAULT 1,
                timestamp TEXT NOT NULL,
                payload TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_alerts_timestamp
                ON alerts(timestamp);

            CREATE INDEX IF NOT EXISTS idx_alerts_status
                ON alerts(status);

            CREATE TABLE IF NOT EXISTS notification_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                alert_id TEXT NOT NULL,
                level INTEGER NOT NULL,
                channel TEXT NOT NULL,
                recipients TEXT,
                status TEXT NOT NULL,
                reason TEXT,
                sent_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_notification_alert
                ON notification_log(alert_id);
        """)
        self.conn.commit()

    # --- Alerts ---

    def save_alert(self, alert: Alert):
        """Insert or replace the full alert record."""
        with self._lock:
            self.conn.execute(
                """INSERT OR REPLACE INTO alerts
                   (id, rule_id, title, severity, category, status, escalation_level, timestamp, payload)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (alert.id, alert.rule_id, alert.title, alert.severity.value,
                 alert.category.value, alert.status.value, alert.escalation_level,
                 to_iso(alert.timestamp), json.dumps(alert.to_dict(), default=str)),
            )
            self.conn.commit()

    def get_alert(self, alert_id):
        row = self.conn.execute(
            "SELECT payload FROM alerts WHERE id = ?", (alert_id,)
        ).fetchone()
        if not row:
            return None
        return Alert.from_dict(json.loads(row["payload"]))

    def load_alerts(self):
        """All stored alerts, oldest first."""
        rows = self.conn.execute(
            "SELECT payload FROM alerts ORDER BY timestamp ASC"
        ).fetchall()
        alerts = []
        for row in rows:
            try:
                alerts.append(Alert.from_dict(json.loads(row["payload"])))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable alert row: {e}")
        return alerts

    def count_alerts(self):
        return self.conn.execute("SELECT COUNT(*) FROM alerts").fetchone()[0]

    # --- Notification log ---

    def log_delivery(self, record: DeliveryRecord):
        with self._lock:
            self.conn.execute(
                """INSERT INTO notification_log
                   (alert_id, level, channel, recipients, status, reason, sent_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (record.alert_id, record.level, record.channel.value,
                 json.dumps(list(record.recipients)), record.status.value,
                 record.reason, to_iso(record.sent_at)),
            )
            self.conn.commit()

    def get_delivery_log(self, alert_id=None, limit=100):
        if alert_id:
            rows = self.conn.execute(
                "SELECT * FROM notification_log WHERE alert_id = ? ORDER BY id DESC LIMIT ?",
                (alert_id, limit),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM notification_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        entries = []
        for r in rows:
            entry = dict(r)
            entry["recipients"] = json.loads(entry["recipients"] or "[]")
            entries.append(entry)
        return entries

    def get_delivery_stats(self):
        rows = self.conn.execute(
            "SELECT channel, status, COUNT(*) as count FROM notification_log GROUP BY channel, status"
        ).fetchall()
        stats = {}
        for r in rows:
            stats.setdefault(r["channel"], {})[r["status"]] = r["count"]
        return stats

    def get_dispatched_levels(self):
        """Distinct (alert_id, level) pairs that have had a dispatch attempt."""
        rows = self.conn.execute(
            "SELECT DISTINCT alert_id, level FROM notification_log"
        ).fetchall()
        return [(r["alert_id"], r["level"]) for r in rows]
