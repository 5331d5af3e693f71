"""Alert registry: authoritative alert store with lifecycle enforcement.

Transitions:
    active -> acknowledged -> resolved
    active -> resolved
    active | acknowledged -> dismissed

resolved and dismissed are terminal. Operations that find the alert missing or
in the wrong state return False instead of raising.

Mutations are serialized on a single lock. Subscribers are notified after the
mutation is committed and outside the lock, over a snapshot of the subscriber
list, so unsubscribing from inside a callback is safe. Every snapshot carries
a version; a subscriber never receives a snapshot older than one it has
already seen.
"""
import copy
import itertools
import logging
import threading
import uuid
from typing import Callable, Optional

from models.alerts import Alert, utcnow
from models.enums import AlertStatus, Category, Severity

logger = logging.getLogger("gridwatch.alerts.registry")

_ACKNOWLEDGEABLE = {AlertStatus.ACTIVE}
_RESOLVABLE = {AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED}
_DISMISSABLE = {AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED}


def _as_set(values, enum_cls):
    if values is None:
        return None
    if isinstance(values, (str, enum_cls)):
        values = [values]
    return {enum_cls(v) for v in values}


class AlertRegistry:
    def __init__(self, repository=None, clock: Callable = utcnow):
        self.repository = repository
        self.clock = clock
        self._alerts = {}
        self._lock = threading.RLock()
        self._subscribers = {}
        self._handles = itertools.count(1)
        self._version = 0

    def load(self):
        """Hydrate from the repository, if one is wired."""
        if self.repository is None:
            return 0
        loaded = self.repository.load_alerts()
        with self._lock:
            for alert in loaded:
                self._alerts[alert.id] = alert
        logger.info(f"Loaded {len(loaded)} alerts from repository")
        return len(loaded)

    # --- Mutations ---

    def create(self, spec, now=None) -> Alert:
        """Create a new active alert at escalation level 1."""
        data = spec if isinstance(spec, dict) else spec.to_dict()
        alert = Alert(
            id=f"alert-{uuid.uuid4().hex[:12]}",
            title=data.get("title", ""),
            message=data.get("message", ""),
            source=data.get("source", ""),
            severity=Severity(data.get("severity", "info")),
            category=Category(data.get("category", "system")),
            timestamp=now or self.clock(),
            status=AlertStatus.ACTIVE,
            rule_id=data.get("rule_id"),
            escalation_level=1,
            affected_systems=list(data.get("affected_systems") or []),
            recommended_actions=list(data.get("recommended_actions") or []),
            metadata=dict(data.get("metadata") or {}),
        )
        with self._lock:
            self._alerts[alert.id] = alert
            self._persist(alert)
        logger.info(f"Alert {alert.id} created [{alert.severity.value}] {alert.title}")
        self._notify()
        return copy.deepcopy(alert)

    def acknowledge(self, alert_id, actor_id) -> bool:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status not in _ACKNOWLEDGEABLE:
                return False
            alert.status = AlertStatus.ACKNOWLEDGED
            alert.acknowledged_by = actor_id
            alert.acknowledged_at = self.clock()
            self._persist(alert)
        logger.info(f"Alert {alert_id} acknowledged by {actor_id}")
        self._notify()
        return True

    def resolve(self, alert_id, actor_id) -> bool:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status not in _RESOLVABLE:
                return False
            alert.status = AlertStatus.RESOLVED
            alert.resolved_by = actor_id
            alert.resolved_at = self.clock()
            self._persist(alert)
        logger.info(f"Alert {alert_id} resolved by {actor_id}")
        self._notify()
        return True

    def dismiss(self, alert_id) -> bool:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status not in _DISMISSABLE:
                return False
            alert.status = AlertStatus.DISMISSED
            self._persist(alert)
        logger.info(f"Alert {alert_id} dismissed")
        self._notify()
        return True

    def escalate(self, alert_id, level) -> bool:
        """Record a higher escalation level on an active alert."""
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status != AlertStatus.ACTIVE:
                return False
            if level <= alert.escalation_level:
                return False
            alert.escalation_level = level
            self._persist(alert)
        logger.info(f"Alert {alert_id} escalated to level {level}")
        self._notify()
        return True

    def _persist(self, alert):
        if self.repository is None:
            return
        try:
            self.repository.save_alert(alert)
        except Exception as e:
            logger.error(f"Failed to persist alert {alert.id}: {e}")

    # --- Reads ---

    def get(self, alert_id) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return copy.deepcopy(alert) if alert else None

    def get_all(self):
        with self._lock:
            return copy.deepcopy(list(self._alerts.values()))

    def query(self, status=None, severity=None, category=None, limit=None):
        """Alerts matching every given filter, newest first."""
        statuses = _as_set(status, AlertStatus)
        severities = _as_set(severity, Severity)
        categories = _as_set(category, Category)

        results = [
            a for a in self.get_all()
            if (statuses is None or a.status in statuses)
            and (severities is None or a.severity in severities)
            and (categories is None or a.category in categories)
        ]
        results.sort(key=lambda a: a.timestamp, reverse=True)
        if limit is not None:
            if limit < 0:
                raise ValueError(f"limit must be >= 0, got {limit}")
            results = results[:limit]
        return results

    # --- Subscriptions ---

    def subscribe(self, callback):
        """Register a listener; it is called now and after every mutation.

        Returns an idempotent unsubscribe function.
        """
        sub = _Subscription(callback)
        with self._lock:
            handle = next(self._handles)
            self._subscribers[handle] = sub
            version = self._version
            snapshot = copy.deepcopy(list(self._alerts.values()))
        sub.deliver(version, snapshot)

        def unsubscribe():
            with self._lock:
                self._subscribers.pop(handle, None)

        return unsubscribe

    def _notify(self):
        with self._lock:
            self._version += 1
            version = self._version
            listeners = [sub for _, sub in sorted(self._subscribers.items())]
            snapshot = copy.deepcopy(list(self._alerts.values()))
        for sub in listeners:
            sub.deliver(version, snapshot)


class _Subscription:
    """One listener. Snapshots older than the last one delivered are dropped."""

    def __init__(self, callback):
        self.callback = callback
        self.last_version = -1
        self._lock = threading.RLock()

    def deliver(self, version, alerts):
        with self._lock:
            if version <= self.last_version:
                return
            self.last_version = version
            try:
                self.callback(alerts)
            except Exception as e:
                logger.warning(f"Subscriber error: {e}")
