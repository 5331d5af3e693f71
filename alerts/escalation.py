"""Escalation scheduler: walks active alerts up their rule's notification ladder."""
import logging
import threading

from models.alerts import DeliveryRecord, DeliveryResult, utcnow
from models.enums import AlertStatus, DeliveryStatus

logger = logging.getLogger("gridwatch.alerts.escalation")


def cumulative_ladder(steps):
    """[(step, minutes since alert creation)] for a ladder of per-level delays."""
    total = 0.0
    ladder = []
    for step in sorted(steps, key=lambda s: s.level):
        total += step.delay_minutes
        ladder.append((step, total))
    return ladder


class EscalationScheduler:
    """Dispatches each escalation level of an active alert exactly once.

    Acknowledged, resolved and dismissed alerts are never dispatched. Levels
    skipped because the scheduler was not ticked are not back-filled.
    """

    def __init__(self, rules_manager, registry, notifier, repository=None, clock=utcnow):
        self.rules_manager = rules_manager
        self.registry = registry
        self.notifier = notifier
        self.repository = repository
        self.clock = clock
        self._dispatched = {}
        self._lock = threading.Lock()

    def rules_for(self, alert):
        """Rules whose ladder applies to the alert.

        Alerts raised by a rule follow that rule's ladder. Alerts created
        directly carry no rule id and fall back to every enabled rule sharing
        their category and severity.
        """
        if alert.rule_id:
            rule = self.rules_manager.get_rule(alert.rule_id)
            return [rule] if rule is not None and rule.enabled else []
        return self.rules_manager.find_matching(alert.category, alert.severity)

    def tick(self, now=None):
        """Process every active alert. Returns the delivery records of this tick."""
        now = now or self.clock()
        self._prune()
        active = self.registry.query(status=[AlertStatus.ACTIVE])

        records = []
        for alert in active:
            try:
                records.extend(self.process_alert(alert, now))
            except Exception as e:
                logger.error(f"Escalation failed for alert {alert.id}: {e}")
        return records

    def process_alert(self, alert, now=None):
        now = now or self.clock()
        current = self.registry.get(alert.id)
        if current is None or current.status != AlertStatus.ACTIVE:
            return []

        elapsed = (now - current.timestamp).total_seconds() / 60
        ladders = [(rule, cumulative_ladder(rule.escalation)) for rule in self.rules_for(current)]
        if not ladders:
            return []

        reached = [step.level for _, ladder in ladders for step, at in ladder if at <= elapsed]
        level = max([current.escalation_level] + reached)
        if level > current.escalation_level:
            if not self.registry.escalate(current.id, level):
                return []
            current.escalation_level = level

        with self._lock:
            sent = self._dispatched.setdefault(current.id, set())
            if level in sent:
                return []
            due = [step for _, ladder in ladders for step, at in ladder
                   if step.level == level and at <= elapsed]
            if due:
                sent.add(level)

        records = []
        for step in due:
            for kind in step.channels:
                records.append(self._send(kind, current, step, now))
        return records

    def _send(self, kind, alert, step, now):
        try:
            result = self.notifier.send(kind, alert, list(step.recipients))
        except Exception as e:
            result = DeliveryResult.failed(e)
        if result is None:
            result = DeliveryResult.ok()

        record = DeliveryRecord(
            alert_id=alert.id, level=step.level, channel=kind,
            recipients=list(step.recipients), status=result.status,
            reason=result.reason, sent_at=now,
        )
        if result.status == DeliveryStatus.FAILED:
            logger.warning(f"Delivery failed: alert={alert.id} channel={kind.value} "
                           f"level={step.level} reason={result.reason}")
        else:
            logger.info(f"[{kind.value.upper()}] level {step.level} alert {alert.id} "
                        f"-> {', '.join(step.recipients) or '(no recipients)'}")

        if self.repository is not None:
            try:
                self.repository.log_delivery(record)
            except Exception as e:
                logger.error(f"Failed to record delivery for alert {alert.id}: {e}")
        return record

    def _prune(self):
        """Forget alerts that have left the active state."""
        with self._lock:
            tracked = list(self._dispatched)
        for alert_id in tracked:
            alert = self.registry.get(alert_id)
            if alert is None or alert.status != AlertStatus.ACTIVE:
                with self._lock:
                    self._dispatched.pop(alert_id, None)

    def dispatched_levels(self, alert_id):
        with self._lock:
            return set(self._dispatched.get(alert_id, set()))

    def restore(self):
        """Seed dispatched levels from the delivery log so restarts do not re-notify."""
        if self.repository is None:
            return 0
        seeded = 0
        with self._lock:
            for alert_id, level in self.repository.get_dispatched_levels():
                self._dispatched.setdefault(alert_id, set()).add(level)
                seeded += 1
        return seeded
