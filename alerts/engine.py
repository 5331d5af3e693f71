"""Alert rule evaluation engine."""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from models.alerts import AlertRule, utcnow
from models.enums import Comparator

logger = logging.getLogger("gridwatch.alerts.engine")

OPERATOR_MAP = {
    Comparator.GT: lambda v, t: v > t,
    Comparator.LT: lambda v, t: v < t,
    Comparator.EQ: lambda v, t: v == t,
    Comparator.GE: lambda v, t: v >= t,
    Comparator.LE: lambda v, t: v <= t,
    Comparator.NE: lambda v, t: v != t,
}


@dataclass
class RuleState:
    condition_true_since: Optional[datetime] = None
    # Set after firing; cleared once the condition is observed false.
    latched: bool = False


class AlertEvaluator:
    """Samples readings against enabled rules and fires edge-triggered alerts."""

    def __init__(self, rules_manager, registry, source=None, escalation=None, clock=utcnow):
        self.rules_manager = rules_manager
        self.registry = registry
        self.source = source
        self.escalation = escalation
        self.clock = clock
        self._states = {}
        self._lock = threading.Lock()

    def _evaluate_condition(self, value, rule: AlertRule):
        func = OPERATOR_MAP[rule.condition.comparator]
        return func(value, rule.condition.threshold)

    def get_state(self, rule_id) -> RuleState:
        return self._states.setdefault(rule_id, RuleState())

    def run_once(self, now=None):
        """Pull the current readings from the metric source and evaluate."""
        if self.source is None:
            raise RuntimeError("No metric source configured")
        readings = self.source.get_current_readings()
        return self.tick(readings, now)

    def tick(self, readings, now=None):
        """Evaluate every enabled rule against one set of readings.

        Returns the alerts created on this tick. Firing decisions are made
        under the evaluator lock, so concurrent ticks latch a rule only once.
        """
        now = now or self.clock()
        rules = self.rules_manager.get_enabled_rules()
        due = []

        with self._lock:
            self._prune({r.id for r in self.rules_manager.get_rules()})
            for rule in rules:
                value = readings.get(rule.condition.metric)
                if value is None:
                    continue

                state = self.get_state(rule.id)
                if not self._evaluate_condition(value, rule):
                    state.condition_true_since = None
                    state.latched = False
                    continue

                if state.latched:
                    continue
                if state.condition_true_since is None:
                    state.condition_true_since = now

                sustain = rule.condition.sustain_minutes or 0
                held_minutes = (now - state.condition_true_since).total_seconds() / 60
                if held_minutes < sustain:
                    continue

                state.condition_true_since = None
                state.latched = True
                due.append((rule, value))

        return [self._fire(rule, value, now) for rule, value in due]

    def _fire(self, rule: AlertRule, value, now):
        cond = rule.condition
        spec = {
            "title": rule.name,
            "message": (f"{rule.description} ({cond.metric} = {value:.2f} "
                        f"{cond.comparator.value} {cond.threshold:g})").strip(),
            "source": f"rule:{rule.id}",
            "severity": rule.severity,
            "category": rule.category,
            "rule_id": rule.id,
            "metadata": {
                "metric": cond.metric,
                "value": value,
                "comparator": cond.comparator.value,
                "threshold": cond.threshold,
                "sustain_minutes": cond.sustain_minutes,
            },
        }
        alert = self.registry.create(spec, now=now)
        self.rules_manager.mark_triggered(rule.id, now)
        logger.info(f"Rule {rule.id} fired: {alert.message}")

        if self.escalation is not None:
            self.escalation.process_alert(alert, now)
        return alert

    def _prune(self, known_ids):
        for rule_id in list(self._states):
            if rule_id not in known_ids:
                del self._states[rule_id]

    def test_rules(self, readings):
        """Evaluate ALL rules without side effects, for testing/validation."""
        results = []
        for rule in self.rules_manager.get_rules():
            value = readings.get(rule.condition.metric)
            would_fire = self._evaluate_condition(value, rule) if value is not None else False
            results.append({
                "rule_id": rule.id,
                "name": rule.name,
                "metric": rule.condition.metric,
                "comparator": rule.condition.comparator.value,
                "threshold": rule.condition.threshold,
                "sustain_minutes": rule.condition.sustain_minutes,
                "current_value": value,
                "would_fire": would_fire,
                "severity": rule.severity.value,
                "enabled": rule.enabled,
            })
        return results
