"""Alert rules loading, validation, and management."""
import itertools
import logging
import threading
import yaml
from pathlib import Path

from models.alerts import AlertRule, Condition, EscalationStep, parse_dt, utcnow
from models.enums import Category, ChannelKind, Comparator, Severity

logger = logging.getLogger("gridwatch.alerts.rules")

_COMPARATOR_ALIASES = {"==": "="}
_IMMUTABLE_FIELDS = ("id", "created_at")


class RuleValidationError(ValueError):
    """Raised when a rule definition is rejected at the store boundary."""


def _enum(enum_cls, value, field_name):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise RuleValidationError(f"Invalid {field_name} {value!r} (expected one of: {allowed})")


def _number(value, field_name):
    if isinstance(value, bool):
        raise RuleValidationError(f"{field_name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise RuleValidationError(f"{field_name} must be a number, got {value!r}")


def parse_condition(raw):
    if not isinstance(raw, dict):
        raise RuleValidationError("condition must be a mapping")
    metric = raw.get("metric")
    if not metric or not isinstance(metric, str):
        raise RuleValidationError("condition.metric is required")

    op = raw.get("comparator", raw.get("operator"))
    op = _COMPARATOR_ALIASES.get(op, op)
    comparator = _enum(Comparator, op, "comparator")
    threshold = _number(raw.get("threshold"), "condition.threshold")

    sustain = raw.get("sustain_minutes", raw.get("duration"))
    if sustain is not None:
        sustain = _number(sustain, "condition.sustain_minutes")
        if sustain < 0:
            raise RuleValidationError("condition.sustain_minutes must be >= 0")
    return Condition(metric=metric, comparator=comparator, threshold=threshold, sustain_minutes=sustain)


def parse_escalation(raw_steps):
    """Parse and validate an escalation ladder."""
    if not raw_steps:
        raise RuleValidationError("escalation ladder must have at least one level")

    steps = []
    for raw in raw_steps:
        if not isinstance(raw, dict):
            raise RuleValidationError("escalation levels must be mappings")
        try:
            level = int(raw["level"])
        except (KeyError, TypeError, ValueError):
            raise RuleValidationError(f"escalation level must be an integer: {raw.get('level')!r}")
        delay = _number(raw.get("delay_minutes", 0), f"level {level} delay_minutes")
        if delay < 0:
            raise RuleValidationError(f"level {level} delay_minutes must be >= 0")
        channels = [_enum(ChannelKind, c, f"level {level} channel") for c in raw.get("channels") or []]
        recipients = [str(r) for r in raw.get("recipients") or []]
        steps.append(EscalationStep(level=level, delay_minutes=delay,
                                    recipients=recipients, channels=channels))

    levels = [s.level for s in steps]
    if len(set(levels)) != len(levels):
        raise RuleValidationError(f"duplicate escalation levels: {levels}")
    if any(b <= a for a, b in zip(levels, levels[1:])):
        raise RuleValidationError(f"escalation levels must be strictly increasing: {levels}")

    first = steps[0]
    if first.level != 1:
        raise RuleValidationError("escalation ladder must start at level 1")
    if first.delay_minutes != 0:
        raise RuleValidationError("level 1 must have delay_minutes = 0")
    if not first.channels:
        raise RuleValidationError("level 1 must have at least one channel")
    return steps


def build_rule(data: dict) -> AlertRule:
    """Validate a raw rule mapping and build an AlertRule."""
    if not isinstance(data, dict):
        raise RuleValidationError("rule must be a mapping")
    name = data.get("name") or data.get("id")
    if not name:
        raise RuleValidationError("rule name is required")

    return AlertRule(
        id=str(data.get("id") or ""),
        name=name,
        description=data.get("description", ""),
        category=_enum(Category, data.get("category", "system"), "category"),
        severity=_enum(Severity, data.get("severity", "info"), "severity"),
        condition=parse_condition(data.get("condition")),
        enabled=bool(data.get("enabled", True)),
        escalation=parse_escalation(data.get("escalation", data.get("escalation_rules"))),
        created_by=data.get("created_by", "system"),
        created_at=parse_dt(data.get("created_at")) or utcnow(),
        last_triggered_at=parse_dt(data.get("last_triggered_at")),
    )


class RulesManager:
    """Thread-safe in-memory rule store, optionally seeded from YAML."""

    def __init__(self, rules_path="config/alert_rules.yaml"):
        self.rules_path = Path(rules_path) if rules_path else None
        self.rules = []
        self._lock = threading.RLock()
        self._ids = itertools.count(1)

    def load(self):
        if self.rules_path is None or not self.rules_path.exists():
            logger.warning(f"Alert rules file not found: {self.rules_path}")
            return self
        with open(self.rules_path) as f:
            data = yaml.safe_load(f) or {}
        loaded = []
        for raw in data.get("rules", []):
            try:
                loaded.append(build_rule(raw))
            except RuleValidationError as e:
                logger.warning(f"Invalid rule {raw.get('id') if isinstance(raw, dict) else raw!r}: {e}")
        with self._lock:
            self.rules = []
            for rule in loaded:
                self._insert(rule)
        logger.info(f"Loaded {len(self.rules)} rules from {self.rules_path}")
        return self

    def _next_id(self):
        existing = {r.id for r in self.rules}
        while True:
            candidate = f"rule-{next(self._ids)}"
            if candidate not in existing:
                return candidate

    def _insert(self, rule):
        if not rule.id:
            rule.id = self._next_id()
        elif self.get_rule(rule.id) is not None:
            raise RuleValidationError(f"duplicate rule id: {rule.id}")
        self.rules.append(rule)
        return rule

    def get_rules(self):
        with self._lock:
            return list(self.rules)

    def get_enabled_rules(self):
        with self._lock:
            return [r for r in self.rules if r.enabled]

    def get_rule(self, rule_id):
        with self._lock:
            for r in self.rules:
                if r.id == rule_id:
                    return r
        return None

    def find_matching(self, category, severity):
        """Enabled rules sharing the given category and severity."""
        with self._lock:
            return [r for r in self.rules
                    if r.enabled and r.category == category and r.severity == severity]

    def create_rule(self, spec) -> AlertRule:
        data = spec.to_dict() if isinstance(spec, AlertRule) else dict(spec)
        data.pop("last_triggered_at", None)
        data["created_at"] = None
        rule = build_rule(data)
        with self._lock:
            self._insert(rule)
        logger.info(f"Created rule {rule.id} ({rule.name})")
        return rule

    def update_rule(self, rule_id, patch: dict) -> bool:
        with self._lock:
            current = self.get_rule(rule_id)
            if current is None:
                return False
            merged = current.to_dict()
            for key, value in patch.items():
                if key in _IMMUTABLE_FIELDS:
                    continue
                if key == "condition" and isinstance(value, dict):
                    merged["condition"] = {**merged["condition"], **value}
                else:
                    merged[key] = value
            updated = build_rule(merged)
            idx = self.rules.index(current)
            self.rules[idx] = updated
        logger.info(f"Updated rule {rule_id}")
        return True

    def delete_rule(self, rule_id) -> bool:
        with self._lock:
            rule = self.get_rule(rule_id)
            if rule is None:
                return False
            self.rules.remove(rule)
        logger.info(f"Deleted rule {rule_id}")
        return True

    def mark_triggered(self, rule_id, when=None):
        with self._lock:
            rule = self.get_rule(rule_id)
            if rule is not None:
                rule.last_triggered_at = when or utcnow()
