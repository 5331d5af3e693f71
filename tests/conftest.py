"""Shared test fixtures."""
import os
import sys
import pytest
import tempfile

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime, timedelta, timezone

from models.database import Database
from models.alerts import DeliveryResult
from alerts.rules_manager import RulesManager, build_rule
from alerts.registry import AlertRegistry
from alerts.escalation import EscalationScheduler
from alerts.engine import AlertEvaluator

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes):
    """Fixed point in time, ``minutes`` after T0."""
    return T0 + timedelta(minutes=minutes)


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, minutes):
        self.now = self.now + timedelta(minutes=minutes)
        return self.now


class RecordingNotifier:
    """Router stand-in that records every send and can fail chosen channels."""

    def __init__(self, fail_kinds=()):
        self.sent = []
        self.fail_kinds = set(fail_kinds)

    def send(self, kind, alert, recipients):
        self.sent.append((kind.value, alert.id, alert.escalation_level, list(recipients)))
        if kind.value in self.fail_kinds:
            return DeliveryResult.failed(f"{kind.value} down")
        return DeliveryResult.ok()

    def levels_for(self, alert_id):
        return sorted({lvl for _, aid, lvl, _ in self.sent if aid == alert_id})


def rule_data(rule_id="r-temp", metric="temperature", comparator=">", threshold=35,
              sustain=None, severity="high", category="system", enabled=True, escalation=None):
    return {
        "id": rule_id,
        "name": f"Rule {rule_id}",
        "description": f"{metric} check",
        "category": category,
        "severity": severity,
        "enabled": enabled,
        "condition": {
            "metric": metric,
            "comparator": comparator,
            "threshold": threshold,
            "sustain_minutes": sustain,
        },
        "escalation": escalation or [
            {"level": 1, "delay_minutes": 0, "recipients": ["operator"], "channels": ["dashboard"]},
            {"level": 2, "delay_minutes": 15, "recipients": ["supervisor"], "channels": ["email", "sms"]},
        ],
    }


def make_rules(*rules):
    mgr = RulesManager(rules_path=None)
    for data in rules:
        mgr.create_rule(data)
    return mgr


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    db = Database(db_path)
    db.connect()
    yield db
    db.close()
    os.unlink(db_path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return AlertRegistry(clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def rules():
    return make_rules(rule_data())


@pytest.fixture
def escalation(rules, registry, notifier, clock):
    return EscalationScheduler(rules, registry, notifier, clock=clock)


@pytest.fixture
def evaluator(rules, registry, escalation, clock):
    return AlertEvaluator(rules, registry, escalation=escalation, clock=clock)


@pytest.fixture
def sample_rule():
    return build_rule(rule_data())
