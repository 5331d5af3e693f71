"""Tests for the escalation scheduler."""
from unittest.mock import MagicMock

from conftest import at, make_rules, rule_data, RecordingNotifier
from models.enums import AlertStatus, DeliveryStatus
from alerts.escalation import EscalationScheduler, cumulative_ladder
from alerts.registry import AlertRegistry
from alerts.rules_manager import parse_escalation


def _fire(registry, escalation, rule_id="r-temp", minute=0, **extra):
    spec = {"title": "Overheat", "severity": "high", "category": "system", "rule_id": rule_id, **extra}
    alert = registry.create(spec, now=at(minute))
    escalation.process_alert(alert, at(minute))
    return alert


THREE_LEVELS = [
    {"level": 1, "delay_minutes": 0, "recipients": ["op"], "channels": ["dashboard"]},
    {"level": 2, "delay_minutes": 10, "recipients": ["sup"], "channels": ["email"]},
    {"level": 3, "delay_minutes": 10, "recipients": ["mgr"], "channels": ["sms"]},
]


def test_cumulative_ladder():
    ladder = cumulative_ladder(parse_escalation(THREE_LEVELS))
    assert [(s.level, at_) for s, at_ in ladder] == [(1, 0), (2, 10), (3, 20)]


class TestLadder:
    def test_level_one_sent_at_creation(self, registry, escalation, notifier):
        alert = _fire(registry, escalation)
        assert notifier.sent == [("dashboard", alert.id, 1, ["operator"])]

    def test_nothing_new_before_delay(self, registry, escalation, notifier):
        alert = _fire(registry, escalation)
        assert escalation.tick(at(10)) == []
        assert registry.get(alert.id).escalation_level == 1
        assert len(notifier.sent) == 1

    def test_level_two_after_delay(self, registry, escalation, notifier):
        alert = _fire(registry, escalation)
        records = escalation.tick(at(16))
        assert {r.channel.value for r in records} == {"email", "sms"}
        assert all(r.level == 2 for r in records)
        assert registry.get(alert.id).escalation_level == 2
        assert notifier.levels_for(alert.id) == [1, 2]

    def test_each_level_sent_once(self, registry, escalation, notifier):
        alert = _fire(registry, escalation)
        escalation.tick(at(16))
        escalation.tick(at(17))
        escalation.tick(at(60))
        assert len([s for s in notifier.sent if s[2] == 2]) == 2  # email + sms, once

    def test_acknowledge_stops_escalation(self, registry, escalation, notifier):
        alert = _fire(registry, escalation)
        registry.acknowledge(alert.id, "alice")
        assert escalation.tick(at(16)) == []
        got = registry.get(alert.id)
        assert got.escalation_level == 1
        assert got.status == AlertStatus.ACKNOWLEDGED
        assert notifier.levels_for(alert.id) == [1]

    def test_resolved_and_dismissed_never_dispatch(self, registry, escalation, notifier):
        a = _fire(registry, escalation)
        b = _fire(registry, escalation)
        registry.resolve(a.id, "bob")
        registry.dismiss(b.id)
        notifier.sent.clear()
        escalation.tick(at(100))
        assert notifier.sent == []

    def test_skipped_levels_not_backfilled(self, registry, notifier):
        rules = make_rules(rule_data(escalation=THREE_LEVELS))
        escalation = EscalationScheduler(rules, registry, notifier)
        alert = _fire(registry, escalation)
        escalation.tick(at(25))
        assert registry.get(alert.id).escalation_level == 3
        assert notifier.levels_for(alert.id) == [1, 3]

    def test_no_auto_advance_within_tick(self, registry, notifier):
        rules = make_rules(rule_data(escalation=THREE_LEVELS))
        escalation = EscalationScheduler(rules, registry, notifier)
        alert = _fire(registry, escalation)
        escalation.tick(at(12))
        assert registry.get(alert.id).escalation_level == 2
        escalation.tick(at(21))
        assert registry.get(alert.id).escalation_level == 3
        assert notifier.levels_for(alert.id) == [1, 2, 3]


class TestMatching:
    def test_direct_alert_uses_category_and_severity(self, registry, escalation, notifier):
        alert = _fire(registry, escalation, rule_id=None)
        assert notifier.levels_for(alert.id) == [1]

    def test_direct_alert_without_matching_rule(self, registry, escalation, notifier):
        alert = _fire(registry, escalation, rule_id=None, severity="low")
        assert notifier.sent == []
        escalation.tick(at(60))
        assert registry.get(alert.id).escalation_level == 1

    def test_rule_alert_only_follows_its_rule(self, registry, notifier):
        rules = make_rules(
            rule_data("r-a"),
            rule_data("r-b", escalation=[
                {"level": 1, "delay_minutes": 0, "recipients": ["other"], "channels": ["webhook"]},
            ]),
        )
        escalation = EscalationScheduler(rules, registry, notifier)
        _fire(registry, escalation, rule_id="r-a")
        assert [s[0] for s in notifier.sent] == ["dashboard"]

    def test_disabled_rule_stops_escalation(self, registry, escalation, rules, notifier):
        alert = _fire(registry, escalation)
        rules.update_rule("r-temp", {"enabled": False})
        escalation.tick(at(30))
        assert notifier.levels_for(alert.id) == [1]


class TestDeliveryFailures:
    def test_failure_is_recorded_and_does_not_block(self, registry, rules, temp_db):
        notifier = RecordingNotifier(fail_kinds={"email"})
        escalation = EscalationScheduler(rules, registry, notifier, repository=temp_db)
        alert = _fire(registry, escalation)
        records = escalation.tick(at(16))

        by_channel = {r.channel.value: r for r in records}
        assert by_channel["email"].status == DeliveryStatus.FAILED
        assert by_channel["email"].reason == "email down"
        assert by_channel["sms"].status == DeliveryStatus.DELIVERED
        # failed level is not retried
        assert escalation.tick(at(17)) == []

        log = temp_db.get_delivery_log(alert_id=alert.id)
        assert len(log) == 3
        assert {(e["channel"], e["status"]) for e in log} == {
            ("dashboard", "delivered"), ("email", "failed"), ("sms", "delivered"),
        }

    def test_raising_notifier_becomes_failed_record(self, registry, rules):
        notifier = MagicMock()
        notifier.send.side_effect = RuntimeError("smtp exploded")
        escalation = EscalationScheduler(rules, registry, notifier)
        alert = registry.create({"title": "x", "severity": "high", "rule_id": "r-temp"}, now=at(0))
        records = escalation.process_alert(alert, at(0))
        assert records[0].status == DeliveryStatus.FAILED
        assert "smtp exploded" in records[0].reason

    def test_one_bad_alert_does_not_stop_tick(self, registry, rules, notifier):
        escalation = EscalationScheduler(rules, registry, notifier)
        good = _fire(registry, escalation)
        original = escalation.process_alert

        def flaky(alert, now=None):
            if alert.id == good.id:
                return original(alert, now)
            raise RuntimeError("boom")

        bad = registry.create({"title": "bad", "severity": "high", "rule_id": "r-temp"}, now=at(0))
        escalation.process_alert = flaky
        escalation.tick(at(16))
        assert notifier.levels_for(good.id) == [1, 2]
        assert registry.get(bad.id).escalation_level == 1


class TestRestore:
    def test_restore_prevents_resend_after_restart(self, clock, rules, temp_db):
        registry = AlertRegistry(repository=temp_db, clock=clock)
        first = RecordingNotifier()
        escalation = EscalationScheduler(rules, registry, first, repository=temp_db)
        alert = _fire(registry, escalation)

        registry2 = AlertRegistry(repository=temp_db, clock=clock)
        registry2.load()
        second = RecordingNotifier()
        escalation2 = EscalationScheduler(rules, registry2, second, repository=temp_db)
        assert escalation2.restore() == 1
        assert escalation2.dispatched_levels(alert.id) == {1}

        escalation2.tick(at(5))
        assert second.sent == []
        escalation2.tick(at(16))
        assert second.levels_for(alert.id) == [2]

    def test_prune_forgets_closed_alerts(self, registry, escalation):
        alert = _fire(registry, escalation)
        assert escalation.dispatched_levels(alert.id) == {1}
        registry.resolve(alert.id, "bob")
        escalation.tick(at(1))
        assert escalation.dispatched_levels(alert.id) == set()
