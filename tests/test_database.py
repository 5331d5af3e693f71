"""Tests for SQLite persistence of alerts and the delivery log."""
from conftest import at
from models.alerts import Alert, DeliveryRecord
from models.enums import AlertStatus, ChannelKind, DeliveryStatus, Severity


def _alert(alert_id="alert-1", minute=0, **kw):
    return Alert(id=alert_id, title="Overheat", message="hot", severity=Severity.HIGH,
                 timestamp=at(minute), rule_id="rule-1", **kw)


def test_tables_created(temp_db):
    tables = [r[0] for r in temp_db.conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table'"
    ).fetchall()]
    assert "alerts" in tables
    assert "notification_log" in tables


def test_save_and_get_alert(temp_db):
    temp_db.save_alert(_alert(metadata={"value": 41.2}))
    got = temp_db.get_alert("alert-1")
    assert got.title == "Overheat"
    assert got.timestamp == at(0)
    assert got.metadata == {"value": 41.2}
    assert temp_db.get_alert("missing") is None


def test_save_replaces(temp_db):
    alert = _alert()
    temp_db.save_alert(alert)
    alert.status = AlertStatus.ACKNOWLEDGED
    alert.acknowledged_by = "alice"
    alert.acknowledged_at = at(3)
    temp_db.save_alert(alert)
    assert temp_db.count_alerts() == 1
    got = temp_db.get_alert("alert-1")
    assert got.status == AlertStatus.ACKNOWLEDGED
    assert got.acknowledged_at == at(3)


def test_load_alerts_oldest_first(temp_db):
    temp_db.save_alert(_alert("b", minute=5))
    temp_db.save_alert(_alert("a", minute=1))
    assert [a.id for a in temp_db.load_alerts()] == ["a", "b"]


def test_delivery_log(temp_db):
    temp_db.log_delivery(DeliveryRecord("alert-1", 1, ChannelKind.EMAIL, ["op@x"],
                                        DeliveryStatus.DELIVERED, None, at(0)))
    temp_db.log_delivery(DeliveryRecord("alert-1", 2, ChannelKind.SMS, ["+100"],
                                        DeliveryStatus.FAILED, "gateway down", at(15)))
    temp_db.log_delivery(DeliveryRecord("alert-2", 1, ChannelKind.EMAIL, [],
                                        DeliveryStatus.DELIVERED, None, at(20)))

    log = temp_db.get_delivery_log(alert_id="alert-1")
    assert [e["level"] for e in log] == [2, 1]
    assert log[0]["recipients"] == ["+100"]
    assert log[0]["reason"] == "gateway down"
    assert len(temp_db.get_delivery_log(limit=2)) == 2

    stats = temp_db.get_delivery_stats()
    assert stats["email"] == {"delivered": 2}
    assert stats["sms"] == {"failed": 1}

    assert sorted(temp_db.get_dispatched_levels()) == [("alert-1", 1), ("alert-1", 2), ("alert-2", 1)]
