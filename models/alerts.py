"""Dataclasses for alert rules, alert records, metrics, and delivery results."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from models.enums import (
    AlertStatus, Category, ChannelKind, Comparator, DeliveryStatus, Severity,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_dt(value) -> Optional[datetime]:
    """Accept datetimes or ISO strings; naive values are treated as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Condition:
    metric: str = ""
    comparator: Comparator = Comparator.GT
    threshold: float = 0.0
    sustain_minutes: Optional[float] = None

    def to_dict(self):
        return {
            "metric": self.metric,
            "comparator": self.comparator.value,
            "threshold": self.threshold,
            "sustain_minutes": self.sustain_minutes,
        }


@dataclass
class EscalationStep:
    level: int = 1
    delay_minutes: float = 0.0
    recipients: list = field(default_factory=list)
    channels: list = field(default_factory=list)

    def to_dict(self):
        return {
            "level": self.level,
            "delay_minutes": self.delay_minutes,
            "recipients": list(self.recipients),
            "channels": [c.value for c in self.channels],
        }


@dataclass
class AlertRule:
    id: str = ""
    name: str = ""
    description: str = ""
    category: Category = Category.SYSTEM
    severity: Severity = Severity.INFO
    condition: Condition = field(default_factory=Condition)
    enabled: bool = True
    escalation: list = field(default_factory=list)
    created_by: str = "system"
    created_at: datetime = field(default_factory=utcnow)
    last_triggered_at: Optional[datetime] = None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "severity": self.severity.value,
            "condition": self.condition.to_dict(),
            "enabled": self.enabled,
            "escalation": [step.to_dict() for step in self.escalation],
            "created_by": self.created_by,
            "created_at": to_iso(self.created_at),
            "last_triggered_at": to_iso(self.last_triggered_at),
        }


@dataclass
class Alert:
    id: str = ""
    title: str = ""
    message: str = ""
    source: str = ""
    severity: Severity = Severity.INFO
    category: Category = Category.SYSTEM
    timestamp: datetime = field(default_factory=utcnow)
    status: AlertStatus = AlertStatus.ACTIVE
    rule_id: Optional[str] = None
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    escalation_level: int = 1
    affected_systems: list = field(default_factory=list)
    recommended_actions: list = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "source": self.source,
            "severity": self.severity.value,
            "category": self.category.value,
            "timestamp": to_iso(self.timestamp),
            "status": self.status.value,
            "rule_id": self.rule_id,
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": to_iso(self.acknowledged_at),
            "resolved_by": self.resolved_by,
            "resolved_at": to_iso(self.resolved_at),
            "escalation_level": self.escalation_level,
            "affected_systems": list(self.affected_systems),
            "recommended_actions": list(self.recommended_actions),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Alert":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            message=data.get("message", ""),
            source=data.get("source", ""),
            severity=Severity(data.get("severity", "info")),
            category=Category(data.get("category", "system")),
            timestamp=parse_dt(data.get("timestamp")) or utcnow(),
            status=AlertStatus(data.get("status", "active")),
            rule_id=data.get("rule_id"),
            acknowledged_by=data.get("acknowledged_by"),
            acknowledged_at=parse_dt(data.get("acknowledged_at")),
            resolved_by=data.get("resolved_by"),
            resolved_at=parse_dt(data.get("resolved_at")),
            escalation_level=int(data.get("escalation_level", 1)),
            affected_systems=list(data.get("affected_systems") or []),
            recommended_actions=list(data.get("recommended_actions") or []),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class AlertMetrics:
    total_alerts: int = 0
    active_alerts: int = 0
    critical_alerts: int = 0
    average_resolution_time: float = 0.0
    alerts_by_category: dict = field(default_factory=dict)
    alerts_by_severity: dict = field(default_factory=dict)
    escalation_rate: float = 0.0
    acknowledged_rate: float = 0.0

    def to_dict(self):
        return {
            "total_alerts": self.total_alerts,
            "active_alerts": self.active_alerts,
            "critical_alerts": self.critical_alerts,
            "average_resolution_time": self.average_resolution_time,
            "alerts_by_category": dict(self.alerts_by_category),
            "alerts_by_severity": dict(self.alerts_by_severity),
            "escalation_rate": self.escalation_rate,
            "acknowledged_rate": self.acknowledged_rate,
        }


@dataclass
class DeliveryResult:
    status: DeliveryStatus = DeliveryStatus.DELIVERED
    reason: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    @classmethod
    def ok(cls):
        return cls(DeliveryStatus.DELIVERED)

    @classmethod
    def failed(cls, reason):
        return cls(DeliveryStatus.FAILED, str(reason))


@dataclass
class DeliveryRecord:
    alert_id: str = ""
    level: int = 1
    channel: ChannelKind = ChannelKind.DASHBOARD
    recipients: list = field(default_factory=list)
    status: DeliveryStatus = DeliveryStatus.DELIVERED
    reason: Optional[str] = None
    sent_at: datetime = field(default_factory=utcnow)
