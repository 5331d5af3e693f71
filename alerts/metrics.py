"""Read-side aggregation over the alert collection."""
from collections import Counter

from models.alerts import AlertMetrics
from models.enums import AlertStatus, Severity


def _pct(part, total):
    return (part / total) * 100 if total > 0 else 0.0


def compute_metrics(alerts) -> AlertMetrics:
    """Counts, rates and mean resolution time (minutes) for a set of alerts."""
    alerts = list(alerts)
    total = len(alerts)

    active = [a for a in alerts if a.status == AlertStatus.ACTIVE]
    critical = [a for a in active if a.severity == Severity.CRITICAL]

    resolved = [a for a in alerts if a.status == AlertStatus.RESOLVED and a.resolved_at]
    if resolved:
        minutes = sum((a.resolved_at - a.timestamp).total_seconds() for a in resolved) / 60
        avg_resolution = minutes / len(resolved)
    else:
        avg_resolution = 0.0

    escalated = sum(1 for a in alerts if a.escalation_level > 1)
    acknowledged = sum(1 for a in alerts if a.acknowledged_at is not None)

    return AlertMetrics(
        total_alerts=total,
        active_alerts=len(active),
        critical_alerts=len(critical),
        average_resolution_time=avg_resolution,
        alerts_by_category=dict(Counter(a.category.value for a in alerts)),
        alerts_by_severity=dict(Counter(a.severity.value for a in alerts)),
        escalation_rate=_pct(escalated, total),
        acknowledged_rate=_pct(acknowledged, total),
    )
