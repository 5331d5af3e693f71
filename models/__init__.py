"""Data models."""
from models.enums import Severity, Category, AlertStatus, Comparator, ChannelKind, DeliveryStatus
from models.alerts import (
    Condition, EscalationStep, AlertRule, Alert, AlertMetrics, DeliveryResult, DeliveryRecord,
)
