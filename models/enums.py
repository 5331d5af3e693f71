"""Enums for severity, category, alert status, comparators, and channel kinds."""
from enum import Enum


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class Category(str, Enum):
    SYSTEM = "system"
    PERFORMANCE = "performance"
    MAINTENANCE = "maintenance"
    SECURITY = "security"
    ENVIRONMENTAL = "environmental"
    COMPLIANCE = "compliance"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class Comparator(str, Enum):
    GT = ">"
    LT = "<"
    EQ = "="
    GE = ">="
    LE = "<="
    NE = "!="


class ChannelKind(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    DASHBOARD = "dashboard"
    WEBHOOK = "webhook"


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({AlertStatus.RESOLVED, AlertStatus.DISMISSED})
