"""Alert system module."""
from alerts.rules_manager import RulesManager, RuleValidationError
from alerts.registry import AlertRegistry
from alerts.engine import AlertEvaluator
from alerts.escalation import EscalationScheduler
from alerts.channels import ChannelRouter, DashboardChannel, EmailChannel, SmsChannel, WebhookChannel
from alerts.metrics import compute_metrics
