"""Alert service: the query and command surface consumed by the UI, API and CLI.

Components are constructed and wired explicitly; nothing starts running until
``start()`` is called.
"""
import logging

from alerts.channels import build_router
from alerts.engine import AlertEvaluator
from alerts.escalation import EscalationScheduler
from alerts.metrics import compute_metrics
from alerts.registry import AlertRegistry
from alerts.rules_manager import RulesManager
from models.enums import ChannelKind
from monitor.scheduler import PeriodicScheduler

logger = logging.getLogger("gridwatch.alerts.service")


class AlertService:
    def __init__(self, rules, registry, evaluator, escalation, router=None,
                 eval_interval=30, escalation_interval=30):
        self.rules = rules
        self.registry = registry
        self.evaluator = evaluator
        self.escalation = escalation
        self.router = router
        self.eval_interval = eval_interval
        self.escalation_interval = escalation_interval
        self._scheduler = None

    # --- Lifecycle ---

    def start(self, scheduler=None):
        """Start the evaluation and escalation loops."""
        if self._scheduler is not None:
            return self._scheduler
        sched = scheduler or PeriodicScheduler()
        if self.evaluator.source is not None:
            sched.every(self.eval_interval, self.evaluator.run_once, name="evaluate")
        else:
            logger.warning("No metric source configured; rule evaluation loop disabled")
        sched.every(self.escalation_interval, self.escalation.tick, name="escalate")
        sched.start()
        self._scheduler = sched
        return sched

    def stop(self):
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler = None

    @property
    def running(self):
        return self._scheduler is not None and self._scheduler.running

    # --- Alerts ---

    def query(self, status=None, severity=None, category=None, limit=None):
        return self.registry.query(status=status, severity=severity, category=category, limit=limit)

    def get_alert(self, alert_id):
        return self.registry.get(alert_id)

    def create_alert(self, spec):
        """Create an alert directly (not via a rule) and dispatch its first level."""
        alert = self.registry.create(spec)
        self.escalation.process_alert(alert, alert.timestamp)
        return alert

    def acknowledge(self, alert_id, actor_id):
        return self.registry.acknowledge(alert_id, actor_id)

    def resolve(self, alert_id, actor_id):
        return self.registry.resolve(alert_id, actor_id)

    def dismiss(self, alert_id):
        return self.registry.dismiss(alert_id)

    def subscribe(self, callback):
        return self.registry.subscribe(callback)

    def get_metrics(self):
        return compute_metrics(self.registry.get_all())

    def evaluate(self, readings, now=None):
        """Run one evaluation tick against supplied readings."""
        return self.evaluator.tick(readings, now)

    def recent_notifications(self, limit=50):
        if self.router is None:
            return []
        dashboard = self.router.get(ChannelKind.DASHBOARD)
        if dashboard is None or not hasattr(dashboard, "recent"):
            return []
        return dashboard.recent(limit)

    # --- Rules ---

    def get_rules(self):
        return self.rules.get_rules()

    def get_rule(self, rule_id):
        return self.rules.get_rule(rule_id)

    def create_rule(self, spec):
        return self.rules.create_rule(spec)

    def update_rule(self, rule_id, patch):
        return self.rules.update_rule(rule_id, patch)

    def delete_rule(self, rule_id):
        return self.rules.delete_rule(rule_id)


def build_service(config: dict, repository=None, source=None, router=None, console=False):
    """Wire rule store, registry, evaluator and escalation from config."""
    rules = RulesManager(config.get("rules", {}).get("path", "config/alert_rules.yaml")).load()

    registry = AlertRegistry(repository=repository)
    if repository is not None:
        registry.load()

    router = router or build_router(config, console=console)
    escalation = EscalationScheduler(rules, registry, router, repository=repository)
    escalation.restore()
    evaluator = AlertEvaluator(rules, registry, source=source, escalation=escalation)

    return AlertService(
        rules, registry, evaluator, escalation, router=router,
        eval_interval=config.get("evaluator", {}).get("interval_seconds", 30),
        escalation_interval=config.get("escalation", {}).get("tick_seconds", 30),
    )
