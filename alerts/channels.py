"""Alert notification channels.

The escalation scheduler only sees the router contract:

    send(kind, alert, recipients) -> DeliveryResult

Each per-kind channel implements ``send(alert, recipients)`` and may either
return a DeliveryResult or raise; the router turns exceptions into failed
results so one broken channel never affects another.
"""
import logging
import threading
from collections import deque

from models.alerts import DeliveryResult, utcnow
from models.enums import ChannelKind
from utils.http_client import HTTPClient
from utils.rate_limiter import RateLimiter

logger = logging.getLogger("gridwatch.alerts.channels")


class ChannelRouter:
    """Routes each channel kind to the channel registered for it."""

    def __init__(self, channels=None):
        self._channels = {}
        for kind, channel in (channels or {}).items():
            self.register(kind, channel)

    def register(self, kind, channel):
        self._channels[ChannelKind(kind)] = channel

    def get(self, kind):
        return self._channels.get(ChannelKind(kind))

    @property
    def kinds(self):
        return sorted(k.value for k in self._channels)

    def send(self, kind, alert, recipients) -> DeliveryResult:
        channel = self.get(kind)
        if channel is None:
            return DeliveryResult.failed(f"no channel configured for {ChannelKind(kind).value}")
        try:
            result = channel.send(alert, list(recipients))
        except Exception as e:
            return DeliveryResult.failed(e)
        return result if result is not None else DeliveryResult.ok()


class ConsoleChannel:
    """Print alerts to terminal with rich formatting."""

    severity_styles = {
        "critical": "bold white on red",
        "high": "bold red",
        "medium": "bold yellow",
        "low": "bold blue",
        "info": "dim",
    }

    def __init__(self, console=None):
        from rich.console import Console
        self.console = console or Console()

    def send(self, alert, recipients):
        sev = alert.severity.value
        style = self.severity_styles.get(sev, "")
        who = ", ".join(recipients) or "-"
        self.console.print(f"[{style}] [{sev.upper()}] L{alert.escalation_level} {alert.title}: "
                           f"{alert.message}[/] [dim]→ {who}[/dim]")
        return DeliveryResult.ok()


class DashboardChannel:
    """Keeps the most recent notifications in memory for the dashboard feed."""

    def __init__(self, max_items=200):
        self._items = deque(maxlen=max_items)
        self._lock = threading.Lock()

    def send(self, alert, recipients):
        with self._lock:
            self._items.appendleft({
                "alert_id": alert.id,
                "title": alert.title,
                "message": alert.message,
                "severity": alert.severity.value,
                "category": alert.category.value,
                "escalation_level": alert.escalation_level,
                "recipients": list(recipients),
                "sent_at": utcnow().isoformat(),
            })
        return DeliveryResult.ok()

    def recent(self, limit=50):
        with self._lock:
            return list(self._items)[:limit]


class EmailChannel:
    """Email alert channel backed by the SMTP EmailSender."""

    def __init__(self, config: dict, sender=None):
        from notifications.email_sender import EmailSender
        self.sender = sender or EmailSender(config)

    def send(self, alert, recipients):
        # EmailError propagates; the router records it as a failed delivery.
        self.sender.send_alert(alert, recipients)
        return DeliveryResult.ok()


class WebhookChannel:
    """POST the alert as JSON to a webhook endpoint."""

    def __init__(self, url, timeout=10, max_retries=2, headers=None, client=None):
        self.url = url
        self.client = client or HTTPClient(url, timeout=timeout, max_retries=max_retries, headers=headers)

    def payload(self, alert, recipients):
        return {
            "event": "alert.escalation",
            "alert": alert.to_dict(),
            "recipients": list(recipients),
        }

    def send(self, alert, recipients):
        self.client.post(json=self.payload(alert, recipients))
        return DeliveryResult.ok()


class SmsChannel:
    """Send a short text through an HTTP SMS gateway, one request per recipient."""

    MAX_LENGTH = 160

    def __init__(self, gateway_url, sender_id="GridWatch", rate_limit_per_minute=30,
                 timeout=10, max_retries=2, headers=None, client=None):
        self.sender_id = sender_id
        self.client = client or HTTPClient(
            gateway_url,
            rate_limiter=RateLimiter(rate_limit_per_minute) if rate_limit_per_minute else None,
            timeout=timeout,
            max_retries=max_retries,
            headers=headers,
        )

    def format_text(self, alert):
        text = f"[{alert.severity.value.upper()}] {alert.title}: {alert.message}"
        if len(text) > self.MAX_LENGTH:
            text = text[:self.MAX_LENGTH - 3] + "..."
        return text

    def send(self, alert, recipients):
        if not recipients:
            return DeliveryResult.failed("no recipients")
        text = self.format_text(alert)
        failures = []
        for number in recipients:
            try:
                self.client.post(json={"from": self.sender_id, "to": number, "text": text})
            except Exception as e:
                failures.append(f"{number}: {e}")
        if failures:
            return DeliveryResult.failed("; ".join(failures))
        return DeliveryResult.ok()


def build_router(config: dict, console=False) -> ChannelRouter:
    """Build the channel router from the ``notifications`` config section."""
    notif = config.get("notifications", {})
    router = ChannelRouter()

    dash_cfg = notif.get("dashboard", {})
    if dash_cfg.get("enabled", True):
        router.register(ChannelKind.DASHBOARD, DashboardChannel(dash_cfg.get("max_items", 200)))

    email_cfg = notif.get("email", {})
    if email_cfg.get("enabled", False):
        router.register(ChannelKind.EMAIL, EmailChannel(config))

    sms_cfg = notif.get("sms", {})
    if sms_cfg.get("enabled", False) and sms_cfg.get("gateway_url"):
        router.register(ChannelKind.SMS, SmsChannel(
            sms_cfg["gateway_url"],
            sender_id=sms_cfg.get("sender_id", "GridWatch"),
            rate_limit_per_minute=sms_cfg.get("rate_limit_per_minute", 30),
        ))

    hook_cfg = notif.get("webhook", {})
    if hook_cfg.get("enabled", False) and hook_cfg.get("url"):
        router.register(ChannelKind.WEBHOOK, WebhookChannel(
            hook_cfg["url"],
            timeout=hook_cfg.get("timeout", 10),
            max_retries=hook_cfg.get("max_retries", 2),
            headers=hook_cfg.get("headers"),
        ))

    if console:
        logger.debug("Console echo enabled for undeliverable channel kinds")
        echo = ConsoleChannel()
        for kind in ChannelKind:
            if router.get(kind) is None:
                router.register(kind, echo)

    logger.info(f"Notification channels: {', '.join(router.kinds) or 'none'}")
    return router
