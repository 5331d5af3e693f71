"""
SMTP email sender for GridWatch alert notifications.

Handles:
  - SMTP connection with TLS
  - MIME multipart construction (HTML + plaintext fallback)
  - Credential management (env vars > config file)

No external dependencies beyond Python stdlib (email, smtplib, ssl).
"""
import os
import ssl
import smtplib
import logging
from html import escape
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate

logger = logging.getLogger("gridwatch.notifications.email_sender")

SEVERITY_COLORS = {
    "critical": "#D50000",
    "high": "#FF6D00",
    "medium": "#FFC107",
    "low": "#2979FF",
    "info": "#607D8B",
}


class EmailError(Exception):
    """Email could not be handed to the SMTP server."""


class EmailSender:
    """
    SMTP email sender.

    Credential resolution order:
      1. Environment variables: GRIDWATCH_SMTP_USER, GRIDWATCH_SMTP_PASS
      2. Config file: config.email.smtp_username, config.email.smtp_password
    """

    def __init__(self, config: dict):
        email_config = config.get("email", {})
        self.smtp_host = email_config.get("smtp_host", "")
        self.smtp_port = email_config.get("smtp_port", 587)
        self.use_tls = email_config.get("use_tls", True)
        self.from_address = email_config.get("from_address", "")
        self.from_name = email_config.get("from_name", "GridWatch")

        # Credential resolution: env vars take priority
        self.username = os.environ.get(
            "GRIDWATCH_SMTP_USER",
            email_config.get("smtp_username", ""),
        )
        self.password = os.environ.get(
            "GRIDWATCH_SMTP_PASS",
            email_config.get("smtp_password", ""),
        )

    def is_configured(self) -> bool:
        """Check if all required SMTP fields are present."""
        return all([self.smtp_host, self.from_address, self.username, self.password])

    def build_alert_message(self, alert, recipients) -> MIMEMultipart:
        severity = alert.severity.value
        subject = f"[{severity.upper()}] GridWatch: {alert.title}"
        color = SEVERITY_COLORS.get(severity, "#607D8B")

        actions = "".join(f"<li>{escape(a)}</li>" for a in alert.recommended_actions)
        actions_html = f"<p><strong>Recommended actions</strong></p><ul>{actions}</ul>" if actions else ""
        systems = ", ".join(alert.affected_systems)
        systems_html = f'<p style="color: #888;">Affected: {escape(systems)}</p>' if systems else ""

        html = f"""
        <div style="font-family: system-ui, sans-serif; max-width: 520px; margin: 0 auto;
                    padding: 20px; background: #FFFFFF; color: #1E272E; border-radius: 12px;">
            <h2 style="color: #2E7D32; margin-top: 0;">Microgrid Alert</h2>
            <div style="background: #F0F1F6; padding: 16px; border-radius: 8px;
                        border-left: 4px solid {color};">
                <h3 style="margin-top: 0; color: {color};">
                    {escape(severity.upper())}: {escape(alert.title)}
                </h3>
                <p>{escape(alert.message)}</p>
                {systems_html}
                {actions_html}
            </div>
            <p style="color: #636E72; font-size: 12px; margin-top: 16px;">
                GridWatch &mdash; escalation level {alert.escalation_level}, alert {escape(alert.id)}
            </p>
        </div>
        """

        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg.attach(MIMEText(f"{severity.upper()}: {alert.title}\n{alert.message}", "plain"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def send_alert(self, alert, recipients):
        """Send one alert email to the given recipients. Raises EmailError on failure."""
        if not self.is_configured():
            raise EmailError("SMTP not configured")
        if not recipients:
            raise EmailError("no recipients")
        self._send(self.build_alert_message(alert, recipients), recipients)

    def _send(self, msg: MIMEMultipart, recipients):
        """Internal: send a constructed MIME message via SMTP."""
        try:
            context = ssl.create_default_context()
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls(context=context)
                    server.ehlo()
                server.login(self.username, self.password)
                server.send_message(msg, to_addrs=list(recipients))
        except smtplib.SMTPAuthenticationError:
            raise EmailError("SMTP authentication failed")
        except smtplib.SMTPRecipientsRefused:
            raise EmailError(f"recipients refused: {', '.join(recipients)}")
        except (smtplib.SMTPException, OSError) as e:
            raise EmailError(f"email send failed: {e}")
        logger.info(f"Email sent to {', '.join(recipients)}: {msg['Subject']}")
