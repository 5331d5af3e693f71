"""Tests for email sender and email alert channel."""
import smtplib
import pytest
from unittest.mock import patch, MagicMock

from models.alerts import Alert
from models.enums import Severity
from notifications.email_sender import EmailSender, EmailError
from alerts.channels import EmailChannel

CONFIGURED = {"email": {
    "smtp_host": "smtp.test.com",
    "smtp_port": 587,
    "from_address": "gridwatch@test.com",
    "smtp_username": "user",
    "smtp_password": "pass",
}}


def _alert():
    return Alert(id="alert-1", title="High <Temp>", message="41 > 35", severity=Severity.HIGH,
                 escalation_level=2, affected_systems=["inverter-2"],
                 recommended_actions=["Check cooling"])


class TestEmailSender:
    def test_not_configured_missing_fields(self):
        with patch.dict("os.environ", {}, clear=True):
            sender = EmailSender({"email": {}})
            assert sender.is_configured() is False

    def test_configured_with_all_fields(self):
        sender = EmailSender(CONFIGURED)
        assert sender.is_configured() is True

    def test_env_vars_override_config(self):
        with patch.dict("os.environ", {
            "GRIDWATCH_SMTP_USER": "env_user",
            "GRIDWATCH_SMTP_PASS": "env_pass",
        }):
            sender = EmailSender(CONFIGURED)
            assert sender.username == "env_user"
            assert sender.password == "env_pass"

    def test_config_used_without_env_vars(self):
        with patch.dict("os.environ", {}, clear=True):
            sender = EmailSender(CONFIGURED)
            assert sender.username == "user"
            assert sender.password == "pass"

    def test_message_contents(self):
        msg = EmailSender(CONFIGURED).build_alert_message(_alert(), ["a@x", "b@x"])
        assert msg["Subject"] == "[HIGH] GridWatch: High <Temp>"
        assert msg["To"] == "a@x, b@x"
        html = msg.get_payload()[1].get_payload(decode=True).decode()
        assert "High &lt;Temp&gt;" in html
        assert "Check cooling" in html
        assert "inverter-2" in html

    def test_send_not_configured_raises(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(EmailError, match="not configured"):
                EmailSender({"email": {}}).send_alert(_alert(), ["a@x"])

    def test_send_no_recipients_raises(self):
        with pytest.raises(EmailError, match="no recipients"):
            EmailSender(CONFIGURED).send_alert(_alert(), [])

    @patch("notifications.email_sender.smtplib.SMTP")
    def test_send_uses_smtp(self, mock_smtp):
        server = mock_smtp.return_value.__enter__.return_value
        with patch.dict("os.environ", {}, clear=True):
            EmailSender(CONFIGURED).send_alert(_alert(), ["a@x"])
        mock_smtp.assert_called_once_with("smtp.test.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "pass")
        assert server.send_message.call_args.kwargs["to_addrs"] == ["a@x"]

    @patch("notifications.email_sender.smtplib.SMTP")
    def test_auth_failure_mapped(self, mock_smtp):
        server = mock_smtp.return_value.__enter__.return_value
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad")
        with pytest.raises(EmailError, match="authentication"):
            EmailSender(CONFIGURED).send_alert(_alert(), ["a@x"])


class TestEmailChannel:
    def test_delegates_to_sender(self):
        sender = MagicMock()
        ch = EmailChannel({}, sender=sender)
        assert ch.send(_alert(), ["a@x"]).delivered
        sender.send_alert.assert_called_once()

    def test_sender_error_propagates(self):
        sender = MagicMock()
        sender.send_alert.side_effect = EmailError("SMTP not configured")
        with pytest.raises(EmailError):
            EmailChannel({}, sender=sender).send(_alert(), ["a@x"])
