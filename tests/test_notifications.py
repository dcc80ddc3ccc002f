"""Tests for channel config parsing and the channel adapters."""
import base64
import hashlib
import hmac
import smtplib
import pytest
from datetime import datetime, timezone
from unittest.mock import patch, MagicMock

import requests

from models.notifications import (
    ChannelConfigError, DingTalkConfig, EmailConfig, NotificationChannel, Notification,
    SlackConfig, WebhookConfig, parse_channel_config, redact_config, SECRET_MASK,
)
from notifications.channels import (
    DeliveryError, DingTalkChannel, EmailChannel, SlackChannel, UnsupportedChannelError,
    WebhookChannel, build_adapter, severity_color,
)
from notifications.email_sender import EmailSender, render_email_html


def _notification(**overrides):
    data = dict(
        title="[HIGH] High CPU",
        content="cpu_usage > 80.00 (current: 85.00)",
        severity="high",
        labels={"alert_id": "a1", "status": "firing"},
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )
    data.update(overrides)
    return Notification(**data)


def _response(status=200):
    resp = MagicMock()
    resp.status_code = status
    return resp


EMAIL_RAW = {
    "smtp_host": "smtp.example.com",
    "smtp_port": "587",
    "username": "alerts",
    "password": "hunter2",
    "from_address": "alerts@example.com",
    "to_addresses": "ops@example.com, dev@example.com",
}


class TestChannelConfig:
    def test_email_coercion(self):
        cfg = parse_channel_config("email", EMAIL_RAW)
        assert isinstance(cfg, EmailConfig)
        assert cfg.smtp_port == 587
        assert cfg.to_addresses == ["ops@example.com", "dev@example.com"]
        assert cfg.use_tls is True

    def test_missing_required_field(self):
        raw = dict(EMAIL_RAW)
        del raw["password"]
        with pytest.raises(ChannelConfigError, match="password"):
            parse_channel_config("email", raw)

    def test_unknown_field_rejected(self):
        with pytest.raises(ChannelConfigError):
            parse_channel_config("slack", {"webhook_url": "https://hooks.slack.test/x", "colour": "red"})

    def test_webhook_method_validated(self):
        cfg = parse_channel_config("webhook", {"url": "https://hook.test", "method": "put"})
        assert isinstance(cfg, WebhookConfig)
        assert cfg.method == "PUT"
        with pytest.raises(ChannelConfigError):
            parse_channel_config("webhook", {"url": "https://hook.test", "method": "GET"})

    def test_webhook_timeout_must_be_positive(self):
        with pytest.raises(ChannelConfigError):
            parse_channel_config("webhook", {"url": "https://hook.test", "method": "POST", "timeout": 0})

    def test_unsupported_type(self):
        with pytest.raises(ChannelConfigError):
            parse_channel_config("pager", {})

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_channel_config("slack", {})

    def test_redaction_masks_secrets(self):
        email = redact_config(parse_channel_config("email", EMAIL_RAW))
        assert email["password"] == SECRET_MASK
        assert email["username"] == "alerts"
        ding = redact_config(DingTalkConfig(webhook_url="https://ding.test", secret="s3cret"))
        assert ding["secret"] == SECRET_MASK

    def test_public_dict_never_leaks_password(self):
        channel = NotificationChannel(id="c1", name="mail", type="email",
                                      config=parse_channel_config("email", EMAIL_RAW))
        public = channel.to_public_dict()
        assert "hunter2" not in str(public)
        assert public["config"]["smtp_host"] == "smtp.example.com"


class TestWebhookChannel:
    def test_payload_and_request(self):
        cfg = WebhookConfig(url="https://hook.test/alerts", method="POST", headers={"X-Token": "t"})
        channel = WebhookChannel("ops-webhook", cfg, timeout=10)
        with patch("notifications.channels.requests.request", return_value=_response(200)) as req:
            channel.send(_notification())

        method, url = req.call_args[0]
        kwargs = req.call_args[1]
        assert method == "POST"
        assert url == "https://hook.test/alerts"
        assert kwargs["timeout"] == 10
        assert kwargs["headers"]["X-Token"] == "t"
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert kwargs["json"] == {
            "title": "[HIGH] High CPU",
            "content": "cpu_usage > 80.00 (current: 85.00)",
            "severity": "high",
            "tags": {"alert_id": "a1", "status": "firing"},
            "timestamp": 1714564800,
        }

    def test_config_timeout_overrides_default(self):
        cfg = WebhookConfig(url="https://hook.test", method="PUT", timeout=2.5)
        channel = WebhookChannel("hook", cfg, timeout=10)
        with patch("notifications.channels.requests.request", return_value=_response(204)) as req:
            channel.send(_notification())
        assert req.call_args[0][0] == "PUT"
        assert req.call_args[1]["timeout"] == 2.5

    def test_non_2xx_raises(self):
        channel = WebhookChannel("hook", WebhookConfig(url="https://hook.test"), timeout=10)
        with patch("notifications.channels.requests.request", return_value=_response(500)):
            with pytest.raises(DeliveryError) as exc:
                channel.send(_notification())
        assert exc.value.status_code == 500
        assert "500" in str(exc.value)

    def test_connection_error_raises(self):
        channel = WebhookChannel("hook", WebhookConfig(url="https://hook.test"), timeout=10)
        with patch("notifications.channels.requests.request",
                   side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(DeliveryError):
                channel.send(_notification())


class TestSlackChannel:
    def test_attachment_payload(self):
        cfg = SlackConfig(webhook_url="https://hooks.slack.test/x", channel="#ops", icon_emoji=":fire:")
        payload = SlackChannel("slack", cfg).payload(_notification())
        assert payload["text"] == "[HIGH] High CPU"
        assert payload["channel"] == "#ops"
        assert payload["icon_emoji"] == ":fire:"
        assert "username" not in payload
        attachment = payload["attachments"][0]
        assert attachment["color"] == severity_color("high")
        assert attachment["text"] == "cpu_usage > 80.00 (current: 85.00)"
        assert attachment["ts"] == 1714564800
        assert [f["title"] for f in attachment["fields"]] == ["alert_id", "status"]

    def test_send_posts_to_webhook(self):
        channel = SlackChannel("slack", SlackConfig(webhook_url="https://hooks.slack.test/x"))
        with patch("notifications.channels.requests.request", return_value=_response(200)) as req:
            channel.send(_notification(labels={}))
        assert req.call_args[0] == ("POST", "https://hooks.slack.test/x")
        assert "fields" not in req.call_args[1]["json"]["attachments"][0]


class TestDingTalkChannel:
    def test_text_payload_with_mentions(self):
        cfg = DingTalkConfig(webhook_url="https://ding.test", at_mobiles=["123"], at_all=True)
        payload = DingTalkChannel("ding", cfg).payload(_notification())
        assert payload["msgtype"] == "text"
        assert payload["text"]["content"] == "[HIGH] High CPU\n\ncpu_usage > 80.00 (current: 85.00)"
        assert payload["at"] == {"atMobiles": ["123"], "isAtAll": True}

    def test_signature(self):
        channel = DingTalkChannel("ding", DingTalkConfig(webhook_url="https://ding.test", secret="abc"))
        expected = base64.b64encode(
            hmac.new(b"abc", b"1700000000000\nabc", hashlib.sha256).digest()
        ).decode()
        assert channel.sign(1700000000000) == expected

    def test_signed_request_params(self):
        channel = DingTalkChannel("ding", DingTalkConfig(webhook_url="https://ding.test", secret="abc"))
        with patch("notifications.channels.requests.request", return_value=_response(200)) as req, \
                patch("notifications.channels.time.time", return_value=1700000000.0):
            channel.send(_notification())
        params = req.call_args[1]["params"]
        assert params["timestamp"] == 1700000000000
        assert params["sign"] == channel.sign(1700000000000)

    def test_unsigned_without_secret(self):
        channel = DingTalkChannel("ding", DingTalkConfig(webhook_url="https://ding.test"))
        with patch("notifications.channels.requests.request", return_value=_response(200)) as req:
            channel.send(_notification())
        assert req.call_args[1]["params"] is None


class TestEmail:
    def _config(self, **overrides):
        raw = dict(EMAIL_RAW, cc_addresses="lead@example.com", bcc_addresses="audit@example.com")
        raw.update(overrides)
        return parse_channel_config("email", raw)

    def test_message_structure(self):
        sender = EmailSender(self._config())
        msg = sender.build_message("Subject", "<p>html</p>", "plain")
        assert msg["Subject"] == "Subject"
        assert msg["To"] == "ops@example.com, dev@example.com"
        assert msg["Cc"] == "lead@example.com"
        assert "AI Monitor" in msg["From"]
        parts = msg.get_payload()
        assert [p.get_content_type() for p in parts] == ["text/plain", "text/html"]
        assert sender.recipients() == [
            "ops@example.com", "dev@example.com", "lead@example.com", "audit@example.com",
        ]

    def test_html_is_escaped(self):
        html = render_email_html("<b>t</b>", "a < b", "high", {"k": "<v>"}, "#fd7e14",
                                 datetime(2024, 5, 1, tzinfo=timezone.utc))
        assert "<b>t</b>" not in html
        assert "&lt;b&gt;t&lt;/b&gt;" in html
        assert "a &lt; b" in html
        assert "#fd7e14" in html

    def test_send_uses_starttls_and_login(self):
        sender = EmailSender(self._config(), timeout=7)
        with patch("notifications.email_sender.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            sender.send("Subject", "<p>x</p>", "x")
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=7)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("alerts", "hunter2")
        assert server.send_message.call_args[1]["to_addrs"] == sender.recipients()

    def test_no_tls(self):
        sender = EmailSender(self._config(use_tls=False))
        with patch("notifications.email_sender.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            sender.send("Subject", "<p>x</p>", "x")
        server.starttls.assert_not_called()

    def test_channel_wraps_smtp_errors(self):
        channel = EmailChannel("mail", self._config())
        with patch("notifications.email_sender.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
            with pytest.raises(DeliveryError, match="SMTP error"):
                channel.send(_notification())

    def test_channel_wraps_socket_errors(self):
        channel = EmailChannel("mail", self._config())
        with patch("notifications.email_sender.smtplib.SMTP", side_effect=OSError("unreachable")):
            with pytest.raises(DeliveryError):
                channel.send(_notification())


class TestBuildAdapter:
    def test_builds_by_type(self):
        email = NotificationChannel(name="mail", type="email", config=parse_channel_config("email", EMAIL_RAW))
        adapter = build_adapter(email, timeout=3, smtp_timeout=9)
        assert isinstance(adapter, EmailChannel)
        assert adapter.sender.timeout == 9

        slack = NotificationChannel(name="s", type="slack", config=SlackConfig(webhook_url="https://x"))
        adapter = build_adapter(slack, timeout=3)
        assert isinstance(adapter, SlackChannel)
        assert adapter.timeout == 3

    def test_unknown_type(self):
        with pytest.raises(UnsupportedChannelError):
            build_adapter(NotificationChannel(name="x", type="pager"))

    def test_severity_colors(self):
        assert severity_color("critical") == "#dc3545"
        assert severity_color("INFO") == "#17a2b8"
        assert severity_color("weird") == "#6c757d"
