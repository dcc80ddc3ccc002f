"""Notification channel adapters: email, webhook, Slack and DingTalk."""
import base64
import hashlib
import hmac
import logging
import smtplib
import time
from typing import Protocol, runtime_checkable

import requests

from models.enums import ChannelType
from notifications.email_sender import EmailSender, render_email_html

logger = logging.getLogger("aimonitor.notifications.channels")

SEVERITY_COLORS = {
    "critical": "#dc3545",
    "high": "#fd7e14",
    "medium": "#ffc107",
    "low": "#28a745",
    "info": "#17a2b8",
}
DEFAULT_COLOR = "#6c757d"


def severity_color(severity):
    return SEVERITY_COLORS.get(str(severity).lower(), DEFAULT_COLOR)


class NotificationError(Exception):
    """Base class for notification failures."""


class DeliveryError(NotificationError):
    """A channel could not deliver: bad status, connection or SMTP failure."""

    def __init__(self, channel, message, status_code=None):
        self.channel = channel
        self.status_code = status_code
        super().__init__(f"{channel}: {message}")


class UnsupportedChannelError(NotificationError):
    def __init__(self, channel_type):
        self.channel_type = channel_type
        super().__init__(f"Unsupported channel type: {channel_type}")


@runtime_checkable
class ChannelAdapter(Protocol):
    def send(self, notification) -> None: ...


def _send_json(name, url, payload, timeout, method="POST", headers=None, params=None):
    try:
        resp = requests.request(
            method, url, json=payload, headers=headers, params=params, timeout=timeout
        )
    except requests.exceptions.RequestException as e:
        raise DeliveryError(name, f"request failed: {e}") from e
    if not 200 <= resp.status_code < 300:
        raise DeliveryError(name, f"returned status code {resp.status_code}", status_code=resp.status_code)
    return resp


class EmailChannel:
    """SMTP email with an HTML body and plain-text alternative."""

    def __init__(self, name, config, timeout=15):
        self.name = name
        self.sender = EmailSender(config, timeout=timeout)

    def send(self, notification):
        html_body = render_email_html(
            notification.title, notification.content, notification.severity,
            notification.labels, severity_color(notification.severity), notification.timestamp,
        )
        try:
            self.sender.send(notification.title, html_body, notification.content)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(self.name, f"SMTP error: {e}") from e


class WebhookChannel:
    """Generic JSON webhook."""

    def __init__(self, name, config, timeout=10):
        self.name = name
        self.config = config
        self.timeout = config.timeout or timeout

    def payload(self, notification):
        return {
            "title": notification.title,
            "content": notification.content,
            "severity": notification.severity,
            "tags": dict(notification.labels),
            "timestamp": int(notification.timestamp.timestamp()),
        }

    def send(self, notification):
        headers = {"Content-Type": "application/json"}
        headers.update(self.config.headers or {})
        _send_json(self.name, self.config.url, self.payload(notification), self.timeout,
                   method=self.config.method, headers=headers)


class SlackChannel:
    """Slack incoming webhook with one colour-coded attachment."""

    def __init__(self, name, config, timeout=10):
        self.name = name
        self.config = config
        self.timeout = timeout

    def payload(self, notification):
        attachment = {
            "color": severity_color(notification.severity),
            "text": notification.content,
            "ts": int(notification.timestamp.timestamp()),
        }
        if notification.labels:
            attachment["fields"] = [
                {"title": key, "value": str(value), "short": True}
                for key, value in sorted(notification.labels.items())
            ]
        payload = {"text": notification.title, "attachments": [attachment]}
        if self.config.channel:
            payload["channel"] = self.config.channel
        if self.config.username:
            payload["username"] = self.config.username
        if self.config.icon_emoji:
            payload["icon_emoji"] = self.config.icon_emoji
        return payload

    def send(self, notification):
        _send_json(self.name, self.config.webhook_url, self.payload(notification), self.timeout)


class DingTalkChannel:
    """DingTalk robot text message, signed when a secret is configured."""

    def __init__(self, name, config, timeout=10):
        self.name = name
        self.config = config
        self.timeout = timeout

    def payload(self, notification):
        payload = {
            "msgtype": "text",
            "text": {"content": f"{notification.title}\n\n{notification.content}"},
        }
        if self.config.at_mobiles or self.config.at_all:
            at = {}
            if self.config.at_mobiles:
                at["atMobiles"] = list(self.config.at_mobiles)
            if self.config.at_all:
                at["isAtAll"] = True
            payload["at"] = at
        return payload

    def sign(self, timestamp_ms):
        string_to_sign = f"{timestamp_ms}\n{self.config.secret}"
        digest = hmac.new(
            self.config.secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha256
        ).digest()
        return base64.b64encode(digest).decode("utf-8")

    def send(self, notification):
        params = None
        if self.config.secret:
            timestamp_ms = int(time.time() * 1000)
            params = {"timestamp": timestamp_ms, "sign": self.sign(timestamp_ms)}
        _send_json(self.name, self.config.webhook_url, self.payload(notification), self.timeout,
                   params=params)


ADAPTERS = {
    ChannelType.EMAIL.value: EmailChannel,
    ChannelType.WEBHOOK.value: WebhookChannel,
    ChannelType.SLACK.value: SlackChannel,
    ChannelType.DINGTALK.value: DingTalkChannel,
}


def build_adapter(channel, timeout=10, smtp_timeout=15):
    """Adapter for a stored NotificationChannel."""
    adapter_cls = ADAPTERS.get(channel.type)
    if adapter_cls is None:
        raise UnsupportedChannelError(channel.type)
    if adapter_cls is EmailChannel:
        return EmailChannel(channel.name, channel.config, timeout=smtp_timeout)
    return adapter_cls(channel.name, channel.config, timeout=timeout)
