"""Notification channel configs, payloads and delivery records.

Channel configuration is a closed set of typed variants, one per channel
type. Raw dicts (from the API, CLI or the store) are decoded exactly once via
parse_channel_config(); everything downstream works with the dataclasses.
"""
import json
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from typing import Optional, Union

from models.enums import ChannelType, AttemptStatus

CONFIG_VERSION = 1
SECRET_MASK = "******"
SECRET_FIELDS = ("password", "secret")


class ChannelConfigError(ValueError):
    """Channel configuration is missing required fields or is malformed."""


def _utcnow():
    return datetime.now(timezone.utc)


@dataclass
class EmailConfig:
    smtp_host: str
    smtp_port: int
    username: str
    password: str
    from_address: str
    to_addresses: list
    from_name: str = "AI Monitor"
    cc_addresses: list = field(default_factory=list)
    bcc_addresses: list = field(default_factory=list)
    use_tls: bool = True


@dataclass
class WebhookConfig:
    url: str
    method: str = "POST"
    headers: dict = field(default_factory=dict)
    timeout: Optional[float] = None


@dataclass
class SlackConfig:
    webhook_url: str
    channel: str = ""
    username: str = ""
    icon_emoji: str = ""


@dataclass
class DingTalkConfig:
    webhook_url: str
    secret: str = ""
    at_mobiles: list = field(default_factory=list)
    at_all: bool = False


ChannelConfig = Union[EmailConfig, WebhookConfig, SlackConfig, DingTalkConfig]

CONFIG_TYPES = {
    ChannelType.EMAIL.value: EmailConfig,
    ChannelType.WEBHOOK.value: WebhookConfig,
    ChannelType.SLACK.value: SlackConfig,
    ChannelType.DINGTALK.value: DingTalkConfig,
}

REQUIRED_FIELDS = {
    ChannelType.EMAIL.value: ("smtp_host", "smtp_port", "username", "password", "from_address", "to_addresses"),
    ChannelType.WEBHOOK.value: ("url", "method"),
    ChannelType.SLACK.value: ("webhook_url",),
    ChannelType.DINGTALK.value: ("webhook_url",),
}

WEBHOOK_METHODS = {"POST", "PUT", "PATCH"}


def parse_channel_config(channel_type, raw):
    """Validate raw config for channel_type and return its typed variant."""
    config_cls = CONFIG_TYPES.get(channel_type)
    if config_cls is None:
        raise ChannelConfigError(f"unsupported channel type: {channel_type}")
    if not isinstance(raw, dict):
        raise ChannelConfigError("config must be a mapping")

    for name in REQUIRED_FIELDS[channel_type]:
        value = raw.get(name)
        if value is None or value == "" or value == []:
            raise ChannelConfigError(f"missing required field: {name}")

    known = {f.name for f in fields(config_cls)}
    unknown = set(raw) - known
    if unknown:
        raise ChannelConfigError(f"unknown config fields for {channel_type}: {', '.join(sorted(unknown))}")

    values = dict(raw)
    if channel_type == ChannelType.EMAIL.value:
        try:
            values["smtp_port"] = int(values["smtp_port"])
        except (TypeError, ValueError):
            raise ChannelConfigError("smtp_port must be an integer")
        for key in ("to_addresses", "cc_addresses", "bcc_addresses"):
            if isinstance(values.get(key), str):
                values[key] = [a.strip() for a in values[key].split(",") if a.strip()]
    elif channel_type == ChannelType.WEBHOOK.value:
        values["method"] = str(values["method"]).upper()
        if values["method"] not in WEBHOOK_METHODS:
            raise ChannelConfigError(f"unsupported webhook method: {values['method']}")
        if values.get("timeout") is not None:
            try:
                values["timeout"] = float(values["timeout"])
            except (TypeError, ValueError):
                raise ChannelConfigError("timeout must be a number")
            if values["timeout"] <= 0:
                raise ChannelConfigError("timeout must be positive")
    elif channel_type == ChannelType.DINGTALK.value:
        if isinstance(values.get("at_mobiles"), str):
            values["at_mobiles"] = [m.strip() for m in values["at_mobiles"].split(",") if m.strip()]

    return config_cls(**values)


def redact_config(config):
    """Dict view of a typed config with secret fields masked."""
    data = asdict(config) if not isinstance(config, dict) else dict(config)
    for key in SECRET_FIELDS:
        if data.get(key):
            data[key] = SECRET_MASK
    return data


@dataclass
class NotificationChannel:
    id: str = ""
    name: str = ""
    type: str = ChannelType.WEBHOOK.value
    description: str = ""
    config: Optional[ChannelConfig] = None
    config_version: int = CONFIG_VERSION
    enabled: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_public_dict(self):
        """Outward view; never echoes secrets."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "config": redact_config(self.config) if self.config is not None else {},
            "config_version": self.config_version,
            "enabled": self.enabled,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_row(cls, row):
        row = dict(row)
        return cls(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            description=row.get("description") or "",
            config=parse_channel_config(row["type"], json.loads(row["config"])),
            config_version=int(row.get("config_version") or CONFIG_VERSION),
            enabled=bool(row["enabled"]),
            created_at=datetime.fromisoformat(row["created_at"]) if row.get("created_at") else None,
            updated_at=datetime.fromisoformat(row["updated_at"]) if row.get("updated_at") else None,
        )


@dataclass
class Notification:
    """Channel-agnostic payload handed to every adapter."""
    title: str
    content: str
    severity: str = "info"
    labels: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class NotificationAttempt:
    id: str = ""
    channel_name: str = ""
    channel_type: str = ""
    title: str = ""
    severity: str = ""
    status: str = AttemptStatus.PENDING.value
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    sent_at: Optional[datetime] = None

    @property
    def succeeded(self):
        return self.status == AttemptStatus.SENT.value

    def to_dict(self):
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat() if self.created_at else None
        d["sent_at"] = self.sent_at.isoformat() if self.sent_at else None
        return d

    @classmethod
    def from_row(cls, row):
        row = dict(row)
        return cls(
            id=row["id"],
            channel_name=row["channel_name"],
            channel_type=row.get("channel_type") or "",
            title=row.get("title") or "",
            severity=row.get("severity") or "",
            status=row["status"],
            error=row.get("error"),
            created_at=datetime.fromisoformat(row["created_at"]) if row.get("created_at") else None,
            sent_at=datetime.fromisoformat(row["sent_at"]) if row.get("sent_at") else None,
        )


@dataclass
class DispatchResult:
    """Outcome of one fan-out: one attempt per resolved channel."""
    attempts: list = field(default_factory=list)
    skipped: dict = field(default_factory=dict)  # channel name -> reason

    @property
    def sent(self):
        return [a for a in self.attempts if a.succeeded]

    @property
    def failed(self):
        return [a for a in self.attempts if not a.succeeded]

    @property
    def ok(self):
        return not self.failed

    def summary(self):
        return {
            "attempted": len(self.attempts),
            "sent": len(self.sent),
            "failed": len(self.failed),
            "skipped": dict(self.skipped),
            "errors": {a.channel_name: a.error for a in self.failed},
        }
