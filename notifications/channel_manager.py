"""Notification channel configuration management."""
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from models.enums import ChannelType
from models.notifications import (
    ChannelConfigError, NotificationChannel, parse_channel_config, CONFIG_VERSION, SECRET_FIELDS, SECRET_MASK,
)

logger = logging.getLogger("aimonitor.notifications.channels")

VALID_TYPES = {t.value for t in ChannelType}


def _unmask(raw, stored):
    """Put stored secrets back where a client echoed the redacted placeholder."""
    if not isinstance(raw, dict) or stored is None:
        return raw
    raw = dict(raw)
    for key in SECRET_FIELDS:
        if raw.get(key) == SECRET_MASK and hasattr(stored, key):
            raw[key] = getattr(stored, key)
    return raw


class ChannelNotFoundError(LookupError):
    def __init__(self, channel_id):
        self.channel_id = channel_id
        super().__init__(f"Channel not found: {channel_id}")


class ChannelManager:
    """CRUD, testing and delivery history for notification channels."""

    def __init__(self, db, dispatcher=None):
        self.db = db
        self.dispatcher = dispatcher

    def create_channel(self, name, channel_type, config, description="", enabled=True):
        name = (name or "").strip()
        if not name:
            raise ChannelConfigError("channel name is required")
        if channel_type not in VALID_TYPES:
            raise ChannelConfigError(f"unsupported channel type: {channel_type}")
        if self.db.get_channel_by_name(name):
            raise ChannelConfigError(f"channel name already exists: {name}")

        now = datetime.now(timezone.utc)
        channel = NotificationChannel(
            id=str(uuid.uuid4()),
            name=name,
            type=channel_type,
            description=description or "",
            config=parse_channel_config(channel_type, config),
            config_version=CONFIG_VERSION,
            enabled=bool(enabled),
            created_at=now,
            updated_at=now,
        )
        self.db.insert_channel(channel)
        logger.info(f"Created {channel_type} channel {name}")
        return channel

    def get_channel(self, channel_id):
        channel = self.db.get_channel(channel_id)
        if channel is None:
            raise ChannelNotFoundError(channel_id)
        return channel

    def update_channel(self, channel_id, name=None, config=None, description=None, enabled=None):
        """Partial update. A new config replaces the old one wholesale."""
        current = self.get_channel(channel_id)
        changes = {"updated_at": datetime.now(timezone.utc)}
        if name is not None and name != current.name:
            name = name.strip()
            if not name:
                raise ChannelConfigError("channel name is required")
            if self.db.get_channel_by_name(name):
                raise ChannelConfigError(f"channel name already exists: {name}")
            changes["name"] = name
        if config is not None:
            changes["config"] = parse_channel_config(current.type, _unmask(config, current.config))
        if description is not None:
            changes["description"] = description
        if enabled is not None:
            changes["enabled"] = bool(enabled)

        updated = replace(current, **changes)
        if not self.db.update_channel(updated):
            raise ChannelNotFoundError(channel_id)
        logger.info(f"Updated channel {updated.name}")
        return updated

    def delete_channel(self, channel_id):
        channel = self.get_channel(channel_id)
        if not self.db.soft_delete_channel(channel_id, datetime.now(timezone.utc)):
            raise ChannelNotFoundError(channel_id)
        logger.info(f"Deleted channel {channel.name}")

    def list_channels(self, channel_type=None, enabled=None, page=1, page_size=20):
        page = max(1, int(page))
        page_size = max(1, min(int(page_size), 500))
        return self.db.list_channels(
            channel_type=channel_type, enabled=enabled,
            offset=(page - 1) * page_size, limit=page_size,
        )

    def test_channel(self, channel_id):
        """Send an info-level test notification through one channel."""
        channel = self.get_channel(channel_id)
        if self.dispatcher is None:
            raise RuntimeError("No dispatcher configured")
        return self.dispatcher.send(
            "Test Notification",
            "This is a test notification from AI Monitor System.",
            severity="info",
            labels={"test": "true", "time": datetime.now(timezone.utc).isoformat()},
            channel_names=[channel.name],
        )

    def notification_history(self, status=None, channel_name=None, page=1, page_size=20):
        page = max(1, int(page))
        page_size = max(1, min(int(page_size), 500))
        return self.db.list_attempts(
            status=status, channel_name=channel_name,
            offset=(page - 1) * page_size, limit=page_size,
        )
