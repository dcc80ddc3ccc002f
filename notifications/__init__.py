"""Notification channels and dispatch."""
from notifications.channels import (
    NotificationError, DeliveryError, UnsupportedChannelError,
    EmailChannel, WebhookChannel, SlackChannel, DingTalkChannel,
    build_adapter, severity_color,
)
from notifications.dispatcher import NotificationDispatcher, AggregateNotificationError
from notifications.channel_manager import ChannelManager, ChannelNotFoundError
