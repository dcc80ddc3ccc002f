"""Fan a notification out to named channels concurrently."""
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone

from models.enums import AttemptStatus
from models.notifications import (
    ChannelConfigError, Notification, NotificationAttempt, DispatchResult,
)
from notifications.channels import NotificationError, build_adapter

logger = logging.getLogger("aimonitor.notifications.dispatcher")


class AggregateNotificationError(NotificationError):
    """One or more channels failed; successful sends are not rolled back."""

    def __init__(self, result):
        self.result = result
        failed = ", ".join(f"{a.channel_name} ({a.error})" for a in result.failed)
        super().__init__(f"{len(result.failed)} of {len(result.attempts)} channels failed: {failed}")


class NotificationDispatcher:
    def __init__(self, db, config=None, adapter_factory=build_adapter):
        self.db = db
        self.adapter_factory = adapter_factory
        notif_cfg = (config or {}).get("notifications", {})
        self.timeout = notif_cfg.get("timeout", 10)
        self.smtp_timeout = notif_cfg.get("smtp_timeout", 15)
        self.max_concurrency = max(1, int(notif_cfg.get("max_concurrency", 8)))

    def send(self, title, content, severity="info", labels=None, channel_names=None):
        """Deliver to every resolvable channel and record one attempt each.

        Unknown or disabled channels are reported in result.skipped. Raises
        AggregateNotificationError if any attempted channel failed.
        """
        notification = Notification(
            title=title, content=content, severity=severity, labels=dict(labels or {}),
        )
        result = DispatchResult()
        targets = self._resolve(channel_names or [], result)

        if targets:
            workers = min(self.max_concurrency, len(targets))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify") as executor:
                futures = [
                    executor.submit(self._deliver, channel, adapter, notification)
                    for channel, adapter in targets
                ]
                for future in as_completed(futures):
                    result.attempts.append(future.result())

        if result.skipped:
            logger.info(f"Skipped channels for '{title}': {result.skipped}")
        if not result.ok:
            raise AggregateNotificationError(result)
        logger.debug(f"Notification '{title}' sent to {len(result.sent)} channels")
        return result

    def _resolve(self, channel_names, result):
        targets = []
        for name in dict.fromkeys(channel_names):
            try:
                channel = self.db.get_channel_by_name(name)
            except ChannelConfigError as e:
                result.skipped[name] = f"invalid config: {e}"
                continue
            if channel is None:
                result.skipped[name] = "not found"
                continue
            if not channel.enabled:
                result.skipped[name] = "disabled"
                continue
            try:
                adapter = self.adapter_factory(channel, timeout=self.timeout, smtp_timeout=self.smtp_timeout)
            except NotificationError as e:
                result.skipped[name] = str(e)
                continue
            targets.append((channel, adapter))
        return targets

    def _deliver(self, channel, adapter, notification):
        attempt = NotificationAttempt(
            id=str(uuid.uuid4()),
            channel_name=channel.name,
            channel_type=channel.type,
            title=notification.title,
            severity=notification.severity,
        )
        self.db.insert_attempt(attempt)
        try:
            adapter.send(notification)
            attempt.status = AttemptStatus.SENT.value
            attempt.sent_at = datetime.now(timezone.utc)
        except NotificationError as e:
            attempt.status = AttemptStatus.FAILED.value
            attempt.error = str(e)
            logger.warning(f"Channel {channel.name} failed: {e}")
        except Exception as e:
            attempt.status = AttemptStatus.FAILED.value
            attempt.error = f"{type(e).__name__}: {e}"
            logger.exception(f"Channel {channel.name} raised unexpectedly")
        self.db.update_attempt(attempt)
        return attempt
