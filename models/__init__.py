"""Data models."""
from models.enums import (
    Severity, AlertStatus, Operator, TargetType, ChannelType, AttemptStatus,
    DeviationLevel, TrendDirection, RiskLevel,
)
from models.alerts import AlertRule, Alert, MetricSample, fingerprint, can_transition
from models.notifications import (
    EmailConfig, WebhookConfig, SlackConfig, DingTalkConfig, ChannelConfigError,
    NotificationChannel, Notification, NotificationAttempt, DispatchResult,
    parse_channel_config,
)
from models.analysis import AnomalyResult, TrendResult, AnalysisContext, AnalysisResult, KnowledgeEntry
from models.database import Database
