"""Utility modules for AI Monitor."""
from utils.logger import setup_logging
from utils.formatters import format_value, format_severity, format_status, format_timestamp, time_ago
from utils.rate_limiter import RateLimiter
from utils.cache import TTLCache
from utils.http_client import HTTPClient, APIError
from utils.worker_pool import BackgroundWorkerPool
