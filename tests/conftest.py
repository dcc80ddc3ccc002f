"""Shared test fixtures."""
import os
import sys
import pytest
import tempfile

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.database import Database
from utils.cache import TTLCache
from alerts.rules_manager import RuleRepository
from alerts.engine import AlertEvaluator


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    db = Database(db_path)
    db.connect()
    yield db
    db.close()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest.fixture
def cache():
    return TTLCache(default_ttl=300)


@pytest.fixture
def rules(temp_db, cache):
    return RuleRepository(temp_db, cache)


@pytest.fixture
def evaluator(temp_db, rules):
    """Evaluator with no pool, so background work runs inline."""
    return AlertEvaluator(temp_db, rules)


@pytest.fixture
def cpu_rule(rules):
    return rules.create_rule({
        "name": "High CPU",
        "metric_name": "cpu_usage",
        "operator": ">",
        "threshold": 80,
        "severity": "high",
        "target_type": "host",
        "channels": ["ops-webhook"],
    })


@pytest.fixture
def sample_config():
    """Minimal config dict covering every section the components read."""
    return {
        "database": {"path": ":memory:"},
        "logging": {"level": "INFO", "file": None},
        "rules": {"seed_file": "config/alert_rules.yaml", "cache_ttl": 300},
        "alerts": {"equality_tolerance": 0.0},
        "workers": {"max_workers": 2, "max_queue": 10, "enqueue_timeout": 0.1},
        "notifications": {"timeout": 5, "smtp_timeout": 5, "max_concurrency": 4},
        "analysis": {
            "enabled": True, "history_source": "database", "anomaly_days": 30,
            "trend_days": 7, "seasonality_period": 24, "record_samples": True,
            "sample_retention_days": 30,
        },
        "ai": {"api_key": "", "base_url": "https://llm.example.com/v1", "model": "test-model",
               "temperature": 0.3, "max_tokens": 500, "timeout": 5, "requests_per_minute": 60,
               "cache_ttl": 1800},
        "prometheus": {"url": "", "timeout": 5, "step": 3600, "target_label": "instance",
                       "target_type": "host"},
        "scheduler": {"interval": 60},
        "web": {"host": "127.0.0.1", "port": 8080},
    }
