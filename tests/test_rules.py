"""Tests for the rule repository: validation, CRUD, cache and YAML seeding."""
import pytest
from unittest.mock import MagicMock

from alerts.errors import RuleNotFoundError, RuleValidationError
from alerts.rules_manager import RuleRepository, cache_key
from utils.cache import TTLCache


def _rule(**overrides):
    data = {"name": "High CPU", "metric_name": "cpu_usage", "operator": ">",
            "threshold": 80, "severity": "high"}
    data.update(overrides)
    return data


def test_create_and_get(rules):
    rule = rules.create_rule(_rule(labels={"team": "ops"}, channels="ops, pager"))
    assert rule.id
    assert rule.threshold == 80.0
    assert rule.channels == ["ops", "pager"]

    fetched = rules.get_rule(rule.id)
    assert fetched.name == "High CPU"
    assert fetched.labels == {"team": "ops"}
    assert fetched.channels == ["ops", "pager"]
    assert fetched.enabled is True


@pytest.mark.parametrize("overrides", [
    {"name": ""},
    {"metric_name": "  "},
    {"operator": "=>"},
    {"severity": "info"},
    {"severity": "urgent"},
    {"target_type": "router"},
    {"threshold": "high"},
    {"duration_seconds": -5},
    {"labels": ["a"]},
    {"bogus": 1},
])
def test_invalid_rules_rejected(rules, overrides):
    with pytest.raises(RuleValidationError):
        rules.create_rule(_rule(**overrides))


def test_validation_error_is_value_error(rules):
    with pytest.raises(ValueError):
        rules.create_rule(_rule(operator="~"))


def test_duplicate_name_rejected(rules):
    rules.create_rule(_rule())
    with pytest.raises(RuleValidationError):
        rules.create_rule(_rule(threshold=90))


def test_name_reusable_after_delete(rules):
    first = rules.create_rule(_rule())
    rules.delete_rule(first.id)
    second = rules.create_rule(_rule())
    assert second.id != first.id
    with pytest.raises(RuleNotFoundError):
        rules.get_rule(first.id)


def test_update_rule(rules):
    rule = rules.create_rule(_rule())
    updated = rules.update_rule(rule.id, {"threshold": 95, "enabled": False})
    assert updated.threshold == 95.0
    assert updated.enabled is False
    assert updated.name == "High CPU"
    assert rules.get_rule(rule.id).threshold == 95.0


def test_update_rejects_taken_name(rules):
    rules.create_rule(_rule(name="A"))
    b = rules.create_rule(_rule(name="B"))
    with pytest.raises(RuleValidationError):
        rules.update_rule(b.id, {"name": "A"})


def test_update_and_delete_missing_rule(rules):
    with pytest.raises(RuleNotFoundError):
        rules.update_rule("missing", {"threshold": 1})
    with pytest.raises(RuleNotFoundError):
        rules.delete_rule("missing")


def test_list_rules_search_and_paging(rules):
    rules.create_rule(_rule(name="High CPU"))
    rules.create_rule(_rule(name="Low memory", metric_name="mem_free", operator="<"))
    rules.create_rule(_rule(name="Idle", enabled=False))

    items, total = rules.list_rules(search="memory")
    assert total == 1
    assert items[0].name == "Low memory"

    items, total = rules.list_rules(enabled=False)
    assert [r.name for r in items] == ["Idle"]

    items, total = rules.list_rules(page=2, page_size=2)
    assert total == 3
    assert len(items) == 1


def test_matching_rules_respect_selectors(rules):
    rules.create_rule(_rule(name="Any host"))
    rules.create_rule(_rule(name="Hosts only", target_type="host"))
    rules.create_rule(_rule(name="web-1 only", target_type="host", target_id="web-1"))

    names = {r.name for r in rules.get_matching_rules("cpu_usage", "host", "web-1")}
    assert names == {"Any host", "Hosts only", "web-1 only"}
    names = {r.name for r in rules.get_matching_rules("cpu_usage", "host", "web-2")}
    assert names == {"Any host", "Hosts only"}
    names = {r.name for r in rules.get_matching_rules("cpu_usage", "service", "api")}
    assert names == {"Any host"}


def test_matching_rules_are_cached(temp_db):
    cache = TTLCache()
    repo = RuleRepository(temp_db, cache)
    repo.create_rule(_rule())
    repo.get_matching_rules("cpu_usage", "host", "web-1")
    assert cache.get(cache_key("cpu_usage", "host", "web-1")) is not None

    db = MagicMock(wraps=temp_db)
    cached_repo = RuleRepository(db, cache)
    cached_repo.get_matching_rules("cpu_usage", "host", "web-1")
    db.find_rules_for_metric.assert_not_called()


def test_writes_invalidate_cache(rules, cache):
    rule = rules.create_rule(_rule())
    assert len(rules.get_matching_rules("cpu_usage", "host", "web-1")) == 1

    rules.update_rule(rule.id, {"metric_name": "cpu_percent"})
    assert cache.get(cache_key("cpu_usage", "host", "web-1")) is None
    assert rules.get_matching_rules("cpu_usage", "host", "web-1") == []
    assert len(rules.get_matching_rules("cpu_percent", "host", "web-1")) == 1

    rules.delete_rule(rule.id)
    assert rules.get_matching_rules("cpu_percent", "host", "web-1") == []


def test_load_from_yaml_skips_existing(rules, tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(
        "rules:\n"
        "  - name: High CPU\n"
        "    metric_name: cpu_usage\n"
        "    operator: '>'\n"
        "    threshold: 80\n"
        "    severity: high\n"
        "  - name: Broken\n"
        "    metric_name: x\n"
        "    operator: '??'\n"
        "    threshold: 1\n"
        "    severity: low\n"
    )
    assert rules.load_from_yaml(path) == (1, 1)
    assert rules.load_from_yaml(path) == (0, 2)


def test_load_missing_yaml(rules, tmp_path):
    assert rules.load_from_yaml(tmp_path / "nope.yaml") == (0, 0)


def test_seed_rules_file_is_valid(rules):
    import os
    root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    created, skipped = rules.load_from_yaml(os.path.join(root, "config", "alert_rules.yaml"))
    assert created == 6
    assert skipped == 0
