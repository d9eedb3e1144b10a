from __future__ import annotations

from pathlib import Path

import pytest

from timeline_engine.config import (
    get_consistency_mode,
    get_cycle_check_mode,
    get_event_log_enabled,
    get_lock_timeout,
    get_log_level,
    get_workday_hours,
    load_engine_config,
)


def _write_config(project_dir: Path, text: str) -> None:
    state = project_dir / ".timeline_engine"
    state.mkdir(parents=True, exist_ok=True)
    (state / "config.yaml").write_text(text, encoding="utf-8")


def test_missing_config_is_empty(tmp_path: Path) -> None:
    assert load_engine_config(tmp_path) == ({}, None)


def test_empty_config_is_empty(tmp_path: Path) -> None:
    _write_config(tmp_path, "")
    assert load_engine_config(tmp_path) == ({}, None)


def test_invalid_yaml_reports_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "scheduling: [unclosed")
    config, err = load_engine_config(tmp_path)
    assert config == {}
    assert err is not None and "config.yaml" in err


def test_non_mapping_reports_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "- just\n- a list\n")
    config, err = load_engine_config(tmp_path)
    assert config == {}
    assert "expected object" in err


def test_defaults() -> None:
    assert get_cycle_check_mode({}) == "direct"
    assert get_consistency_mode({}) == "snapshot"
    assert get_workday_hours({}) == 8.0
    assert get_lock_timeout({}) == 30.0
    assert get_log_level({}) == "INFO"
    assert get_event_log_enabled({}) is True


def test_values_read_from_file(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        "scheduling:\n"
        "  cycle_check: Transitive\n"
        "  consistency: revalidate\n"
        "  workday_hours: 7.5\n"
        "store:\n"
        "  lock_timeout: 5\n"
        "logging:\n"
        "  level: debug\n",
    )
    config, err = load_engine_config(tmp_path)
    assert err is None
    assert get_cycle_check_mode(config) == "transitive"
    assert get_consistency_mode(config) == "revalidate"
    assert get_workday_hours(config) == 7.5
    assert get_lock_timeout(config) == 5.0
    assert get_log_level(config) == "DEBUG"


@pytest.mark.parametrize(
    "config",
    [
        {"scheduling": {"cycle_check": "sometimes", "consistency": "eventual", "workday_hours": -2}},
        {"scheduling": {"workday_hours": "lots"}},
        {"scheduling": "not-a-mapping"},
    ],
)
def test_invalid_values_fall_back(config: dict) -> None:
    assert get_cycle_check_mode(config) == "direct"
    assert get_consistency_mode(config) == "snapshot"
    assert get_workday_hours(config) == 8.0


def test_invalid_lock_timeout_and_level_fall_back() -> None:
    config = {"store": {"lock_timeout": 0}, "logging": {"level": "chatty"}}
    assert get_lock_timeout(config) == 30.0
    assert get_log_level(config) == "INFO"


def test_event_log_toggle() -> None:
    assert get_event_log_enabled({"events": {"log_file": False}}) is False
    assert get_event_log_enabled({"events": {"log_file": True}}) is True
