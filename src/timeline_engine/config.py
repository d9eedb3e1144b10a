"""Load optional engine configuration from `.timeline_engine/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger

from .constants import (
    CONFIG_FILE,
    CONSISTENCY_MODES,
    CONSISTENCY_SNAPSHOT,
    CYCLE_CHECK_DIRECT,
    CYCLE_CHECK_MODES,
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    DEFAULT_LOG_LEVEL,
    DEFAULT_WORKDAY_HOURS,
    STATE_DIR_NAME,
)
from .io_utils import _load_yaml_with_error

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def load_engine_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional engine config file.

    Args:
        project_dir: Directory holding the ``.timeline_engine/`` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    data, err = _load_yaml_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _choice(config: dict[str, Any], keys: tuple[str, ...], choices: tuple[str, ...], default: str) -> str:
    raw = _get_nested(config, *keys)
    if raw is None:
        return default
    value = str(raw).strip().lower()
    if value in choices:
        return value
    logger.warning("Ignoring invalid {}={!r}; using {!r}", ".".join(keys), raw, default)
    return default


def get_cycle_check_mode(config: dict[str, Any]) -> str:
    """Return ``direct`` (reverse-edge guard only) or ``transitive``."""
    return _choice(config, ("scheduling", "cycle_check"), CYCLE_CHECK_MODES, CYCLE_CHECK_DIRECT)


def get_consistency_mode(config: dict[str, Any]) -> str:
    """Return ``snapshot`` (commit acts on the pre-read) or ``revalidate``."""
    return _choice(config, ("scheduling", "consistency"), CONSISTENCY_MODES, CONSISTENCY_SNAPSHOT)


def get_workday_hours(config: dict[str, Any]) -> float:
    raw = _get_nested(config, "scheduling", "workday_hours")
    if raw is None:
        return DEFAULT_WORKDAY_HOURS
    try:
        hours = float(raw)
    except (TypeError, ValueError):
        hours = 0.0
    if hours <= 0:
        logger.warning("Ignoring invalid scheduling.workday_hours={!r}", raw)
        return DEFAULT_WORKDAY_HOURS
    return hours


def get_lock_timeout(config: dict[str, Any]) -> float:
    raw = _get_nested(config, "store", "lock_timeout")
    if raw is None:
        return float(DEFAULT_LOCK_TIMEOUT_SECONDS)
    try:
        timeout = float(raw)
    except (TypeError, ValueError):
        timeout = 0.0
    if timeout <= 0:
        logger.warning("Ignoring invalid store.lock_timeout={!r}", raw)
        return float(DEFAULT_LOCK_TIMEOUT_SECONDS)
    return timeout


def get_log_level(config: dict[str, Any]) -> str:
    raw = _get_nested(config, "logging", "level")
    if isinstance(raw, str) and raw.upper() in VALID_LOG_LEVELS:
        return raw.upper()
    return DEFAULT_LOG_LEVEL


def get_event_log_enabled(config: dict[str, Any]) -> bool:
    raw = _get_nested(config, "events", "log_file")
    if raw is None:
        return True
    return bool(raw)
