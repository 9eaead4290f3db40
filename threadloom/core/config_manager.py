"""Settings for Threadloom, kept in <APP_HOME>/config/settings.yaml.

A single ConfigManager is shared by the CLI, the worker and the services.
Values missing from the file fall back to DEFAULT_CONFIG. APP_HOME is
$THREADLOOM_HOME, or ~/.threadloom when unset.
"""

import copy
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from threadloom.core.exceptions import ConfigError
from threadloom.core.types import Credentials

logger = logging.getLogger(__name__)

APP_HOME = Path(os.environ.get("THREADLOOM_HOME") or Path.home() / ".threadloom")


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_CONFIG = {
    "app": {
        "version": "1.0.0",
        "log_level": "INFO",
    },
    "network": {
        "timeout": 30,
        "request_interval_sec": 0,
        "max_workers": 8,
        "user_agent": "threadloom/1.0.0 (+https://github.com/threadloom/threadloom)",
    },
    "mastodon": {
        "default_instance": "mastodon.social",
        "account": "",          # @user@instance, empty for anonymous reads
        "access_token": "",
    },
    "hackernews": {
        "page_size": 25,
    },
    "security": {
        "mask_logs": True,
    },
}


def _log_level(value: Any) -> Optional[str]:
    level = str(value).upper()
    if level not in LOG_LEVELS:
        logger.warning(f"Unknown log level '{value}', keeping the current one")
        return None
    return level


def _timeout(value: Any) -> Optional[int]:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        logger.warning(f"network.timeout must be an integer, got '{value}'")
        return None
    if seconds < 5:
        logger.warning(f"network.timeout {seconds}s is too short, using 5s")
        return 5
    return seconds


def _request_interval(value: Any) -> Optional[float]:
    try:
        interval = float(value)
    except (TypeError, ValueError):
        logger.warning(f"network.request_interval_sec must be a number, got '{value}'")
        return None
    return max(interval, 0.0)


def _max_workers(value: Any) -> Optional[int]:
    try:
        workers = int(value)
    except (TypeError, ValueError):
        logger.warning(f"network.max_workers must be an integer, got '{value}'")
        return None
    if not 1 <= workers <= 32:
        logger.warning(f"network.max_workers {workers} outside 1-32, using 8")
        return 8
    return workers


def _account(value: Any) -> Optional[str]:
    if value == "":
        return ""
    credentials = Credentials.from_handle(str(value))
    if credentials is None:
        logger.warning(f"mastodon.account must look like @user@instance, got '{value}'")
        return None
    return f"@{credentials.username}@{credentials.instance}"


# Keys with a rule; a rule returns the value to store, or None to reject it
VALIDATORS: dict[str, Callable[[Any], Any]] = {
    "mastodon.account": _account,
    "app.log_level": _log_level,
    "network.timeout": _timeout,
    "network.request_interval_sec": _request_interval,
    "network.max_workers": _max_workers,
}


class ConfigManager:
    """Process-wide settings store.

    Keys are addressed with dots ("network.max_workers"). Reads and writes
    are guarded by an RLock so worker threads can read while the UI writes.
    """

    _instance = None
    _lock = threading.RLock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if hasattr(self, '_initialized'):
            return

        with self._lock:
            if hasattr(self, '_initialized'):
                return

            self.APP_HOME = APP_HOME
            self.CONFIG_PATH = self.APP_HOME / "config" / "settings.yaml"
            self._config = {}
            self._instance_lock = threading.RLock()
            self._load_or_create_config()
            self._initialized = True

    def _load_or_create_config(self):
        """Read CONFIG_PATH over the defaults, writing the defaults out on first run."""
        self._config = self._deep_copy(DEFAULT_CONFIG)

        if not self.CONFIG_PATH.exists():
            logger.info(f"No settings at {self.CONFIG_PATH}, writing defaults")
            self.save()
            return

        try:
            with open(self.CONFIG_PATH, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Could not read {self.CONFIG_PATH}: {e}")
            logger.warning("Falling back to default settings")
            return

        if not isinstance(loaded, dict):
            logger.warning(f"{self.CONFIG_PATH} is not a mapping, falling back to default settings")
            return
        self._merge(self._config, loaded)
        self._apply_validators()
        logger.info(f"Loaded settings from {self.CONFIG_PATH}")

    def _apply_validators(self) -> None:
        """Run VALIDATORS over loaded values; rejected ones revert to their default."""
        for key, rule in VALIDATORS.items():
            value = self.get(key)
            if value is None:
                continue
            checked = rule(value)
            if checked is None:
                default = self._default(key)
                logger.warning(f"Invalid {key} in {self.CONFIG_PATH}, using {default!r}")
                checked = default
            self.set(key, checked)

    @staticmethod
    def _default(key: str) -> Any:
        node = DEFAULT_CONFIG
        for part in key.split('.'):
            node = node[part]
        return copy.deepcopy(node)

    def credentials(self) -> Optional[Credentials]:
        """Viewer credentials from mastodon.account and mastodon.access_token, if set."""
        handle = self.get("mastodon.account") or ""
        if not handle:
            return None
        return Credentials.from_handle(handle, token=self.get("mastodon.access_token") or None)

    @staticmethod
    def _merge(base: dict, overrides: dict) -> None:
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                ConfigManager._merge(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default=None) -> Any:
        """Value at a dotted key, or default if any part of the path is missing.

        Example:
            >>> config.get("network.max_workers")
            8
        """
        with self._instance_lock:
            node = self._config
            for part in key.split('.'):
                if not isinstance(node, dict) or part not in node:
                    return default
                node = node[part]
            return node

    def set(self, key: str, value: Any) -> None:
        """Store value at a dotted key, creating sections as needed. Not saved."""
        *sections, leaf = key.split('.')
        with self._instance_lock:
            node = self._config
            for part in sections:
                node = node.setdefault(part, {})
            node[leaf] = value

    def update(self, changes: dict) -> None:
        """Validate and apply {dotted key: value} changes, then save once.

        Values rejected by a rule in VALIDATORS are skipped; out-of-range
        numbers are clamped by their rule.
        """
        with self._instance_lock:
            for key, value in changes.items():
                rule = VALIDATORS.get(key)
                checked = rule(value) if rule else value
                if checked is not None:
                    self.set(key, checked)
            self.save()

    def save(self) -> None:
        """Write the current settings to CONFIG_PATH.

        Raises:
            ConfigError: File could not be written
        """
        with self._instance_lock:
            try:
                self.CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
                with open(self.CONFIG_PATH, 'w', encoding='utf-8') as f:
                    yaml.safe_dump(self._config, f, default_flow_style=False, sort_keys=False)
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Could not write {self.CONFIG_PATH}: {e}")
                raise ConfigError(f"Failed to save configuration: {e}")
            logger.debug(f"Settings written to {self.CONFIG_PATH}")

    @classmethod
    def reset(cls) -> None:
        """Drop the shared instance (tests)."""
        with cls._lock:
            cls._instance = None

    @staticmethod
    def _deep_copy(obj):
        return copy.deepcopy(obj)
