"""Configuration loading for mailpulse.

All user-editable settings (accounts, ratings, publish targets, logging) live
in a single JSON file for quick edits without touching Python. Secrets are
referenced by environment variable name and read after `load_dotenv()`.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from core.config import SECURITY_MODES, SECURITY_SSL, MonitoredAccount
from core.errors import ConfigurationError
from core.rating import RatingTable

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Default location of the config file; `--config` overrides it.
CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

DEFAULT_STATE_FILE = "state.json"
DEFAULT_CHECK_INTERVAL_MINUTES = 60


@dataclass(frozen=True)
class MqttSettings:
    host: str
    port: int = 1883
    username: str = ""
    password: str = field(default="", repr=False)
    tls: bool = False
    qos: int = 1
    retain: bool = True
    timeout_seconds: float = 10.0
    client_id: Optional[str] = None


@dataclass(frozen=True)
class HomenetSettings:
    url: str
    username: str = ""
    password: str = field(default="", repr=False)
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class Settings:
    """Validated application settings."""

    config_path: str
    accounts: tuple[MonitoredAccount, ...]
    ratings: RatingTable
    state_file: str
    check_interval_minutes: int = DEFAULT_CHECK_INTERVAL_MINUTES
    report_missing: bool = True
    mqtt: Optional[MqttSettings] = None
    homenet: Optional[HomenetSettings] = None
    logging: dict = field(default_factory=dict)


def _load_json_config(path: str) -> dict:
    """Load the JSON config file with a flat, user-friendly schema."""

    if not os.path.exists(path):
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")
    return payload


def _secret(entry: dict, key: str, where: str) -> str:
    """Return `entry[key]`, or the environment variable named by `entry[key_env]`."""

    env_name = entry.get(f"{key}_env")
    if env_name:
        value = os.getenv(env_name)
        if value is None:
            raise ConfigurationError(f"{where}.{key}_env refers to unset variable {env_name}")
        return value
    value = entry.get(key, "")
    if not isinstance(value, str):
        raise ConfigurationError(f"{where}.{key} must be a string")
    return value


def _required_str(entry: dict, key: str, where: str) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{where}.{key} is required")
    return value


def _int(entry: dict, key: str, where: str, default: int, minimum: int = 0) -> int:
    value = entry.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigurationError(f"{where}.{key} must be an integer >= {minimum}")
    return value


def _number(entry: dict, key: str, where: str, default: float) -> float:
    value = entry.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"{where}.{key} must be a positive number")
    return float(value)


def _normalize_account(entry: Any, index: int) -> MonitoredAccount:
    where = f"accounts[{index}]"
    if not isinstance(entry, dict):
        raise ConfigurationError(f"{where} must be an object")

    security = str(entry.get("security", SECURITY_SSL)).lower()
    if security not in SECURITY_MODES:
        raise ConfigurationError(f"{where}.security must be one of {', '.join(SECURITY_MODES)}")

    whitelist = entry.get("subject_whitelist", []) or []
    if not isinstance(whitelist, list) or not all(isinstance(word, str) for word in whitelist):
        raise ConfigurationError(f"{where}.subject_whitelist must be a list of strings")

    move_to_folder = bool(entry.get("move_to_folder", False))
    destination_folder = entry.get("destination_folder", "") or ""
    if move_to_folder and not destination_folder:
        raise ConfigurationError(f"{where}.destination_folder is required when move_to_folder is set")

    return MonitoredAccount(
        name=_required_str(entry, "name", where),
        sender=_required_str(entry, "sender", where),
        topic=_required_str(entry, "topic", where),
        subject_whitelist=tuple(word for word in whitelist if word),
        mark_read=bool(entry.get("mark_read", False)),
        move_to_folder=move_to_folder,
        destination_folder=destination_folder,
        server=_required_str(entry, "server", where),
        port=_int(entry, "port", where, 993, minimum=1),
        security=security,
        username=_secret(entry, "username", where),
        password=_secret(entry, "password", where),
        inbox_folder=entry.get("inbox_folder", "INBOX") or "INBOX",
    )


def _normalize_accounts(raw_accounts: Any) -> tuple[MonitoredAccount, ...]:
    if not isinstance(raw_accounts, list) or not raw_accounts:
        raise ConfigurationError("accounts must be a non-empty list")

    accounts = tuple(_normalize_account(entry, i) for i, entry in enumerate(raw_accounts))
    seen: set[str] = set()
    for account in accounts:
        # Two accounts on one topic would share and overwrite one watermark.
        if account.topic in seen:
            raise ConfigurationError(f"Topic {account.topic!r} is used by more than one account")
        seen.add(account.topic)
    return accounts


def _normalize_mqtt(raw: Any) -> Optional[MqttSettings]:
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ConfigurationError("mqtt must be an object")
    qos = _int(raw, "qos", "mqtt", 1)
    if qos > 2:
        raise ConfigurationError("mqtt.qos must be 0, 1 or 2")
    return MqttSettings(
        host=_required_str(raw, "host", "mqtt"),
        port=_int(raw, "port", "mqtt", 1883, minimum=1),
        username=_secret(raw, "username", "mqtt"),
        password=_secret(raw, "password", "mqtt"),
        tls=bool(raw.get("tls", False)),
        qos=qos,
        retain=bool(raw.get("retain", True)),
        timeout_seconds=_number(raw, "timeout_seconds", "mqtt", 10.0),
        client_id=raw.get("client_id") or None,
    )


def _check_mqtt_topics(accounts: tuple[MonitoredAccount, ...]) -> None:
    for account in accounts:
        if "+" in account.topic or "#" in account.topic:
            raise ConfigurationError(
                f"Topic {account.topic!r} of account {account.name} contains an MQTT wildcard"
            )


def _normalize_homenet(raw: Any) -> Optional[HomenetSettings]:
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ConfigurationError("homenet must be an object")
    url = _required_str(raw, "url", "homenet")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError("homenet.url must be an http:// or https:// URL")
    return HomenetSettings(
        url=url,
        username=_secret(raw, "username", "homenet"),
        password=_secret(raw, "password", "homenet"),
        timeout_seconds=_number(raw, "timeout_seconds", "homenet", 10.0),
    )


def resolve_path(path: str) -> str:
    """Resolve a config-relative path against the project root."""

    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


def load_settings(path: Optional[str] = None) -> Settings:
    """Load and validate the config file. Raises ConfigurationError."""

    load_dotenv()
    config_path = path or CONFIG_PATH
    config = _load_json_config(config_path)

    raw_ratings = config.get("ratings", [])
    if not isinstance(raw_ratings, list):
        raise ConfigurationError("ratings must be a list")

    logging_config = config.get("logging", {}) or {}
    if not isinstance(logging_config, dict):
        raise ConfigurationError("logging must be an object")

    state_file = config.get("state_file", DEFAULT_STATE_FILE) or DEFAULT_STATE_FILE
    if not isinstance(state_file, str):
        raise ConfigurationError("state_file must be a string")

    accounts = _normalize_accounts(config.get("accounts"))
    mqtt = _normalize_mqtt(config.get("mqtt"))
    if mqtt is not None:
        _check_mqtt_topics(accounts)

    return Settings(
        config_path=config_path,
        accounts=accounts,
        ratings=RatingTable.from_config(raw_ratings),
        state_file=resolve_path(state_file),
        check_interval_minutes=_int(
            config, "check_interval_minutes", "config", DEFAULT_CHECK_INTERVAL_MINUTES, minimum=1
        ),
        report_missing=bool(config.get("report_missing", True)),
        mqtt=mqtt,
        homenet=_normalize_homenet(config.get("homenet")),
        logging=logging_config,
    )
