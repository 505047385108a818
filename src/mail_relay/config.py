"""
Configuration management with validation.

Process settings come from environment variables (optionally from a .env
file); the forwarding rules and mail server settings come from a JSON
settings file whose path is itself configurable.
"""

from __future__ import annotations
import json
import os
from pathlib import Path
from typing import Any, Dict, List, TypedDict

from dotenv import load_dotenv

from mail_relay.errors import ConfigError
from mail_relay.logging import logger
from mail_relay.rules import ForwardingRule, ReceiverSettings, SenderSettings


class Config(TypedDict):
    """Typed configuration dictionary."""
    FORWARDING_RULES: List[ForwardingRule]
    RECEIVER: ReceiverSettings
    SENDER: SenderSettings
    DELAY_MS: int
    STATE_DIR: str
    CONNECT_TIMEOUT: float
    LOG_LEVEL: str
    LOG_FILE: str | None
    HEALTH_CHECK_ENABLED: bool
    HEALTH_CHECK_PORT: int


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes")


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default).strip()
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _require(section: Dict[str, Any], key: str, where: str) -> Any:
    value = section.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigError(f"{where}.{key} is required")
    return value


def _port(section: Dict[str, Any], key: str, where: str) -> int:
    value = _require(section, key, where)
    if isinstance(value, bool) or not isinstance(value, int) or not (1 <= value <= 65535):
        raise ConfigError(f"{where}.{key} must be between 1 and 65535, got {value!r}")
    return value


def _flag(section: Dict[str, Any], key: str, where: str, default: bool = True) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{where}.{key} must be true or false, got {value!r}")
    return value


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = data.get(key)
    if not isinstance(section, dict):
        raise ConfigError(f"{key} section is required")
    return section


def parse_settings(data: Dict[str, Any]) -> tuple[List[ForwardingRule], ReceiverSettings, SenderSettings, int | None]:
    """
    Validate the JSON settings document.

    Returns:
        Tuple of (rules, receiver settings, sender settings, DelayMilliseconds or None)

    Raises:
        ConfigError: If a section or field is missing or invalid
    """
    if not isinstance(data, dict):
        raise ConfigError("Settings file must contain a JSON object")

    raw_rules = data.get("ForwardingRules")
    if not isinstance(raw_rules, list) or not raw_rules:
        raise ConfigError("ForwardingRules must be a non-empty list")

    rules: List[ForwardingRule] = []
    seen = set()
    for i, raw in enumerate(raw_rules):
        where = f"ForwardingRules[{i}]"
        if not isinstance(raw, dict):
            raise ConfigError(f"{where} must be an object")
        rule = ForwardingRule(
            source_address=str(_require(raw, "SourceEmailAddress", where)).strip(),
            source_password=str(_require(raw, "SourceEmailPassword", where)),
            name=str(raw.get("Name") or ""),
            destination_address=str(_require(raw, "DestinationEmailAddress", where)).strip(),
        )
        if rule.identifier in seen:
            raise ConfigError(f"{where} duplicates an earlier rule ({rule.source_address} -> {rule.destination_address})")
        seen.add(rule.identifier)
        rules.append(rule)

    receiver_raw = _section(data, "ReceiverSettings")
    receiver = ReceiverSettings(
        pop3_server=str(_require(receiver_raw, "Pop3Server", "ReceiverSettings")),
        pop3_port=_port(receiver_raw, "Pop3Port", "ReceiverSettings"),
        use_ssl=_flag(receiver_raw, "UseSsl", "ReceiverSettings"),
    )
    sender_raw = _section(data, "SenderSettings")
    sender = SenderSettings(
        smtp_server=str(_require(sender_raw, "SmtpServer", "SenderSettings")),
        smtp_port=_port(sender_raw, "SmtpPort", "SenderSettings"),
        use_ssl=_flag(sender_raw, "UseSsl", "SenderSettings"),
    )

    delay = data.get("DelayMilliseconds")
    if delay is not None and (isinstance(delay, bool) or not isinstance(delay, int)):
        raise ConfigError(f"DelayMilliseconds must be an integer, got {delay!r}")
    return rules, receiver, sender, delay


def load_config() -> Config:
    """
    Load environment variables and the settings file, and return validated configuration.

    Optional vars with defaults:
      - RELAY_SETTINGS_FILE (default: "appsettings.json")
      - RELAY_STATE_DIR (default: ".")
      - RELAY_DELAY_MS (default: DelayMilliseconds from the settings file, else 60000)
      - RELAY_CONNECT_TIMEOUT (default: 30 seconds)
      - LOG_LEVEL (default: "INFO")
      - LOG_FILE (default: None)
      - HEALTH_CHECK_ENABLED (default: "false")
      - HEALTH_CHECK_PORT (default: 8080)

    Raises:
        ConfigError: If the settings file is missing, unreadable or invalid
    """
    load_dotenv()

    settings_file = Path(os.getenv("RELAY_SETTINGS_FILE", "appsettings.json").strip())
    if not settings_file.exists():
        raise ConfigError(f"Settings file not found: {settings_file}")
    try:
        data = json.loads(settings_file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read settings file {settings_file}: {e}") from e

    rules, receiver, sender, file_delay = parse_settings(data)

    delay_ms = _env_int("RELAY_DELAY_MS", str(file_delay if file_delay is not None else 60000))
    if delay_ms < 0:
        raise ConfigError(f"Delay must not be negative, got {delay_ms}")

    connect_timeout = _env_int("RELAY_CONNECT_TIMEOUT", "30")
    if connect_timeout < 1:
        raise ConfigError(f"RELAY_CONNECT_TIMEOUT must be at least 1 second, got {connect_timeout}")

    health_check_port = _env_int("HEALTH_CHECK_PORT", "8080")
    if not (1024 <= health_check_port <= 65535):
        raise ConfigError(f"HEALTH_CHECK_PORT must be between 1024 and 65535, got {health_check_port}")

    state_dir = os.getenv("RELAY_STATE_DIR", ".").strip() or "."

    cfg: Config = {
        "FORWARDING_RULES": rules,
        "RECEIVER": receiver,
        "SENDER": sender,
        "DELAY_MS": delay_ms,
        "STATE_DIR": state_dir,
        "CONNECT_TIMEOUT": float(connect_timeout),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        "LOG_FILE": os.getenv("LOG_FILE", "").strip() or None,
        "HEALTH_CHECK_ENABLED": _env_bool("HEALTH_CHECK_ENABLED", "false"),
        "HEALTH_CHECK_PORT": health_check_port,
    }

    logger.debug(f"Configuration loaded: {len(rules)} rules, delay={delay_ms}ms, state_dir={state_dir}")
    return cfg
