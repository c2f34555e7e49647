"""Bridge configuration file."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from lioncloud._constants import DEFAULT_POLL_INTERVAL
from lioncloud.errors import ConfigError

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class MqttConfig:
    host: str
    port: int = 1883
    topic: str = "home/lamarzocco"
    username: str | None = None
    password: str | None = None
    client_id: str = "lamarzocco_mqtt"
    retain: bool = True
    qos: int = 1


@dataclass
class CloudConfig:
    username: str
    password: str
    polling_interval: int = DEFAULT_POLL_INTERVAL


@dataclass
class TriggerCondition:
    selector: str
    """Dotted JSON path into the message (``button``, ``event.type``)."""

    value: object
    """Expected value: number, string or boolean."""


@dataclass
class Trigger:
    topic: str
    conditions: list[TriggerCondition]
    mode: str
    """Dose mode to switch to when every condition matches."""


@dataclass
class Config:
    mqtt: MqttConfig
    cloud: CloudConfig
    triggers: list[Trigger] = field(default_factory=list)
    loglevel: str = "info"


def substitute_env(text: str) -> str:
    """Replace ``${VAR}`` placeholders with environment values (empty if unset)."""
    return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), text)


def _section(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"Missing '{key}' section.")
    return value


def _flag(section: dict[str, object], key: str, *, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false, got {value!r}.")
    return value


def _parse_trigger(raw: object) -> Trigger:
    if not isinstance(raw, dict):
        raise ConfigError("Each trigger must be an object.")
    topic = raw.get("topic")
    action = raw.get("action")
    if not isinstance(topic, str) or not topic:
        raise ConfigError("Trigger is missing 'topic'.")
    if not isinstance(action, dict) or not isinstance(action.get("mode"), str):
        raise ConfigError(f"Trigger for '{topic}' is missing 'action.mode'.")
    conditions = []
    for cond in raw.get("conditions") or []:
        if not isinstance(cond, dict) or not isinstance(cond.get("selector"), str):
            raise ConfigError(f"Trigger for '{topic}' has a condition without 'selector'.")
        conditions.append(TriggerCondition(cond["selector"], cond.get("value")))
    return Trigger(topic=topic, conditions=conditions, mode=action["mode"])


def parse_config(data: object) -> Config:
    """Build a :class:`Config` from decoded JSON, applying defaults."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object.")

    mqtt = _section(data, "mqtt")
    if not mqtt.get("host"):
        raise ConfigError("'mqtt.host' is required.")
    cloud = _section(data, "lamarzocco")
    if not cloud.get("username") or not cloud.get("password"):
        raise ConfigError("'lamarzocco.username' and 'lamarzocco.password' are required.")

    retain = _flag(mqtt, "retain", default=True)
    try:
        mqtt_config = MqttConfig(
            host=str(mqtt["host"]),
            port=int(str(mqtt.get("port") or 1883)),
            topic=str(mqtt.get("topic") or "home/lamarzocco").rstrip("/"),
            username=str(mqtt["username"]) if mqtt.get("username") else None,
            password=str(mqtt["password"]) if mqtt.get("password") else None,
            client_id=str(mqtt.get("client_id") or "lamarzocco_mqtt"),
            retain=retain,
            qos=int(str(mqtt.get("qos", 1))),
        )
        cloud_config = CloudConfig(
            username=str(cloud["username"]),
            password=str(cloud["password"]),
            polling_interval=int(str(cloud.get("polling_interval") or DEFAULT_POLL_INTERVAL)),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e

    triggers = data.get("triggers") or []
    if not isinstance(triggers, list):
        raise ConfigError("'triggers' must be a list.")

    return Config(
        mqtt=mqtt_config,
        cloud=cloud_config,
        triggers=[_parse_trigger(t) for t in triggers],
        loglevel=str(data.get("loglevel") or "info"),
    )


def load_config(path: Path | str) -> Config:
    """Read a JSON configuration file, substituting ``${VAR}`` placeholders."""
    try:
        text = Path(path).read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}") from e
    try:
        data = json.loads(substitute_env(text))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    return parse_config(data)
