"""Match external MQTT messages against configured triggers."""

from __future__ import annotations

import json
import logging

from lioncloud.config import Trigger

_LOGGER = logging.getLogger(__name__)

_MISSING = object()


def select(data: object, selector: str) -> object:
    """Resolve a dotted path such as ``event.buttons.0`` in decoded JSON.

    Returns a sentinel (not ``None``) when the path does not exist, so that
    an explicit JSON ``null`` can be told apart from a missing key.
    """
    current = data
    for part in selector.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def match_value(actual: object, expected: object) -> bool:
    if actual is _MISSING:
        return False
    if isinstance(expected, bool):
        return isinstance(actual, bool) and actual == expected
    if isinstance(expected, int | float):
        return (
            not isinstance(actual, bool)
            and isinstance(actual, int | float)
            and float(actual) == float(expected)
        )
    if isinstance(expected, str):
        return actual == expected
    return json.dumps(actual) == json.dumps(expected)


def find_matching_trigger(triggers: list[Trigger], payload: bytes | str) -> Trigger | None:
    """Return the first trigger whose conditions all match *payload*."""
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError):
        _LOGGER.debug("Ignoring non-JSON trigger message")
        return None
    for i, trigger in enumerate(triggers):
        if all(match_value(select(data, c.selector), c.value) for c in trigger.conditions):
            _LOGGER.debug("Trigger %d matched", i)
            return trigger
        _LOGGER.debug("Trigger %d did not match", i)
    return None
