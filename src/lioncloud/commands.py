"""Inbound command payloads and their validation.

Commands arrive as JSON objects such as ``{"mode": "Dose1"}``,
``{"dose1": 18.5}``, ``{"power": false}`` or ``{"backflush": true}``.
Values are checked here, before anything reaches the cloud API.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from lioncloud._constants import MAX_DOSE_GRAMS, MIN_DOSE_GRAMS
from lioncloud.errors import ArgumentInvalidError
from lioncloud.models import DoseMode

if TYPE_CHECKING:
    from lioncloud.client import Client


@dataclass
class Command:
    """A parsed, validated command.  Unset fields are ``None``."""

    mode: DoseMode | None = None
    dose1: float | None = None
    dose2: float | None = None
    backflush: bool | None = None
    power: bool | None = None

    @property
    def empty(self) -> bool:
        return (
            self.mode is None
            and self.dose1 is None
            and self.dose2 is None
            and not self.backflush
            and self.power is None
        )


def validate_dose(grams: object) -> float:
    """Return *grams* as a float if it is a realistic dose weight."""
    if isinstance(grams, bool) or not isinstance(grams, int | float):
        raise ArgumentInvalidError(f"Dose must be a number, got {grams!r}.")
    if not MIN_DOSE_GRAMS <= grams <= MAX_DOSE_GRAMS:
        raise ArgumentInvalidError(
            f"Dose {grams} g out of range ({MIN_DOSE_GRAMS:g}-{MAX_DOSE_GRAMS:g} g)."
        )
    return float(grams)


def _flag(data: dict[str, object], key: str) -> bool | None:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return value
    raise ArgumentInvalidError(f"'{key}' must be true or false, got {value!r}.")


def command_from_mapping(data: dict[str, object]) -> Command:
    """Validate an already-decoded command object."""
    cmd = Command()

    mode = data.get("mode")
    if mode is not None and mode != "":
        if not isinstance(mode, str) or DoseMode.lookup(mode) is None:
            raise ArgumentInvalidError(
                f"Invalid mode {mode!r}. Expected: Dose1 | Dose2 | Continuous"
            )
        cmd.mode = DoseMode.lookup(mode)

    if data.get("dose1") is not None:
        cmd.dose1 = validate_dose(data["dose1"])
    if data.get("dose2") is not None:
        cmd.dose2 = validate_dose(data["dose2"])
    cmd.backflush = _flag(data, "backflush")
    cmd.power = _flag(data, "power")

    if cmd.empty:
        raise ArgumentInvalidError("mode, dose1, dose2, backflush, or power is required")
    return cmd


def parse_command(payload: bytes | str) -> Command:
    """Decode and validate a JSON command payload.

    Raises :class:`ArgumentInvalidError` for invalid JSON, non-object
    payloads, out-of-range values, or payloads that set nothing.
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ArgumentInvalidError(f"Failed to parse command: {e}") from e
    if not isinstance(data, dict):
        raise ArgumentInvalidError("Command must be a JSON object.")
    return command_from_mapping(data)


async def apply_command(client: Client, cmd: Command) -> None:
    """Run every part of *cmd* against *client*.

    Parts run in the order dose1, dose2, mode, backflush, power; the first
    failure propagates and the remaining parts are skipped.
    """
    if cmd.dose1 is not None:
        await client.set_dose(DoseMode.DOSE1.value, cmd.dose1)
    if cmd.dose2 is not None:
        await client.set_dose(DoseMode.DOSE2.value, cmd.dose2)
    if cmd.mode is not None:
        await client.set_mode(cmd.mode)
    if cmd.backflush:
        await client.start_cleaning_cycle()
    if cmd.power is not None:
        await client.set_power(cmd.power)
