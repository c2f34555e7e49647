"""Device state model and dashboard parsing."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum

from lioncloud._constants import (
    WIDGET_BOILER,
    WIDGET_BREW_BY_WEIGHT,
    WIDGET_MACHINE_STATUS,
    WIDGET_SCALE,
)


class DoseMode(str, Enum):
    """Brew-by-weight operating mode."""

    DOSE1 = "Dose1"
    DOSE2 = "Dose2"
    CONTINUOUS = "Continuous"

    @property
    def display_name(self) -> str:
        """Human-readable label."""
        return _DISPLAY_NAMES[self]

    @classmethod
    def lookup(cls, value: str) -> DoseMode | None:
        """Return the mode for *value*, or ``None`` if it is not recognised."""
        return _MODE_ALIASES.get(value)

    @classmethod
    def parse(cls, value: str) -> DoseMode:
        """Lenient parse used for API payloads; unknown values mean continuous."""
        return _MODE_ALIASES.get(value, cls.CONTINUOUS)


_DISPLAY_NAMES = {
    DoseMode.DOSE1: "Dose 1",
    DoseMode.DOSE2: "Dose 2",
    DoseMode.CONTINUOUS: "Continuous",
}

_MODE_ALIASES = {
    "Dose1": DoseMode.DOSE1,
    "dose1": DoseMode.DOSE1,
    "Dose2": DoseMode.DOSE2,
    "dose2": DoseMode.DOSE2,
    "Continuous": DoseMode.CONTINUOUS,
    "continuous": DoseMode.CONTINUOUS,
    "Off": DoseMode.CONTINUOUS,
    "off": DoseMode.CONTINUOUS,
}


@dataclass(frozen=True)
class BoilerStatus:
    """Coffee boiler readiness."""

    ready: bool
    remaining_seconds: int | None = None
    """Seconds until ready while heating; ``None`` when ready or unknown."""


@dataclass(frozen=True)
class ScaleStatus:
    """Bluetooth scale paired with the machine."""

    connected: bool
    battery_level: int | None = None
    """Battery percentage 0-100."""


@dataclass(frozen=True)
class DeviceSnapshot:
    """Cached, eventually-consistent view of the managed machine.

    Instances are immutable; the client swaps in a new snapshot on every poll
    or successful mutation.  Absent values are ``None``.
    """

    mode: DoseMode = DoseMode.CONTINUOUS
    machine_on: bool = False
    dose1: float | None = None
    dose2: float | None = None
    boiler: BoilerStatus | None = None
    scale: ScaleStatus | None = None
    serial: str | None = None
    model: str | None = None
    connected: bool = False

    def dose(self, dose_id: str) -> float | None:
        """Target weight for ``"Dose1"`` or ``"Dose2"``."""
        if dose_id == DoseMode.DOSE1.value:
            return self.dose1
        if dose_id == DoseMode.DOSE2.value:
            return self.dose2
        raise KeyError(dose_id)

    def to_dict(self) -> dict[str, object]:
        """Return the JSON shape published to collaborators."""
        out: dict[str, object] = {"mode": self.mode.value, "connected": self.connected}
        if self.serial:
            out["serial"] = self.serial
        if self.model:
            out["model"] = self.model
        if self.dose1 is not None:
            out["dose1"] = {"weight": self.dose1}
        if self.dose2 is not None:
            out["dose2"] = {"weight": self.dose2}
        out["machineOn"] = self.machine_on
        if self.boiler is not None:
            boiler: dict[str, object] = {"ready": self.boiler.ready}
            if self.boiler.remaining_seconds is not None:
                boiler["remainingSeconds"] = self.boiler.remaining_seconds
            out["boiler"] = boiler
        if self.scale is not None:
            scale: dict[str, object] = {"connected": self.scale.connected}
            if self.scale.battery_level is not None:
                scale["batteryLevel"] = self.scale.battery_level
            out["scale"] = scale
        return out


def has_changed(old: DeviceSnapshot, new: DeviceSnapshot) -> bool:
    """Return ``True`` if any observable device field differs.

    Identification and connection fields are not compared.
    """
    return (
        old.mode != new.mode
        or old.machine_on != new.machine_on
        or old.dose1 != new.dose1
        or old.dose2 != new.dose2
        or old.boiler != new.boiler
        or old.scale != new.scale
    )


# ---------------------------------------------------------------------------
# Dashboard parsing
# ---------------------------------------------------------------------------


def _number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


def _dose_weight(doses: dict[str, object], dose_id: str) -> float | None:
    entry = doses.get(dose_id)
    if not isinstance(entry, dict):
        return None
    weight = _number(entry.get("dose"))
    if weight is None or weight <= 0:
        return None
    return weight


def _parse_boiler(output: dict[str, object], now: float) -> BoilerStatus:
    ready = output.get("status") == "Ready"
    remaining: int | None = None
    seconds = _number(output.get("remainingSeconds"))
    if seconds is not None:
        remaining = int(seconds)
    ready_start = _number(output.get("readyStartTime"))
    if ready_start is not None and ready_start > now * 1000:
        remaining = int((ready_start - now * 1000) / 1000)
    return BoilerStatus(ready=ready, remaining_seconds=None if ready else remaining)


def _parse_scale(output: dict[str, object]) -> ScaleStatus:
    connected = output.get("connected")
    battery = _number(output.get("batteryLevel"))
    return ScaleStatus(
        connected=connected if isinstance(connected, bool) else False,
        battery_level=int(battery) if battery is not None else None,
    )


def parse_dashboard(payload: object, *, now: float | None = None) -> DeviceSnapshot:
    """Extract a :class:`DeviceSnapshot` from a ``/dashboard`` response.

    Every field is read independently; anything missing or of the wrong type
    is left at its default.  An unrecognised payload yields the default
    snapshot (continuous mode, everything else absent) rather than an error.

    *now* is the current time in epoch seconds, used to turn the boiler's
    ``readyStartTime`` into a countdown.
    """
    if now is None:
        now = time.time()
    if not isinstance(payload, dict):
        return DeviceSnapshot()

    mode = DoseMode.CONTINUOUS
    machine_on = payload.get("connected") is True
    dose1: float | None = None
    dose2: float | None = None
    boiler: BoilerStatus | None = None
    scale: ScaleStatus | None = None

    widgets = payload.get("widgets")
    for widget in widgets if isinstance(widgets, list) else []:
        if not isinstance(widget, dict):
            continue
        code = widget.get("code")
        output = widget.get("output")
        if not isinstance(output, dict):
            continue

        if code == WIDGET_MACHINE_STATUS:
            status = output.get("status")
            if isinstance(status, str):
                machine_on = status == "PoweredOn"
        elif code in WIDGET_BREW_BY_WEIGHT:
            widget_mode = output.get("mode")
            if isinstance(widget_mode, str):
                mode = DoseMode.parse(widget_mode)
            doses = output.get("doses")
            if isinstance(doses, dict):
                dose1 = _dose_weight(doses, DoseMode.DOSE1.value)
                dose2 = _dose_weight(doses, DoseMode.DOSE2.value)
        elif code in WIDGET_BOILER:
            boiler = _parse_boiler(output, now)
        elif code == WIDGET_SCALE:
            scale = _parse_scale(output)

    if mode is DoseMode.CONTINUOUS:
        top_mode = payload.get("mode")
        if isinstance(top_mode, str):
            mode = DoseMode.parse(top_mode)

    return DeviceSnapshot(
        mode=mode,
        machine_on=machine_on,
        dose1=dose1,
        dose2=dose2,
        boiler=boiler,
        scale=scale,
    )
