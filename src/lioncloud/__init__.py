"""Python API and CLI for La Marzocco espresso machines via the cloud API."""

from lioncloud.client import Client, Poller
from lioncloud.commands import Command, apply_command, parse_command, validate_dose
from lioncloud.errors import (
    ArgumentInvalidError,
    AuthenticationError,
    CommandFailedError,
    LionCloudError,
    MalformedResponseError,
    NoDeviceFoundError,
    RegistrationError,
    TransportError,
    UnauthorizedError,
)
from lioncloud.models import BoilerStatus, DeviceSnapshot, DoseMode, ScaleStatus

__all__ = [
    "ArgumentInvalidError",
    "AuthenticationError",
    "BoilerStatus",
    "Client",
    "Command",
    "CommandFailedError",
    "DeviceSnapshot",
    "DoseMode",
    "LionCloudError",
    "MalformedResponseError",
    "NoDeviceFoundError",
    "Poller",
    "RegistrationError",
    "ScaleStatus",
    "TransportError",
    "UnauthorizedError",
    "apply_command",
    "parse_command",
    "validate_dose",
]
