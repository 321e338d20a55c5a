"""Core data structures and collaborator protocols for meross-sync."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "CommandTransport",
    "ConnectionKind",
    "DeviceIdentity",
    "DeviceInfo",
    "DeviceState",
    "Digest",
    "ElectricityPayload",
    "NotificationSink",
    "ProtocolVariant",
    "PushMessage",
    "StateField",
    "SystemAllPayload",
    "TelemetryFragment",
    "TransportResponse",
]


class ProtocolVariant(StrEnum):
    """Wire encoding of the on/off command a device understands."""

    UNKNOWN = "unknown"
    LEGACY = "toggle"
    EXTENDED = "togglex"


class ConnectionKind(StrEnum):
    """How the device is reached; selects the default poll interval."""

    LOCAL = "local"
    CLOUD = "cloud"


class StateField(StrEnum):
    """Observable fields reported to the notification sink."""

    ON = "on"
    IN_USE = "in_use"
    POWER = "power"
    VOLTAGE = "voltage"
    ONLINE = "online"
    POWER_CAPABLE = "power_capable"
    DEVICE_INFO = "device_info"


class DeviceIdentity(BaseModel):
    """Immutable description of the device this core is bound to."""

    model_config = ConfigDict(frozen=True)

    name: str
    uuid: str
    host: str | None = None
    key: str = ""
    connection: ConnectionKind = ConnectionKind.LOCAL

    @property
    def lp(self) -> str:
        """Log prefix for this device."""
        return f"[{self.name}]"


class DeviceInfo(BaseModel):
    """Identity/network metadata snapshot published to the host registry."""

    mac_address: str | None = None
    hardware_version: str | None = None
    firmware_version: str | None = None
    ip_address: str | None = None
    online: bool = True


class DeviceState(BaseModel):
    """Cached device state. Only UpdateReconciler writes to it."""

    commanded_on: bool = False
    reported_power: float | None = None
    reported_voltage: float | None = None
    in_use: bool = False
    online: bool = True
    protocol_variant: ProtocolVariant = ProtocolVariant.UNKNOWN
    power_capable: bool = False
    mac_address: str | None = None
    hardware_version: str | None = None
    firmware_version: str | None = None
    ip_address: str | None = None

    def device_info(self) -> DeviceInfo:
        """Return the registry-facing metadata snapshot."""
        return DeviceInfo(
            mac_address=self.mac_address,
            hardware_version=self.hardware_version,
            firmware_version=self.firmware_version,
            ip_address=self.ip_address,
            online=self.online,
        )


# ---------------------------------------------------------------------------
# Wire schemas. Unknown keys are ignored; absent keys become None.
# ---------------------------------------------------------------------------


class TelemetryFragment(BaseModel):
    """Loosely structured telemetry from a poll or push message.

    power is in milliwatts and voltage in device units, both unscaled.
    """

    model_config = ConfigDict(extra="ignore")

    onoff: int | None = None
    channel: int | None = None
    power: int | None = None
    voltage: int | None = None


class Digest(BaseModel):
    """On/off digest; Extended devices report a per-channel togglex list."""

    model_config = ConfigDict(extra="ignore")

    togglex: list[TelemetryFragment] | None = None
    toggle: TelemetryFragment | None = None

    @field_validator("togglex", mode="before")
    @classmethod
    def _single_channel_as_list(cls, value: object) -> object:
        if isinstance(value, Mapping):
            return [value]
        return value

    def channel_zero(self) -> tuple[ProtocolVariant, TelemetryFragment] | None:
        """Return the detected variant and its on/off fragment, if present."""
        if self.togglex:
            return ProtocolVariant.EXTENDED, self.togglex[0]
        if self.toggle is not None:
            return ProtocolVariant.LEGACY, self.toggle
        return None


class _Hardware(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    mac_address: str | None = Field(default=None, alias="macAddress")
    version: str | None = None


class _Firmware(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    inner_ip: str | None = Field(default=None, alias="innerIp")
    version: str | None = None


class _OnlineStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: int | None = None


class _System(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hardware: _Hardware | None = None
    firmware: _Firmware | None = None
    online: _OnlineStatus | None = None


class _SystemAll(BaseModel):
    model_config = ConfigDict(extra="ignore")

    digest: Digest | None = None
    system: _System | None = None


class SystemAllPayload(BaseModel):
    """Payload of an Appliance.System.All (full-state poll) response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    system_all: _SystemAll | None = Field(default=None, alias="all")


class ElectricityPayload(BaseModel):
    """Payload of an Appliance.Control.Electricity response."""

    model_config = ConfigDict(extra="ignore")

    electricity: TelemetryFragment | None = None


class PushMessage(BaseModel):
    """Message delivered by the push transport; payload shaped like a digest."""

    model_config = ConfigDict(extra="ignore")

    payload: Digest | None = None


class TransportResponse(BaseModel):
    """Decoded device response returned by a CommandTransport."""

    header: dict[str, Any] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class CommandTransport(Protocol):
    """Outbound request/response channel to the device."""

    async def send(self, identity: DeviceIdentity, namespace: str, payload: Mapping[str, Any]) -> TransportResponse:
        """Send one request; raise CommandTimeoutError or TransportError on failure."""
        ...


class NotificationSink(Protocol):
    """Host-side consumer of confirmed state changes."""

    def notify(self, field: StateField, value: object) -> None:
        """Receive exactly one call per confirmed change of a field."""
        ...

    def add_history_entry(self, entry: Mapping[str, int | float]) -> None:
        """Record a historical accounting entry (on/off status or power)."""
        ...
