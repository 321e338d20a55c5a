"""Single writer for a device's cached state.

Poll results, power readings, push messages and accepted commands all land
here. Every method is synchronous, so under asyncio a call runs to completion
without interleaving with other coroutines; no lock is needed for the push
path that runs outside the command queue.
"""

from __future__ import annotations

from collections.abc import Mapping

from meross_sync.const import DEFAULT_IN_USE_POWER_THRESHOLD, POWER_DIVISOR, VOLTAGE_DIVISOR
from meross_sync.logging_abstraction import DeviceLogger, get_device_logger
from meross_sync.structs import (
    DeviceIdentity,
    DeviceState,
    NotificationSink,
    ProtocolVariant,
    StateField,
    TelemetryFragment,
)


def scale_power(raw: int) -> float:
    """Milliwatts to watts, two decimals."""
    return round(raw / POWER_DIVISOR, 2)


def scale_voltage(raw: int) -> float:
    """Raw device voltage to volts, two decimals."""
    return round(raw / VOLTAGE_DIVISOR, 2)


class UpdateReconciler:
    """Merge telemetry into DeviceState and notify the sink once per real change."""

    def __init__(
        self,
        identity: DeviceIdentity,
        sink: NotificationSink,
        *,
        in_use_power_threshold: float = DEFAULT_IN_USE_POWER_THRESHOLD,
        enable_logging: bool = True,
        enable_debug_logging: bool = False,
        initial_state: DeviceState | None = None,
    ) -> None:
        self.identity: DeviceIdentity = identity
        self.sink: NotificationSink = sink
        self.in_use_power_threshold: float = in_use_power_threshold
        self.log: DeviceLogger = get_device_logger(
            __name__,
            identity.name,
            identity.uuid,
            enable_logging=enable_logging,
            enable_debug_logging=enable_debug_logging,
        )
        self._state: DeviceState = initial_state.model_copy() if initial_state else DeviceState()

    @property
    def state(self) -> DeviceState:
        """Read-only snapshot of the cache."""
        return self._state.model_copy()

    @property
    def commanded_on(self) -> bool:
        return self._state.commanded_on

    @property
    def online(self) -> bool:
        return self._state.online

    @property
    def protocol_variant(self) -> ProtocolVariant:
        return self._state.protocol_variant

    @property
    def power_capable(self) -> bool:
        return self._state.power_capable

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def apply_update(self, fragment: TelemetryFragment | Mapping[str, object]) -> set[StateField]:
        """Merge one telemetry fragment; return the fields that changed.

        Accepts a validated fragment or a raw mapping, which is validated here
        (pydantic.ValidationError propagates for unusable input).
        """
        if not isinstance(fragment, TelemetryFragment):
            fragment = TelemetryFragment.model_validate(fragment)

        changed: set[StateField] = set()
        state = self._state

        if fragment.onoff is not None:
            new_on = fragment.onoff == 1
            if new_on != state.commanded_on:
                state.commanded_on = new_on
                self.sink.notify(StateField.ON, new_on)
                self.sink.add_history_entry({"status": 1 if new_on else 0})
                changed.add(StateField.ON)
                self.log.state("current state [%s]", "on" if new_on else "off")

        if fragment.power is not None:
            scaled_power = scale_power(fragment.power)
            new_in_use = state.in_use
            if scaled_power != state.reported_power:
                state.reported_power = scaled_power
                new_in_use = state.commanded_on and scaled_power > self.in_use_power_threshold
                self.sink.notify(StateField.POWER, scaled_power)
                changed.add(StateField.POWER)
                self.log.payload("current power [%sW]", scaled_power)
            if new_in_use != state.in_use:
                state.in_use = new_in_use
                self.sink.notify(StateField.IN_USE, new_in_use)
                changed.add(StateField.IN_USE)
                self.log.state("current in-use [%s]", "yes" if new_in_use else "no")

        if fragment.voltage is not None:
            scaled_voltage = scale_voltage(fragment.voltage)
            if scaled_voltage != state.reported_voltage:
                state.reported_voltage = scaled_voltage
                self.sink.notify(StateField.VOLTAGE, scaled_voltage)
                changed.add(StateField.VOLTAGE)
                self.log.payload("current voltage [%sV]", scaled_voltage)

        return changed

    # ------------------------------------------------------------------
    # Capabilities (monotonic)
    # ------------------------------------------------------------------

    def resolve_variant(self, variant: ProtocolVariant) -> bool:
        """Settle the protocol variant once; later calls are ignored."""
        if variant is ProtocolVariant.UNKNOWN or self._state.protocol_variant is not ProtocolVariant.UNKNOWN:
            return False
        self._state.protocol_variant = variant
        self.log.debug("protocol variant resolved: %s", variant)
        return True

    def mark_power_capable(self) -> bool:
        """Record that the device meters power; permanent for the session."""
        if self._state.power_capable:
            return False
        self._state.power_capable = True
        self.sink.notify(StateField.POWER_CAPABLE, True)
        return True

    # ------------------------------------------------------------------
    # Identity / connectivity
    # ------------------------------------------------------------------

    def capture_identity(
        self,
        *,
        mac_address: str | None,
        hardware_version: str | None,
        firmware_version: str | None,
    ) -> None:
        """Store the write-once metadata read on the first poll (no notification)."""
        state = self._state
        if mac_address is not None:
            state.mac_address = mac_address.upper()
        if hardware_version is not None:
            state.hardware_version = hardware_version
        if firmware_version is not None:
            state.firmware_version = firmware_version

    def update_ip_address(self, ip_address: str | None) -> bool:
        """Store the reported IP; return True if it differs from the cache."""
        if ip_address is None or ip_address == self._state.ip_address:
            return False
        self._state.ip_address = ip_address
        return True

    def set_online(self, online: bool) -> bool:
        """Write the connectivity flag; notify only when it flips."""
        if online == self._state.online:
            return False
        self._state.online = online
        self.sink.notify(StateField.ONLINE, online)
        self.log.info("device is now %s", "online" if online else "offline")
        return True

    def publish_device_info(self) -> None:
        """Push the current metadata snapshot to the host registry."""
        self.sink.notify(StateField.DEVICE_INFO, self._state.device_info())

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def accept_command(self, desired_on: bool) -> bool:
        """Record a command the device acknowledged."""
        if desired_on == self._state.commanded_on:
            return False
        self._state.commanded_on = desired_on
        self.sink.notify(StateField.ON, desired_on)
        self.sink.add_history_entry({"status": 1 if desired_on else 0})
        self.log.state("current state [%s]", "on" if desired_on else "off")
        return True

    def reassert_on_state(self) -> None:
        """Re-send the cached on/off value so the host UI drops a failed toggle."""
        self.sink.notify(StateField.ON, self._state.commanded_on)

    def record_power_outage(self) -> None:
        """Zero-power history entry so consumption totals stop during an outage."""
        self.sink.add_history_entry({"power": 0})
