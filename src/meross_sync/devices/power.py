"""Power metering detection and its own polling loop."""

from __future__ import annotations

import asyncio
import contextlib
from enum import StrEnum

from pydantic import ValidationError

from meross_sync.const import NS_CONTROL_ELECTRICITY, POWER_POLL_INTERVAL
from meross_sync.logging_abstraction import DeviceLogger, get_device_logger
from meross_sync.structs import CommandTransport, DeviceIdentity, ElectricityPayload, TelemetryFragment

from .command_queue import CommandQueue
from .poller import error_text
from .reconciler import UpdateReconciler

__all__ = ["PowerTelemetryProbe", "ProbeResult"]


class ProbeResult(StrEnum):
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"
    ERROR = "error"


class PowerTelemetryProbe:
    """Detect power metering once, then read power/voltage every `interval` seconds.

    The loop never touches the online flag; a failed reading only records a
    zero-power history entry.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        queue: CommandQueue,
        transport: CommandTransport,
        reconciler: UpdateReconciler,
        *,
        interval: float = POWER_POLL_INTERVAL,
        enable_debug_logging: bool = False,
    ) -> None:
        self.identity: DeviceIdentity = identity
        self.queue: CommandQueue = queue
        self.transport: CommandTransport = transport
        self.reconciler: UpdateReconciler = reconciler
        self.interval: float = interval
        self.result: ProbeResult | None = None
        self.lp: str = f"{identity.lp} power:"
        self.log: DeviceLogger = get_device_logger(
            __name__,
            identity.name,
            identity.uuid,
            component="power",
            enable_debug_logging=enable_debug_logging,
        )
        self._setup_task: asyncio.Task[ProbeResult] | None = None
        self._loop_task: asyncio.Task[None] | None = None

    async def _read_electricity(self) -> TelemetryFragment | None:
        """Queue task: one Electricity request; None when the reply has no readings."""
        response = await self.transport.send(self.identity, NS_CONTROL_ELECTRICITY, {})
        self.log.payload("incoming poll: %s", response.payload)
        try:
            return ElectricityPayload.model_validate(response.payload).electricity
        except ValidationError as exc:
            self.log.debug("unusable electricity payload: %s", exc)
            return None

    async def probe(self) -> ProbeResult:
        """Ask the device once whether it reports power readings."""
        try:
            fragment = await self.queue.enqueue(self._read_electricity, label=f"{NS_CONTROL_ELECTRICITY} probe")
        except Exception as exc:
            reason = error_text(exc)
            result = ProbeResult.ERROR
        else:
            reason = "no data on initial run"
            result = ProbeResult.UNSUPPORTED if fragment is None else ProbeResult.SUPPORTED

        if result is not ProbeResult.SUPPORTED:
            self.log.payload("disabling power readings interval as %s", reason)
        return result

    async def setup(self) -> ProbeResult:
        """Probe and, when supported, mark the capability and start the loop."""
        self.result = await self.probe()
        if self.result is ProbeResult.SUPPORTED:
            _ = self.reconciler.mark_power_capable()
            self._loop_task = asyncio.create_task(self._run(), name=f"{self.lp}loop")
        return self.result

    async def request_power_readings(self) -> bool:
        """Read power once and reconcile it; return False on failure."""
        try:
            fragment = await self.queue.enqueue(self._read_electricity, label=NS_CONTROL_ELECTRICITY)
        except Exception as exc:
            if self.log.enable_debug_logging:
                self.log.warning("failed to request power as %s", error_text(exc))
            # don't increase the measured total consumption while the device is unreachable
            self.reconciler.record_power_outage()
            return False
        if fragment is not None:
            _ = self.reconciler.apply_update(fragment)
        return True

    async def _run(self) -> None:
        while True:
            _ = await self.request_power_readings()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._setup_task is None:
            self._setup_task = asyncio.create_task(self.setup(), name=f"{self.lp}setup")

    async def stop(self) -> None:
        for task in (self._setup_task, self._loop_task):
            if task is not None and not task.done():
                _ = task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._setup_task = None
        self._loop_task = None
