"""Single-channel Meross switch: wires the queue, reconciler and polling loops together."""

from __future__ import annotations

import asyncio
import contextlib
import json
from functools import partial
from typing import TYPE_CHECKING

from meross_sync.const import (
    DEFAULT_CLOUD_REFRESH_RATE,
    DEFAULT_IN_USE_POWER_THRESHOLD,
    DEFAULT_REFRESH_RATE,
    POWER_POLL_INTERVAL,
    QUEUE_INTERVAL,
    QUEUE_TIMEOUT,
    REVERT_DELAY,
)
from meross_sync.exceptions import CommunicationFailure, QueueClosedError
from meross_sync.logging_abstraction import DeviceLogger, get_device_logger
from meross_sync.structs import (
    CommandTransport,
    ConnectionKind,
    DeviceIdentity,
    DeviceState,
    NotificationSink,
    PushMessage,
)

from .command_queue import CommandQueue
from .poller import ConnectivityTracker, PollScheduler, error_text
from .power import PowerTelemetryProbe
from .reconciler import UpdateReconciler
from .translator import build_toggle_command

if TYPE_CHECKING:
    from meross_sync.config import DeviceConfig, SyncConfig

__all__ = ["MerossSwitch"]


class MerossSwitch:
    """Synchronization lifecycle of one on/off device.

    All outbound requests go through `self.queue`. Push messages go straight
    to the reconciler via receive_update().
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        transport: CommandTransport,
        sink: NotificationSink,
        *,
        poll_interval: float | None = None,
        in_use_power_threshold: float = DEFAULT_IN_USE_POWER_THRESHOLD,
        enable_logging: bool = True,
        enable_debug_logging: bool = False,
        initial_state: DeviceState | None = None,
        queue_interval: float = QUEUE_INTERVAL,
        queue_timeout: float = QUEUE_TIMEOUT,
        power_interval: float = POWER_POLL_INTERVAL,
        revert_delay: float = REVERT_DELAY,
    ) -> None:
        if poll_interval is None:
            poll_interval = (
                DEFAULT_REFRESH_RATE if identity.connection is ConnectionKind.LOCAL else DEFAULT_CLOUD_REFRESH_RATE
            )
        self.identity: DeviceIdentity = identity
        self.transport: CommandTransport = transport
        self.revert_delay: float = revert_delay
        self.log: DeviceLogger = get_device_logger(
            __name__,
            identity.name,
            identity.uuid,
            component="switch",
            enable_logging=enable_logging,
            enable_debug_logging=enable_debug_logging,
        )

        self.queue: CommandQueue = CommandQueue(identity.name, interval=queue_interval, timeout=queue_timeout)
        self.reconciler: UpdateReconciler = UpdateReconciler(
            identity,
            sink,
            in_use_power_threshold=in_use_power_threshold,
            enable_logging=enable_logging,
            enable_debug_logging=enable_debug_logging,
            initial_state=initial_state,
        )
        self.tracker: ConnectivityTracker = ConnectivityTracker(self.reconciler)
        self.poller: PollScheduler = PollScheduler(
            identity,
            self.queue,
            transport,
            self.reconciler,
            self.tracker,
            interval=poll_interval,
            enable_debug_logging=enable_debug_logging,
        )
        self.power: PowerTelemetryProbe = PowerTelemetryProbe(
            identity,
            self.queue,
            transport,
            self.reconciler,
            interval=power_interval,
            enable_debug_logging=enable_debug_logging,
        )

        self._command_generation: int = 0
        self._revert_tasks: set[asyncio.Task[None]] = set()

        normal_logging = "standard" if enable_logging else "disable"
        opts = json.dumps(
            {
                "connection": str(identity.connection),
                "inUsePowerThreshold": in_use_power_threshold,
                "logging": "debug" if enable_debug_logging else normal_logging,
                "pollInterval": poll_interval,
                "showAs": "switch",
            },
        )
        self.log.info("initialising with options %s", opts)

    @classmethod
    def from_config(
        cls,
        device: DeviceConfig,
        config: SyncConfig,
        transport: CommandTransport,
        sink: NotificationSink,
    ) -> MerossSwitch:
        """Build a switch from a validated configuration entry."""
        identity = device.identity()
        return cls(
            identity,
            transport,
            sink,
            poll_interval=config.poll_interval_for(identity.connection),
            in_use_power_threshold=device.options.in_use_power_threshold,
            enable_logging=device.options.enable_logging,
            enable_debug_logging=device.options.enable_debug_logging,
            initial_state=DeviceState(online=device.online),
        )

    @property
    def state(self) -> DeviceState:
        return self.reconciler.state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Kick off the startup poll, the poll loop and the power probe."""
        self.poller.start()
        self.power.start()

    async def stop(self) -> None:
        """Cancel timers, pending reverts and queued work."""
        await self.poller.stop()
        await self.power.stop()
        for task in list(self._revert_tasks):
            _ = task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.queue.close()
        self.log.debug("stopped")

    # ------------------------------------------------------------------
    # Command acceptance
    # ------------------------------------------------------------------

    async def set_desired_state(self, desired_on: bool) -> None:
        """Ask the device to switch on or off.

        Raises:
            CommunicationFailure: the command failed or timed out. The cached
                value is re-published after a grace delay unless another
                request arrives first. Raised without a re-publish once the
                switch has been stopped.

        """
        self._command_generation += 1
        generation = self._command_generation
        if desired_on == self.reconciler.commanded_on:
            return
        if self.queue.closed:
            self.log.warning("switch is stopped, dropping update")
            raise CommunicationFailure(self.identity.name)

        try:
            await self.queue.enqueue(partial(self._send_toggle, desired_on), label="set_desired_state")
        except QueueClosedError as exc:
            self.log.warning("switch stopped before the update was sent")
            raise CommunicationFailure(self.identity.name) from exc
        except Exception as exc:
            self.log.warning("sending update failed: %s", error_text(exc))
            self._schedule_revert(generation)
            raise CommunicationFailure(self.identity.name) from exc

    async def _send_toggle(self, desired_on: bool) -> None:
        # the cache may have caught up while this task was waiting
        if desired_on == self.reconciler.commanded_on:
            return
        command = build_toggle_command(desired_on, self.reconciler.protocol_variant)
        _ = await self.transport.send(self.identity, command.namespace, command.payload)
        _ = self.reconciler.accept_command(desired_on)

    def _schedule_revert(self, generation: int) -> None:
        task = asyncio.create_task(self._revert_after_delay(generation))
        self._revert_tasks.add(task)
        task.add_done_callback(self._revert_tasks.discard)

    async def _revert_after_delay(self, generation: int) -> None:
        await asyncio.sleep(self.revert_delay)
        if generation != self._command_generation:
            self.log.debug("newer request accepted, skipping revert")
            return
        self.reconciler.reassert_on_state()

    # ------------------------------------------------------------------
    # Push telemetry
    # ------------------------------------------------------------------

    def receive_update(self, message: object) -> None:
        """Merge a push-transport message. Never raises."""
        try:
            self.log.payload("incoming push: %s", message)
            push = PushMessage.model_validate(message)
            if push.payload is None:
                return
            channel = push.payload.channel_zero()
            if channel is None:
                return
            _, fragment = channel
            _ = self.reconciler.apply_update(fragment)
        except Exception as exc:
            self.log.warning("failed to process push update: %s", exc)
