"""Periodic full-state polling and the online flag derived from it."""

from __future__ import annotations

import asyncio
from enum import StrEnum
from functools import partial

from meross_sync.const import CONNECTIVITY_FAILURE_SIGNATURES, NS_SYSTEM_ALL
from meross_sync.exceptions import CommandTimeoutError, MalformedResponseError
from meross_sync.logging_abstraction import DeviceLogger, get_device_logger
from meross_sync.structs import CommandTransport, DeviceIdentity, SystemAllPayload

from .command_queue import CommandQueue
from .reconciler import UpdateReconciler

__all__ = ["ConnectivityTracker", "FailureKind", "PollScheduler", "PollState", "error_text"]


class PollState(StrEnum):
    IDLE = "idle"
    POLLING = "polling"


class FailureKind(StrEnum):
    TIMEOUT = "timeout"
    OTHER = "other"


def error_text(exc: BaseException) -> str:
    """Short description of a failure used for logging and offline classification."""
    if isinstance(exc, (CommandTimeoutError, TimeoutError)):
        return str(exc) or "request timed out"
    return str(exc) or type(exc).__name__


class ConnectivityTracker:
    """Derive the device's online flag from poll outcomes.

    A failed poll only marks the device offline when the error looks like a
    connectivity failure and the device was online (or this was the startup
    poll), so one transient error after a long outage does not re-notify.
    """

    def __init__(
        self,
        reconciler: UpdateReconciler,
        signatures: tuple[str, ...] = CONNECTIVITY_FAILURE_SIGNATURES,
    ) -> None:
        self.reconciler: UpdateReconciler = reconciler
        self.signatures: tuple[str, ...] = signatures

    @property
    def online(self) -> bool:
        return self.reconciler.online

    @staticmethod
    def classify(exc: BaseException) -> FailureKind:
        if isinstance(exc, (CommandTimeoutError, TimeoutError)):
            return FailureKind.TIMEOUT
        return FailureKind.OTHER

    def is_connectivity_failure(self, text: str) -> bool:
        return any(signature in text for signature in self.signatures)

    def record_reported_status(self, online: bool) -> bool:
        """Apply the online status the device reported; True if it flipped."""
        return self.reconciler.set_online(online)

    def record_poll_failure(self, exc: BaseException, *, first_run: bool) -> bool:
        """Apply a failed poll; return True if the device went offline."""
        if not (self.online or first_run):
            return False
        if not self.is_connectivity_failure(error_text(exc)):
            return False
        changed = self.reconciler.set_online(False)
        if changed or first_run:
            self.reconciler.publish_device_info()
        return changed


class PollScheduler:
    """Issue Appliance.System.All polls through the command queue on a fixed interval."""

    def __init__(
        self,
        identity: DeviceIdentity,
        queue: CommandQueue,
        transport: CommandTransport,
        reconciler: UpdateReconciler,
        tracker: ConnectivityTracker,
        *,
        interval: float,
        enable_debug_logging: bool = False,
    ) -> None:
        self.identity: DeviceIdentity = identity
        self.queue: CommandQueue = queue
        self.transport: CommandTransport = transport
        self.reconciler: UpdateReconciler = reconciler
        self.tracker: ConnectivityTracker = tracker
        self.interval: float = interval
        self.state: PollState = PollState.IDLE
        self.lp: str = f"{identity.lp} poller:"
        self.log: DeviceLogger = get_device_logger(
            __name__,
            identity.name,
            identity.uuid,
            component="poller",
            enable_debug_logging=enable_debug_logging,
        )
        self._contacted: bool = False
        self._task: asyncio.Task[None] | None = None

    async def request_update(self, first_run: bool = False) -> bool:
        """Poll once unless another queue consumer is already in progress.

        The startup poll (first_run) is always submitted.

        Returns True when a poll ran and succeeded. Failures are logged and fed
        to the connectivity tracker, never raised; the next tick is the retry.
        """
        if not first_run and (self.state is PollState.POLLING or self.queue.busy):
            self.log.debug("update already in progress, skipping poll")
            return False

        self.state = PollState.POLLING
        try:
            await self.queue.enqueue(partial(self._poll, first_run), label=NS_SYSTEM_ALL)
        except Exception as exc:
            self._handle_failure(exc, first_run)
            return False
        finally:
            self.state = PollState.IDLE
        return True

    def _handle_failure(self, exc: BaseException, first_run: bool) -> None:
        kind = ConnectivityTracker.classify(exc)
        text = error_text(exc)
        if self.log.enable_debug_logging:
            self.log.warning("request failed (%s): %s", kind, text)
        else:
            self.log.debug("request failed (%s): %s", kind, text)
        _ = self.tracker.record_poll_failure(exc, first_run=first_run)

    async def _poll(self, first_run: bool) -> None:
        response = await self.transport.send(self.identity, NS_SYSTEM_ALL, {})
        self.log.payload("incoming poll: %s", response.payload)

        system_all = SystemAllPayload.model_validate(response.payload).system_all
        if system_all is None:
            raise MalformedResponseError(NS_SYSTEM_ALL, "payload.all")

        if system_all.digest is not None and (channel := system_all.digest.channel_zero()) is not None:
            variant, fragment = channel
            _ = self.reconciler.resolve_variant(variant)
            _ = self.reconciler.apply_update(fragment)

        # identity is captured on the first successful poll, even if the startup poll failed
        first_contact = first_run or not self._contacted
        self._contacted = True

        needs_update = False
        system = system_all.system
        if system is not None:
            if first_contact:
                self.reconciler.capture_identity(
                    mac_address=system.hardware.mac_address if system.hardware else None,
                    hardware_version=system.hardware.version if system.hardware else None,
                    firmware_version=system.firmware.version if system.firmware else None,
                )
            if system.firmware is not None:
                needs_update |= self.reconciler.update_ip_address(system.firmware.inner_ip)
            if system.online is not None and system.online.status is not None:
                needs_update |= self.tracker.record_reported_status(system.online.status == 1)

        if needs_update or first_contact:
            self.reconciler.publish_device_info()

    async def _run(self) -> None:
        _ = await self.request_update(first_run=True)
        while True:
            await asyncio.sleep(self.interval)
            _ = await self.request_update()

    def start(self) -> None:
        """Poll immediately, then every `interval` seconds."""
        if self._task is None or self._task.done():
            self.log.debug("starting poll loop every %ss", self.interval)
            self._task = asyncio.create_task(self._run(), name=f"{self.lp}loop")

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            _ = self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                self.log.debug("poll loop cancelled")
        self._task = None
