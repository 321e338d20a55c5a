from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections.abc import Mapping, Sequence
from functools import partial
from pathlib import Path

import uvloop

from meross_sync.config import DeviceConfig, SyncConfig, load_config
from meross_sync.const import MEROSS_CONFIG_FILE_PATH, MEROSS_DEBUG, MEROSS_LOG_NAME, MEROSS_VERSION
from meross_sync.correlation import correlation_context, ensure_correlation_id
from meross_sync.devices import MerossSwitch
from meross_sync.exceptions import ConfigError
from meross_sync.logging_abstraction import get_logger
from meross_sync.structs import ConnectionKind, DeviceInfo, StateField
from meross_sync.transport import LocalHTTPTransport, MQTTPushListener

logger = get_logger(__name__)


class LoggingNotificationSink:
    """NotificationSink that writes every state change to the log."""

    def __init__(self, device_name: str) -> None:
        self.lp: str = f"[{device_name}] sink:"
        self.device_name: str = device_name

    def notify(self, field: StateField, value: object) -> None:
        if isinstance(value, DeviceInfo):
            value = value.model_dump()
        logger.info("%s %s -> %s", self.lp, field, value, extra={"device": self.device_name, "field": str(field)})

    def add_history_entry(self, entry: Mapping[str, int | float]) -> None:
        logger.debug("%s history %s", self.lp, dict(entry), extra={"device": self.device_name})


def _signal_handler(signum: signal.Signals, stop_event: asyncio.Event) -> None:
    logger.info("Meross Sync: Intercepted signal: %s (%s)", signum.name, int(signum))
    stop_event.set()


def _enable_debug_logging() -> None:
    for name in list(logging.root.manager.loggerDict):
        if name == MEROSS_LOG_NAME or name.startswith(f"{MEROSS_LOG_NAME}."):
            std_logger = logging.getLogger(name)
            std_logger.setLevel(logging.DEBUG)
            for handler in std_logger.handlers:
                handler.setLevel(logging.DEBUG)


def select_devices(config: SyncConfig, names: Sequence[str] | None) -> list[DeviceConfig]:
    """Devices to run: the named ones, or every configured device."""
    if not names:
        return list(config.devices)
    return [config.device(name) for name in names]


async def run(config: SyncConfig, devices: Sequence[DeviceConfig]) -> None:
    """Run the sync core for `devices` until SIGINT/SIGTERM."""
    _ = ensure_correlation_id()
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, partial(_signal_handler, sig, stop_event))
    logger.debug("Signal handlers configured for SIGINT & SIGTERM")

    transport = LocalHTTPTransport()
    listener = MQTTPushListener(config.push) if config.push else None
    switches: list[MerossSwitch] = []
    for device in devices:
        if device.connection is ConnectionKind.CLOUD and not device.host:
            logger.warning(
                "No local host for cloud device, polls will fail until one is configured",
                extra={"device": device.name},
            )
        switch = MerossSwitch.from_config(device, config, transport, LoggingNotificationSink(device.name))
        if listener is not None:
            _ = listener.register(device.uuid, switch.receive_update)
        switches.append(switch)

    logger.info(" Starting device sync...", extra={"device_count": len(switches)})
    for switch in switches:
        switch.start()
    if listener is not None:
        listener.start_task = asyncio.create_task(listener.start(), name="mqtt_push_listener")

    try:
        _ = await stop_event.wait()
    finally:
        logger.info(" Shutting down Meross Sync...")
        if listener is not None:
            await listener.stop()
        for switch in switches:
            await switch.stop()
        await transport.close()


def parse_cli(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Meross Sync")
    _ = parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path(MEROSS_CONFIG_FILE_PATH),
        help="Path to the YAML configuration file",
    )
    _ = parser.add_argument(
        "-d",
        "--device",
        action="append",
        dest="devices",
        help="Only run this device (name or uuid); may be repeated",
    )
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--version", action="version", version=f"%(prog)s {MEROSS_VERSION}")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for Meross Sync."""
    with correlation_context():
        logger.info("Starting Meross Sync", extra={"version": MEROSS_VERSION})
        args = parse_cli(argv)

        if args.debug or MEROSS_DEBUG:
            _enable_debug_logging()
            logger.info("Debug logging enabled")

        config_file: Path = args.config.expanduser().resolve()
        try:
            config = load_config(config_file)
            devices = select_devices(config, args.devices)
        except ConfigError as e:
            logger.error(" Configuration error", extra={"config_path": str(config_file), "error": str(e)})
            return 1

        if not devices:
            logger.error(" No devices to run", extra={"config_path": str(config_file)})
            return 1

        try:
            uvloop.run(run(config, devices))
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logger.exception("Meross Sync stopped unexpectedly", extra={"error": str(e)})
            return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
