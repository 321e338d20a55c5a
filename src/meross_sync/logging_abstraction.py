"""Logging abstraction layer for meross-sync.

Provides dual-format logging (JSON + human-readable) with correlation tracking
and structured context.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

__all__ = [
    "DeviceLogger",
    "HumanReadableFormatter",
    "JSONFormatter",
    "MerossLogger",
    "get_device_logger",
    "get_logger",
]


class JSONFormatter(logging.Formatter):
    """Formatter that outputs structured JSON logs."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        from meross_sync.correlation import get_correlation_id

        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, Mapping) and extra_data:
            context_map = cast("Mapping[str, object]", extra_data)
            log_data["context"] = dict(context_map)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formatter that outputs human-readable logs with correlation IDs."""

    def __init__(self) -> None:
        # Format: timestamp level [module:line] correlation_id > message
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable text."""
        from meross_sync.correlation import get_correlation_id

        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"

        formatted = super().format(record)

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, Mapping) and extra_data:
            context_map = cast("Mapping[str, object]", extra_data)
            context_str = " | ".join(f"{k}={v}" for k, v in context_map.items())
            formatted = f"{formatted} | {context_str}"

        return formatted


class MerossLogger:
    """Logger wrapper providing dual-format output and structured context."""

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        """Initialize MerossLogger.

        Args:
            name: Logger name (typically module name)
            log_format: Output format - "json", "human", or "both"
            json_file: Path for JSON output file (None to disable file output)
            human_output: "stdout", "stderr", or file path for human-readable output

        """
        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)
        self.log_format: str = log_format

        from meross_sync.const import MEROSS_DEBUG

        self.logger.setLevel(logging.DEBUG if MEROSS_DEBUG else logging.INFO)

        # Don't add handlers if already configured (avoid duplicates)
        if not self.logger.handlers:
            self._configure_handlers(json_file, human_output)

    def _configure_handlers(
        self,
        json_file: str | Path | None,
        human_output: str | None,
    ) -> None:
        """Configure log handlers based on format settings."""
        handler_level = self.logger.level

        if self.log_format in ("json", "both") and json_file:
            try:
                json_path = Path(json_file)
                json_path.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(json_path, mode="a")
                json_handler.setFormatter(JSONFormatter())
                json_handler.setLevel(handler_level)
                self.logger.addHandler(json_handler)
            except OSError as e:
                print(f"Warning: Failed to create JSON log file {json_file}: {e}", file=sys.stderr)

        if self.log_format in ("human", "both"):
            normalized_output = human_output or "stdout"
            if normalized_output == "stdout":
                human_handler = logging.StreamHandler(sys.stdout)
            elif normalized_output == "stderr":
                human_handler = logging.StreamHandler(sys.stderr)
            else:
                try:
                    human_path = Path(normalized_output)
                    human_path.parent.mkdir(parents=True, exist_ok=True)
                    human_handler = logging.FileHandler(human_path, mode="a")
                except OSError as e:
                    print(f"Warning: Failed to create human log file {human_output}: {e}", file=sys.stderr)
                    human_handler = logging.StreamHandler(sys.stdout)

            human_handler.setFormatter(HumanReadableFormatter())
            human_handler.setLevel(handler_level)
            self.logger.addHandler(human_handler)

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Internal logging method with structured context support."""
        extra_payload: Mapping[str, object] | None = None
        if extra:
            extra_payload = {"extra_data": dict(extra)}

        self.logger.log(level, msg, *args, extra=extra_payload)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log debug message with optional structured context."""
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log info message with optional structured context."""
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log warning message with optional structured context."""
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log error message with optional structured context."""
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log exception with traceback and optional structured context."""
        log_extra = {"extra_data": dict(extra)} if extra else None
        self.logger.exception(msg, *args, extra=log_extra)

    def set_level(self, level: int) -> None:
        """Set logging level."""
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        """Get list of handlers."""
        return self.logger.handlers


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> MerossLogger:
    """Get or create a MerossLogger instance.

    Args:
        name: Logger name
        log_format: Override default format ("json", "human", or "both")
        json_file: Override default JSON output file
        human_output: Override default human-readable output

    """
    from meross_sync.const import (
        MEROSS_LOG_FORMAT,
        MEROSS_LOG_HUMAN_OUTPUT,
        MEROSS_LOG_JSON_FILE,
    )

    return MerossLogger(
        name=name,
        log_format=log_format or MEROSS_LOG_FORMAT,
        json_file=json_file or MEROSS_LOG_JSON_FILE,
        human_output=human_output or MEROSS_LOG_HUMAN_OUTPUT,
    )


class DeviceLogger:
    """Per-device view of a MerossLogger.

    Every line is prefixed with the device (and component) name and carries
    the device name and uuid in its structured context. Two channels follow
    the device's own options:

    - state(): state-change lines, emitted at info level when enable_logging is set
    - payload(): raw payloads and power/voltage lines, emitted at info level
      when enable_debug_logging is set
    """

    def __init__(
        self,
        logger: MerossLogger,
        device_name: str,
        uuid: str,
        *,
        component: str | None = None,
        enable_logging: bool = True,
        enable_debug_logging: bool = False,
    ) -> None:
        self.logger: MerossLogger = logger
        self.device_name: str = device_name
        self.uuid: str = uuid
        self.component: str | None = component
        self.enable_logging: bool = enable_logging
        self.enable_debug_logging: bool = enable_debug_logging
        self.prefix: str = f"[{device_name}] {component}:" if component else f"[{device_name}]"
        self.context: dict[str, object] = {"device": device_name, "uuid": uuid}

    def _context(self, extra: Mapping[str, object] | None) -> dict[str, object]:
        return {**self.context, **extra} if extra else dict(self.context)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self.logger.debug("%s " + msg, self.prefix, *args, extra=self._context(extra))

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self.logger.info("%s " + msg, self.prefix, *args, extra=self._context(extra))

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self.logger.warning("%s " + msg, self.prefix, *args, extra=self._context(extra))

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self.logger.error("%s " + msg, self.prefix, *args, extra=self._context(extra))

    def state(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """State-change line, suppressed when the device's logging is disabled."""
        if self.enable_logging:
            self.info(msg, *args, extra=extra)

    def payload(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Verbose device I/O line, only emitted with the device's debug logging on."""
        if self.enable_debug_logging:
            self.info(msg, *args, extra=extra)


def get_device_logger(
    name: str,
    device_name: str,
    uuid: str,
    *,
    component: str | None = None,
    enable_logging: bool = True,
    enable_debug_logging: bool = False,
) -> DeviceLogger:
    """Get a DeviceLogger on top of the module logger `name`."""
    return DeviceLogger(
        get_logger(name),
        device_name,
        uuid,
        component=component,
        enable_logging=enable_logging,
        enable_debug_logging=enable_debug_logging,
    )
