"""YAML device configuration."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from meross_sync.const import (
    DEFAULT_CLOUD_REFRESH_RATE,
    DEFAULT_IN_USE_POWER_THRESHOLD,
    DEFAULT_REFRESH_RATE,
)
from meross_sync.exceptions import ConfigError
from meross_sync.logging_abstraction import get_logger
from meross_sync.structs import ConnectionKind, DeviceIdentity

__all__ = ["DeviceConfig", "DeviceOptions", "PushConfig", "SyncConfig", "load_config"]

logger = get_logger(__name__)


class DeviceOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    in_use_power_threshold: float = Field(default=DEFAULT_IN_USE_POWER_THRESHOLD, ge=0)
    enable_logging: bool = True
    enable_debug_logging: bool = False


class DeviceConfig(BaseModel):
    """One device entry under `devices:`."""

    model_config = ConfigDict(extra="ignore")

    name: str
    uuid: str
    host: str | None = None
    key: str = ""
    connection: ConnectionKind = ConnectionKind.LOCAL
    online: bool = True
    options: DeviceOptions = Field(default_factory=DeviceOptions)

    def identity(self) -> DeviceIdentity:
        return DeviceIdentity(
            name=self.name,
            uuid=self.uuid,
            host=self.host,
            key=self.key,
            connection=self.connection,
        )


class PushConfig(BaseModel):
    """MQTT broker the devices publish their state changes to."""

    model_config = ConfigDict(extra="ignore")

    host: str
    port: int = 1883
    username: str | None = None
    password: str | None = None
    topic_template: str = "/appliance/{uuid}/publish"

    def topic_for(self, uuid: str) -> str:
        return self.topic_template.format(uuid=uuid)


class SyncConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    refresh_rate: float = Field(default=DEFAULT_REFRESH_RATE, gt=0)
    cloud_refresh_rate: float = Field(default=DEFAULT_CLOUD_REFRESH_RATE, gt=0)
    push: PushConfig | None = None
    devices: list[DeviceConfig] = Field(default_factory=list)

    def poll_interval_for(self, connection: ConnectionKind) -> float:
        """Poll interval in seconds for a device reached over `connection`."""
        if connection is ConnectionKind.CLOUD:
            return self.cloud_refresh_rate
        return self.refresh_rate

    def device(self, name: str) -> DeviceConfig:
        """Look up a device entry by name or uuid."""
        for device in self.devices:
            if name in (device.name, device.uuid):
                return device
        msg = f"No device named '{name}' in configuration"
        raise ConfigError(msg)


def load_config(config_file: Path) -> SyncConfig:
    """Parse and validate a YAML configuration file.

    Args:
        config_file: Path to the YAML configuration file

    Returns:
        The validated configuration

    Raises:
        ConfigError: If the file cannot be read, is not valid YAML, or fails validation

    """
    logger.debug("Parsing config file: %s", config_file)
    try:
        with config_file.open() as f:
            config_data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.exception("Failed to parse config file: %s", config_file)
        msg = f"Failed to read config file {config_file}: {e}"
        raise ConfigError(msg) from e

    if config_data is None:
        config_data = {}
    if not isinstance(config_data, dict):
        msg = f"Config file {config_file} must contain a mapping at the top level"
        raise ConfigError(msg)

    try:
        config = SyncConfig.model_validate(config_data)
    except ValidationError as e:
        msg = f"Invalid config file {config_file}: {e}"
        raise ConfigError(msg) from e

    if not config.devices:
        logger.warning("No devices found in config file")
    logger.info("Parsed config: %d devices", len(config.devices))
    return config
