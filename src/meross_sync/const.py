import os

from meross_sync import __version__

__all__ = [
    "CONNECTIVITY_FAILURE_SIGNATURES",
    "DEFAULT_CLOUD_REFRESH_RATE",
    "DEFAULT_IN_USE_POWER_THRESHOLD",
    "DEFAULT_REFRESH_RATE",
    "MEROSS_CONFIG_FILE_PATH",
    "MEROSS_DEBUG",
    "MEROSS_HTTP_TIMEOUT",
    "MEROSS_LOG_FORMAT",
    "MEROSS_LOG_HUMAN_OUTPUT",
    "MEROSS_LOG_JSON_FILE",
    "MEROSS_LOG_NAME",
    "MEROSS_MQTT_RECONNECT_DELAY",
    "MEROSS_PERF_THRESHOLD_MS",
    "MEROSS_PERF_TRACKING",
    "MEROSS_VERSION",
    "NS_CONTROL_ELECTRICITY",
    "NS_CONTROL_TOGGLE",
    "NS_CONTROL_TOGGLEX",
    "NS_SYSTEM_ALL",
    "POWER_DIVISOR",
    "POWER_POLL_INTERVAL",
    "QUEUE_INTERVAL",
    "QUEUE_TIMEOUT",
    "REVERT_DELAY",
    "VOLTAGE_DIVISOR",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
MEROSS_LOG_NAME: str = "meross_sync"
MEROSS_VERSION: str = __version__

MEROSS_DEBUG = os.environ.get("MEROSS_DEBUG", "0").casefold() in YES_ANSWER
MEROSS_CONFIG_FILE_PATH: str = os.environ.get("MEROSS_CONFIG_FILE_PATH", "/config/meross_sync.yaml")

# Device namespaces
NS_SYSTEM_ALL = "Appliance.System.All"
NS_CONTROL_TOGGLE = "Appliance.Control.Toggle"
NS_CONTROL_TOGGLEX = "Appliance.Control.ToggleX"
NS_CONTROL_ELECTRICITY = "Appliance.Control.Electricity"

# Outbound queue: one task at a time, starts spaced by QUEUE_INTERVAL seconds
QUEUE_INTERVAL: float = 0.25
QUEUE_TIMEOUT: float = 10.0

# Poll intervals (seconds)
DEFAULT_REFRESH_RATE: int = 30
DEFAULT_CLOUD_REFRESH_RATE: int = 300
POWER_POLL_INTERVAL: float = 60.0

# Seconds to wait before pushing the cached on/off value back after a failed command
REVERT_DELAY: float = 2.0

# raw milliwatts -> watts, raw voltage -> volts
POWER_DIVISOR: int = 1000
VOLTAGE_DIVISOR: int = 100
DEFAULT_IN_USE_POWER_THRESHOLD: float = 0.0

# Error text fragments that mean the device cannot be reached
CONNECTIVITY_FAILURE_SIGNATURES: tuple[str, ...] = ("EHOSTUNREACH", "timed out")

_http_timeout = os.environ.get("MEROSS_HTTP_TIMEOUT", "9")
try:
    _http_timeout_value: float = float(_http_timeout) if _http_timeout else 9.0
except (ValueError, TypeError):
    _http_timeout_value = 9.0
MEROSS_HTTP_TIMEOUT: float = _http_timeout_value
MEROSS_MQTT_RECONNECT_DELAY: int = int(os.environ.get("MEROSS_MQTT_RECONNECT_DELAY", "10"))

# Logging Configuration
MEROSS_LOG_FORMAT: str = os.environ.get("MEROSS_LOG_FORMAT", "human")  # "json", "human", or "both"
MEROSS_LOG_JSON_FILE: str = os.environ.get("MEROSS_LOG_JSON_FILE", "/var/log/meross_sync.json")
MEROSS_LOG_HUMAN_OUTPUT: str = os.environ.get("MEROSS_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

# Performance Instrumentation
MEROSS_PERF_TRACKING: bool = os.environ.get("MEROSS_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("MEROSS_PERF_THRESHOLD_MS", "1000")
MEROSS_PERF_THRESHOLD_MS: int = int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 1000
