"""Transport adapters for talking to Meross devices."""

from .http import LocalHTTPTransport
from .push import MQTTPushListener

__all__ = ["LocalHTTPTransport", "MQTTPushListener"]
