"""Synchronization core for a single Meross on/off appliance."""

__version__ = "0.4.0"
