"""Device synchronization components."""

from .command_queue import CommandQueue
from .poller import ConnectivityTracker, PollScheduler, PollState
from .power import PowerTelemetryProbe, ProbeResult
from .reconciler import UpdateReconciler
from .switch import MerossSwitch
from .translator import ToggleCommand, build_toggle_command

__all__ = [
    "CommandQueue",
    "ConnectivityTracker",
    "MerossSwitch",
    "PollScheduler",
    "PollState",
    "PowerTelemetryProbe",
    "ProbeResult",
    "ToggleCommand",
    "UpdateReconciler",
    "build_toggle_command",
]
