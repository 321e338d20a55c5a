"""Build on/off commands in the wire encoding a device speaks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from meross_sync.const import NS_CONTROL_TOGGLE, NS_CONTROL_TOGGLEX
from meross_sync.structs import ProtocolVariant

__all__ = ["ToggleCommand", "build_toggle_command"]


@dataclass(frozen=True, slots=True)
class ToggleCommand:
    """Namespace and payload ready for CommandTransport.send()."""

    namespace: str
    payload: dict[str, Any] = field(default_factory=dict)


def build_toggle_command(desired_on: bool, variant: ProtocolVariant) -> ToggleCommand:
    """Translate a desired on/off state into a device command.

    UNKNOWN (no poll has completed yet) uses the extended encoding; the first
    successful poll settles the variant for later commands.
    """
    onoff = 1 if desired_on else 0
    if variant is ProtocolVariant.LEGACY:
        return ToggleCommand(NS_CONTROL_TOGGLE, {"toggle": {"onoff": onoff}})
    return ToggleCommand(NS_CONTROL_TOGGLEX, {"togglex": {"onoff": onoff, "channel": 0}})
