"""Unit tests for on/off command encoding."""

import pytest

from meross_sync.const import NS_CONTROL_TOGGLE, NS_CONTROL_TOGGLEX
from meross_sync.devices.translator import build_toggle_command
from meross_sync.structs import ProtocolVariant


class TestBuildToggleCommand:
    def test_legacy_on(self):
        command = build_toggle_command(True, ProtocolVariant.LEGACY)
        assert command.namespace == NS_CONTROL_TOGGLE
        assert command.payload == {"toggle": {"onoff": 1}}

    def test_extended_off(self):
        command = build_toggle_command(False, ProtocolVariant.EXTENDED)
        assert command.namespace == NS_CONTROL_TOGGLEX
        assert command.payload == {"togglex": {"onoff": 0, "channel": 0}}

    @pytest.mark.parametrize("desired_on", [True, False])
    def test_unknown_variant_uses_extended_encoding(self, desired_on: bool):
        command = build_toggle_command(desired_on, ProtocolVariant.UNKNOWN)
        assert command.namespace == NS_CONTROL_TOGGLEX
        assert command.payload["togglex"]["onoff"] == int(desired_on)
        assert command.payload["togglex"]["channel"] == 0
