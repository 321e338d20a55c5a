"""Unit tests for UpdateReconciler state merging and change notification."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from meross_sync.devices.reconciler import scale_power, scale_voltage
from meross_sync.structs import DeviceState, ProtocolVariant, StateField


class TestScaling:
    def test_power_is_milliwatts_to_watts(self):
        assert scale_power(1200) == 1.2
        assert scale_power(1234) == 1.23

    def test_voltage_uses_two_decimals(self):
        assert scale_voltage(2300) == 23.0
        assert scale_voltage(23456) == 234.56


class TestApplyUpdate:
    def test_onoff_change_notifies_once_and_records_history(self, make_reconciler, sink):
        reconciler = make_reconciler()

        changed = reconciler.apply_update({"onoff": 1})

        assert changed == {StateField.ON}
        assert sink.notifications == [(StateField.ON, True)]
        assert sink.history == [{"status": 1}]
        assert reconciler.commanded_on is True

    def test_repeated_fragment_is_silent(self, make_reconciler, sink):
        reconciler = make_reconciler()
        _ = reconciler.apply_update({"onoff": 1, "power": 1200, "voltage": 2300})
        sink.clear()

        changed = reconciler.apply_update({"onoff": 1, "power": 1200, "voltage": 2300})

        assert changed == set()
        assert sink.notifications == []
        assert sink.history == []

    def test_sequence_keeps_last_distinct_values(self, make_reconciler, sink):
        reconciler = make_reconciler()
        fragments = [
            {"onoff": 1},
            {"onoff": 1, "power": 5000},
            {"power": 5000, "voltage": 2300},
            {"onoff": 0},
            {"onoff": 0, "voltage": 2310},
            {"voltage": 2310},
        ]

        for fragment in fragments:
            _ = reconciler.apply_update(fragment)

        state = reconciler.state
        assert state.commanded_on is False
        assert state.reported_power == 5.0
        assert state.reported_voltage == 23.1
        assert sink.values(StateField.ON) == [True, False]
        assert sink.values(StateField.POWER) == [5.0]
        assert sink.values(StateField.VOLTAGE) == [23.0, 23.1]

    def test_power_and_voltage_scaled_with_threshold(self, make_reconciler, sink):
        reconciler = make_reconciler(
            initial_state=DeviceState(commanded_on=True),
            in_use_power_threshold=5,
        )

        _ = reconciler.apply_update({"power": 1200, "voltage": 2300})

        assert sink.values(StateField.POWER) == [1.2]
        assert sink.values(StateField.VOLTAGE) == [23.0]
        # 1.2W is under the 5W threshold and in_use was already False
        assert sink.values(StateField.IN_USE) == []
        assert reconciler.state.in_use is False

    def test_in_use_when_on_and_above_threshold(self, make_reconciler, sink):
        reconciler = make_reconciler(initial_state=DeviceState(commanded_on=True), in_use_power_threshold=5)

        _ = reconciler.apply_update({"power": 60000})

        assert sink.values(StateField.POWER) == [60.0]
        assert sink.values(StateField.IN_USE) == [True]
        assert reconciler.state.in_use is True

    def test_in_use_false_when_off_regardless_of_power(self, make_reconciler, sink):
        reconciler = make_reconciler(in_use_power_threshold=0)

        _ = reconciler.apply_update({"onoff": 0, "power": 60000})

        assert reconciler.state.in_use is False
        assert sink.values(StateField.IN_USE) == []

    def test_onoff_applied_before_power(self, make_reconciler, sink):
        reconciler = make_reconciler()

        _ = reconciler.apply_update({"onoff": 1, "power": 60000})

        assert sink.fields() == [StateField.ON, StateField.POWER, StateField.IN_USE]
        assert reconciler.state.in_use is True

    def test_in_use_drops_with_power(self, make_reconciler, sink):
        reconciler = make_reconciler(initial_state=DeviceState(commanded_on=True))
        _ = reconciler.apply_update({"power": 60000})
        sink.clear()

        _ = reconciler.apply_update({"power": 0})

        assert sink.values(StateField.POWER) == [0.0]
        assert sink.values(StateField.IN_USE) == [False]

    def test_empty_fragment_changes_nothing(self, make_reconciler, sink):
        reconciler = make_reconciler()
        assert reconciler.apply_update({"channel": 0, "lmTime": 1700000000}) == set()
        assert sink.notifications == []

    def test_invalid_mapping_raises_validation_error(self, make_reconciler):
        reconciler = make_reconciler()
        with pytest.raises(ValidationError):
            _ = reconciler.apply_update({"onoff": "banana"})


class TestCapabilities:
    def test_variant_is_set_once(self, make_reconciler):
        reconciler = make_reconciler()

        assert reconciler.resolve_variant(ProtocolVariant.LEGACY) is True
        assert reconciler.resolve_variant(ProtocolVariant.EXTENDED) is False
        assert reconciler.protocol_variant is ProtocolVariant.LEGACY

    def test_unknown_does_not_resolve(self, make_reconciler):
        reconciler = make_reconciler()
        assert reconciler.resolve_variant(ProtocolVariant.UNKNOWN) is False
        assert reconciler.protocol_variant is ProtocolVariant.UNKNOWN

    def test_power_capable_notified_once(self, make_reconciler, sink):
        reconciler = make_reconciler()

        assert reconciler.mark_power_capable() is True
        assert reconciler.mark_power_capable() is False

        assert sink.values(StateField.POWER_CAPABLE) == [True]
        assert reconciler.power_capable is True


class TestIdentityAndConnectivity:
    def test_capture_identity_uppercases_mac(self, make_reconciler, sink):
        reconciler = make_reconciler()

        reconciler.capture_identity(mac_address="48:e1:e9:aa:bb:cc", hardware_version="2.0.0", firmware_version="2.1.4")

        state = reconciler.state
        assert state.mac_address == "48:E1:E9:AA:BB:CC"
        assert state.hardware_version == "2.0.0"
        assert state.firmware_version == "2.1.4"
        assert sink.notifications == []

    def test_update_ip_address_reports_change(self, make_reconciler):
        reconciler = make_reconciler()
        assert reconciler.update_ip_address("10.0.0.2") is True
        assert reconciler.update_ip_address("10.0.0.2") is False
        assert reconciler.update_ip_address(None) is False

    def test_set_online_notifies_on_flip_only(self, make_reconciler, sink):
        reconciler = make_reconciler()

        assert reconciler.set_online(True) is False
        assert reconciler.set_online(False) is True
        assert reconciler.set_online(False) is False

        assert sink.values(StateField.ONLINE) == [False]

    def test_publish_device_info_snapshot(self, make_reconciler, sink):
        reconciler = make_reconciler()
        _ = reconciler.update_ip_address("10.0.0.2")

        reconciler.publish_device_info()

        (info,) = sink.values(StateField.DEVICE_INFO)
        assert info.ip_address == "10.0.0.2"
        assert info.online is True

    def test_state_snapshot_is_a_copy(self, make_reconciler):
        reconciler = make_reconciler()
        snapshot = reconciler.state
        snapshot.commanded_on = True
        assert reconciler.commanded_on is False


class TestCommands:
    def test_accept_command_notifies_and_records_history(self, make_reconciler, sink):
        reconciler = make_reconciler()

        assert reconciler.accept_command(True) is True

        assert sink.values(StateField.ON) == [True]
        assert sink.history == [{"status": 1}]

    def test_accept_command_same_value_is_silent(self, make_reconciler, sink):
        reconciler = make_reconciler()
        assert reconciler.accept_command(False) is False
        assert sink.notifications == []

    def test_reassert_on_state_publishes_cached_value(self, make_reconciler, sink):
        reconciler = make_reconciler(initial_state=DeviceState(commanded_on=True))

        reconciler.reassert_on_state()

        assert sink.notifications == [(StateField.ON, True)]
        assert sink.history == []

    def test_record_power_outage(self, make_reconciler, sink):
        reconciler = make_reconciler()
        reconciler.record_power_outage()
        assert sink.history == [{"power": 0}]
        assert sink.notifications == []
