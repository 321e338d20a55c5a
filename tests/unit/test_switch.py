"""Unit tests for MerossSwitch command acceptance and push handling."""

from __future__ import annotations

import asyncio

import pytest
from fakes import system_all_payload

from meross_sync.const import NS_CONTROL_ELECTRICITY, NS_CONTROL_TOGGLE, NS_CONTROL_TOGGLEX, NS_SYSTEM_ALL
from meross_sync.devices import MerossSwitch
from meross_sync.exceptions import CommandTimeoutError, CommunicationFailure, QueueClosedError, TransportError
from meross_sync.structs import ConnectionKind, DeviceIdentity, DeviceState, ProtocolVariant, StateField

REVERT_DELAY = 0.05


@pytest.fixture
def make_switch(identity, transport, sink):
    switches: list[MerossSwitch] = []

    def _make(**kwargs):
        kwargs.setdefault("queue_interval", 0)
        kwargs.setdefault("queue_timeout", 1)
        kwargs.setdefault("revert_delay", REVERT_DELAY)
        switch = MerossSwitch(identity, transport, sink, **kwargs)
        switches.append(switch)
        return switch

    return _make


def toggle_calls(transport):
    return [call for call in transport.send.call_args_list if call.args[1] in (NS_CONTROL_TOGGLE, NS_CONTROL_TOGGLEX)]


class TestSetDesiredState:
    @pytest.mark.asyncio
    async def test_same_state_short_circuits_without_io(self, make_switch, transport, sink):
        switch = make_switch()

        await switch.set_desired_state(False)

        transport.send.assert_not_called()
        assert sink.notifications == []

    @pytest.mark.asyncio
    async def test_on_when_already_on_issues_no_transport_calls(self, make_switch, transport):
        switch = make_switch(initial_state=DeviceState(commanded_on=True))

        await switch.set_desired_state(True)

        assert transport.send.call_count == 0

    @pytest.mark.asyncio
    async def test_success_sends_togglex_and_notifies(self, make_switch, transport, sink):
        switch = make_switch()

        await switch.set_desired_state(True)

        (call,) = toggle_calls(transport)
        assert call.args[1] == NS_CONTROL_TOGGLEX
        assert call.args[2] == {"togglex": {"onoff": 1, "channel": 0}}
        assert switch.state.commanded_on is True
        assert sink.values(StateField.ON) == [True]
        assert sink.history == [{"status": 1}]

    @pytest.mark.asyncio
    async def test_legacy_device_gets_toggle(self, make_switch, transport):
        switch = make_switch(initial_state=DeviceState(protocol_variant=ProtocolVariant.LEGACY))

        await switch.set_desired_state(True)

        (call,) = toggle_calls(transport)
        assert call.args[1] == NS_CONTROL_TOGGLE
        assert call.args[2] == {"toggle": {"onoff": 1}}

    @pytest.mark.asyncio
    async def test_failure_raises_and_reverts_after_delay(self, make_switch, transport, sink):
        transport.reply(NS_CONTROL_TOGGLEX, TransportError("EHOSTUNREACH 192.168.1.50"))
        switch = make_switch()

        with pytest.raises(CommunicationFailure) as exc_info:
            await switch.set_desired_state(True)

        assert isinstance(exc_info.value.__cause__, TransportError)
        assert switch.state.commanded_on is False
        assert sink.notifications == []

        await asyncio.sleep(REVERT_DELAY * 2)

        assert sink.notifications == [(StateField.ON, False)]
        assert sink.history == []
        await switch.stop()

    @pytest.mark.asyncio
    async def test_timeout_raises_communication_failure(self, make_switch, transport):
        transport.reply(NS_CONTROL_TOGGLEX, CommandTimeoutError(NS_CONTROL_TOGGLEX, 9.0))
        switch = make_switch()

        with pytest.raises(CommunicationFailure):
            await switch.set_desired_state(True)
        await switch.stop()

    @pytest.mark.asyncio
    async def test_revert_skipped_when_newer_request_arrives(self, make_switch, transport, sink):
        transport.reply(NS_CONTROL_TOGGLEX, TransportError("EHOSTUNREACH 192.168.1.50"))
        switch = make_switch()

        with pytest.raises(CommunicationFailure):
            await switch.set_desired_state(True)

        transport.reply(NS_CONTROL_TOGGLEX, {})
        await switch.set_desired_state(True)
        await asyncio.sleep(REVERT_DELAY * 2)

        assert sink.values(StateField.ON) == [True]
        assert switch.state.commanded_on is True
        await switch.stop()

    @pytest.mark.asyncio
    async def test_queued_command_skipped_when_cache_caught_up(self, make_switch, transport):
        switch = make_switch()
        release = asyncio.Event()
        started = asyncio.Event()

        async def blocker() -> None:
            started.set()
            await release.wait()

        busy = asyncio.create_task(switch.queue.enqueue(blocker))
        await started.wait()
        command = asyncio.create_task(switch.set_desired_state(True))
        await asyncio.sleep(0)
        switch.receive_update({"payload": {"togglex": {"channel": 0, "onoff": 1}}})
        release.set()

        await command
        await busy

        assert toggle_calls(transport) == []
        await switch.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_revert(self, make_switch, transport, sink):
        transport.reply(NS_CONTROL_TOGGLEX, TransportError("EHOSTUNREACH 192.168.1.50"))
        switch = make_switch()

        with pytest.raises(CommunicationFailure):
            await switch.set_desired_state(True)
        await switch.stop()
        await asyncio.sleep(REVERT_DELAY * 2)

        assert sink.notifications == []

    @pytest.mark.asyncio
    async def test_command_after_stop_fails_without_revert(self, make_switch, transport, sink):
        switch = make_switch()
        await switch.stop()

        with pytest.raises(CommunicationFailure):
            await switch.set_desired_state(True)
        await asyncio.sleep(REVERT_DELAY * 2)

        assert toggle_calls(transport) == []
        assert sink.notifications == []

    @pytest.mark.asyncio
    async def test_command_waiting_in_queue_fails_when_stopped(self, make_switch, transport, sink):
        switch = make_switch()
        started = asyncio.Event()

        async def blocker() -> None:
            started.set()
            await asyncio.sleep(10)

        busy = asyncio.create_task(switch.queue.enqueue(blocker))
        await started.wait()
        command = asyncio.create_task(switch.set_desired_state(True))
        await asyncio.sleep(0)

        await switch.stop()

        with pytest.raises(CommunicationFailure) as exc_info:
            await command
        assert isinstance(exc_info.value.__cause__, QueueClosedError)
        with pytest.raises(QueueClosedError):
            await busy
        await asyncio.sleep(REVERT_DELAY * 2)

        assert toggle_calls(transport) == []
        assert sink.notifications == []


class TestReceiveUpdate:
    def test_togglex_push_updates_state(self, make_switch, sink):
        switch = make_switch()

        switch.receive_update({"header": {"namespace": NS_CONTROL_TOGGLEX}, "payload": {"togglex": [{"channel": 0, "onoff": 1}]}})

        assert switch.state.commanded_on is True
        assert sink.values(StateField.ON) == [True]
        assert sink.history == [{"status": 1}]

    def test_single_togglex_object_is_accepted(self, make_switch):
        switch = make_switch()
        switch.receive_update({"payload": {"togglex": {"channel": 0, "onoff": 1}}})
        assert switch.state.commanded_on is True

    def test_legacy_toggle_push(self, make_switch):
        switch = make_switch()
        switch.receive_update({"payload": {"toggle": {"onoff": 1}}})
        assert switch.state.commanded_on is True

    def test_duplicate_push_is_silent(self, make_switch, sink):
        switch = make_switch()
        message = {"payload": {"togglex": [{"channel": 0, "onoff": 1}]}}
        switch.receive_update(message)
        sink.clear()

        switch.receive_update(message)

        assert sink.notifications == []

    @pytest.mark.parametrize(
        "message",
        [
            None,
            "not json",
            {"payload": None},
            {"payload": {"togglex": []}},
            {"payload": {"togglex": [{"onoff": "banana"}]}},
            {"payload": {"unrelated": 1}},
        ],
    )
    def test_malformed_push_never_raises(self, make_switch, sink, message):
        switch = make_switch()

        switch.receive_update(message)

        assert sink.notifications == []
        assert switch.state.commanded_on is False

    def test_push_does_not_touch_transport(self, make_switch, transport):
        switch = make_switch()
        switch.receive_update({"payload": {"togglex": [{"channel": 0, "onoff": 1}]}})
        transport.send.assert_not_called()


class TestLifecycle:
    def test_poll_interval_defaults_by_connection(self, transport, sink):
        local = MerossSwitch(DeviceIdentity(name="a", uuid="a"), transport, sink)
        cloud = MerossSwitch(DeviceIdentity(name="b", uuid="b", connection=ConnectionKind.CLOUD), transport, sink)

        assert local.poller.interval == 30
        assert cloud.poller.interval == 300

    @pytest.mark.asyncio
    async def test_start_polls_and_probes_power(self, make_switch, transport, sink):
        transport.reply(NS_SYSTEM_ALL, system_all_payload(onoff=1))
        switch = make_switch(poll_interval=60)

        switch.start()
        await asyncio.sleep(0.05)
        await switch.stop()

        assert transport.namespaces()[:2] == [NS_SYSTEM_ALL, NS_CONTROL_ELECTRICITY]
        assert switch.state.commanded_on is True
        assert switch.state.power_capable is True
        assert StateField.DEVICE_INFO in sink.fields()
        assert StateField.POWER_CAPABLE in sink.fields()
