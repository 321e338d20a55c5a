"""
Shared fixtures for unit tests.

This module provides reusable fixtures for testing the meross_sync device core.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from fakes import RecordingSink, ScriptedTransport, electricity_payload, system_all_payload

from meross_sync.const import NS_CONTROL_ELECTRICITY, NS_SYSTEM_ALL
from meross_sync.devices import UpdateReconciler
from meross_sync.structs import DeviceIdentity


@pytest.fixture
def identity() -> DeviceIdentity:
    return DeviceIdentity(name="Desk Lamp", uuid="1912345678901234567890e1e9aabbcc", host="192.168.1.50", key="secret")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def transport() -> ScriptedTransport:
    """
    Scripted transport for testing.

    Defaults to an online Extended device that is switched off and meters power.
    """
    t = ScriptedTransport()
    t.reply(NS_SYSTEM_ALL, system_all_payload())
    t.reply(NS_CONTROL_ELECTRICITY, electricity_payload())
    return t


@pytest.fixture
def make_reconciler(identity: DeviceIdentity, sink: RecordingSink) -> Callable[..., UpdateReconciler]:
    def _make(**kwargs: Any) -> UpdateReconciler:
        return UpdateReconciler(identity, sink, **kwargs)

    return _make
