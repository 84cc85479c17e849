"""Tests for the Escape hold watcher."""

import asyncio

import pytest

from ..session import KeyHoldWatcher
from .fakes import FakeSurface

pytestmark = pytest.mark.asyncio


async def test_hold_fires_once_after_delay():
    fired = []
    surface = FakeSurface()
    watcher = KeyHoldWatcher(lambda: fired.append(1), hold_ms=20).attach(surface)
    surface.key_down()
    surface.key_down()  # auto-repeat
    assert watcher.armed
    await asyncio.sleep(0.05)
    assert fired == [1]
    assert not watcher.armed
    watcher.stop()


async def test_release_before_delay_cancels():
    fired = []
    surface = FakeSurface()
    watcher = KeyHoldWatcher(lambda: fired.append(1), hold_ms=30).attach(surface)
    surface.key_down()
    await asyncio.sleep(0.01)
    surface.key_up()
    await asyncio.sleep(0.04)
    assert fired == []
    watcher.stop()


async def test_other_keys_are_ignored():
    fired = []
    surface = FakeSurface()
    watcher = KeyHoldWatcher(lambda: fired.append(1), hold_ms=10).attach(surface)
    surface.key_down("W")
    assert not watcher.armed
    await asyncio.sleep(0.02)
    assert fired == []
    watcher.stop()


async def test_stop_detaches_and_cancels():
    fired = []
    surface = FakeSurface()
    watcher = KeyHoldWatcher(lambda: fired.append(1), hold_ms=10).attach(surface)
    surface.key_down()
    watcher.stop()
    assert surface.listeners == []
    await asyncio.sleep(0.02)
    assert fired == []
    watcher.stop()
