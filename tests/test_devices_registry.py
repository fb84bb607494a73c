"""Tests for the single-slot device registry."""

import asyncio

import pytest

from blobfree_installer.devices.handle import FlashModeDevice, NormalModeDevice
from blobfree_installer.devices.registry import DeviceEventKind, DeviceRegistry
from blobfree_installer.errors import DeviceNotReadyError, TransportError
from blobfree_installer.types import DeviceMode

from .conftest import FAKE_MODEL, FAKE_SERIAL, FakeFlashTransport, FakeNormalTransport


class OfflineTransport(FakeNormalTransport):
    """A normal-mode transport whose probe always fails."""

    def shell(self, command: str) -> str:
        raise TransportError("error: device offline")


class GarbledTransport(FakeNormalTransport):
    """A normal-mode transport whose probe fails with a non-transport error."""

    def shell(self, command: str) -> str:
        raise UnicodeDecodeError("utf-8", b"[Fake\xff]", 5, 6, "invalid start byte")


class TestCurrentDevice:
    """Tests for current_device()."""

    def test_single_device_resolves_after_readiness_check(self) -> None:
        """Exactly one probed device becomes current."""

        async def scenario():
            registry = DeviceRegistry()
            registry.attach(NormalModeDevice(FakeNormalTransport()))
            return await registry.current_device()

        handle = asyncio.run(scenario())
        assert handle.serial == FAKE_SERIAL
        assert handle.mode is DeviceMode.NORMAL
        assert handle.model == FAKE_MODEL

    def test_pending_until_readiness_check_completes(self) -> None:
        """The slot is pending while the readiness probe runs."""

        async def scenario():
            registry = DeviceRegistry()
            registry.attach(NormalModeDevice(FakeNormalTransport()))
            future = registry.current_device()
            pending = not future.done()
            handle = await future
            return pending, handle, registry.current

        pending, handle, current = asyncio.run(scenario())
        assert pending
        assert current is handle

    def test_no_device_fails(self) -> None:
        """With nothing attached the slot fails immediately."""

        async def scenario():
            return await DeviceRegistry().current_device()

        with pytest.raises(DeviceNotReadyError, match="No device attached"):
            asyncio.run(scenario())

    def test_two_devices_fail(self) -> None:
        """Several attached devices are ambiguous."""

        async def scenario():
            registry = DeviceRegistry()
            registry.attach(NormalModeDevice(FakeNormalTransport("A")))
            registry.attach(NormalModeDevice(FakeNormalTransport("B")))
            return await registry.current_device()

        with pytest.raises(DeviceNotReadyError, match="2 devices attached"):
            asyncio.run(scenario())

    def test_second_attach_fails_pending_slot(self) -> None:
        """A waiter on a pending slot is failed when a second device appears."""

        async def scenario():
            registry = DeviceRegistry()
            registry.attach(NormalModeDevice(FakeNormalTransport("A")))
            future = registry.current_device()
            registry.attach(NormalModeDevice(FakeNormalTransport("B")))
            return await future

        with pytest.raises(DeviceNotReadyError):
            asyncio.run(scenario())

    def test_detaching_extra_device_resolves_remaining(self) -> None:
        """Going back to one device makes it current."""

        async def scenario():
            registry = DeviceRegistry()
            registry.attach(NormalModeDevice(FakeNormalTransport("A")))
            registry.attach(NormalModeDevice(FakeNormalTransport("B")))
            registry.detach("A")
            return await registry.current_device()

        assert asyncio.run(scenario()).serial == "B"

    def test_failed_readiness_check_means_no_current_device(self) -> None:
        """A failed readiness probe leaves no current device."""

        async def scenario():
            registry = DeviceRegistry()
            registry.attach(NormalModeDevice(OfflineTransport()))
            return await registry.current_device()

        with pytest.raises(DeviceNotReadyError, match="Readiness probe failed"):
            asyncio.run(scenario())

    def test_unexpected_readiness_error_means_no_current_device(self) -> None:
        """Any probe error fails the slot, and the next attach can still succeed."""

        async def scenario():
            registry = DeviceRegistry()
            registry.attach(NormalModeDevice(GarbledTransport()))
            with pytest.raises(DeviceNotReadyError, match="Readiness probe failed"):
                await registry.current_device()
            registry.detach(FAKE_SERIAL)
            registry.attach(NormalModeDevice(FakeNormalTransport()))
            return await registry.current_device()

        assert asyncio.run(scenario()).model == FAKE_MODEL

    def test_mode_switch_yields_new_handle(self) -> None:
        """A device coming back in flash mode is a distinct handle."""

        async def scenario():
            registry = DeviceRegistry()
            normal = NormalModeDevice(FakeNormalTransport())
            registry.attach(normal)
            first = await registry.current_device()
            registry.detach(FAKE_SERIAL)
            registry.attach(FlashModeDevice(FakeFlashTransport()))
            second = await registry.current_device()
            return first, second

        first, second = asyncio.run(scenario())
        assert first.serial == second.serial
        assert first is not second
        assert isinstance(second, FlashModeDevice)
        assert second.properties["product"] == "FD2"

    def test_detach_unknown_serial_is_noop(self) -> None:
        """Detaching a serial that was never attached does nothing."""

        async def scenario():
            registry = DeviceRegistry()
            registry.detach("nobody")
            return registry.attached

        assert asyncio.run(scenario()) == []


class TestResolve:
    """Tests for wait_for_device() and resolve()."""

    def test_resolve_waits_for_late_device(self) -> None:
        """A device attached while resolving is picked up."""

        async def scenario():
            registry = DeviceRegistry()
            task = asyncio.create_task(registry.resolve(timeout=5))
            await asyncio.sleep(0)
            registry.attach(FlashModeDevice(FakeFlashTransport()))
            return await task

        assert asyncio.run(scenario()).mode is DeviceMode.FLASH

    def test_resolve_times_out(self) -> None:
        """One bounded attempt raises DeviceNotReadyError on timeout."""

        async def scenario():
            return await DeviceRegistry().resolve(timeout=0.01)

        with pytest.raises(DeviceNotReadyError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.code == "device_not_ready"

    def test_wait_for_device_times_out(self) -> None:
        """wait_for_device surfaces a plain timeout."""

        async def scenario():
            return await DeviceRegistry().wait_for_device(timeout=0.01)

        with pytest.raises(TimeoutError):
            asyncio.run(scenario())


class TestSubscribe:
    """Tests for attach/detach notifications."""

    def test_events_in_order(self) -> None:
        """Listeners see attach and detach events as they happen."""
        events = []

        async def scenario():
            registry = DeviceRegistry()
            registry.subscribe(events.append)
            registry.attach(NormalModeDevice(FakeNormalTransport()))
            registry.detach(FAKE_SERIAL)

        asyncio.run(scenario())
        assert [e.kind for e in events] == [DeviceEventKind.ATTACHED, DeviceEventKind.DETACHED]
        assert all(e.handle.serial == FAKE_SERIAL for e in events)

    def test_unsubscribe(self) -> None:
        """An unsubscribed listener receives nothing further."""
        events = []

        async def scenario():
            registry = DeviceRegistry()
            unsubscribe = registry.subscribe(events.append)
            unsubscribe()
            registry.attach(NormalModeDevice(FakeNormalTransport()))

        asyncio.run(scenario())
        assert events == []
