"""Single-slot registry of the currently attached device.

The registry is fed attach/detach notifications (normally by DeviceMonitor)
and keeps at most one "current device": it resolves only when exactly one
device is attached and that device has passed its mode-specific readiness
probe. Devices are correlated by serial number, never by handle identity,
since a device that changes mode comes back as a new handle.

All methods must be called from the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from blobfree_installer.devices.handle import DeviceHandle
from blobfree_installer.errors import DeviceNotReadyError

logger = logging.getLogger(__name__)


class DeviceEventKind(str, Enum):
    """Kind of registry notification."""

    ATTACHED = "attached"
    DETACHED = "detached"


@dataclass(frozen=True)
class DeviceEvent:
    """A device attach or detach notification."""

    kind: DeviceEventKind
    handle: DeviceHandle


DeviceListener = Callable[[DeviceEvent], None]


def _consume_exception(future: asyncio.Future) -> None:
    # Slots that nobody awaited must not log "exception never retrieved"
    if not future.cancelled():
        future.exception()


class DeviceRegistry:
    """Tracks attached devices and resolves the single current device."""

    def __init__(self) -> None:
        self._devices: dict[str, DeviceHandle] = {}
        self._current: DeviceHandle | None = None
        self._slot: asyncio.Future[DeviceHandle] | None = None
        self._probe_task: asyncio.Task[None] | None = None
        self._reason = "No device attached"
        self._ready = asyncio.Event()
        self._listeners: list[DeviceListener] = []

    @property
    def attached(self) -> list[DeviceHandle]:
        """Handles of all attached devices, probed or not."""
        return list(self._devices.values())

    @property
    def current(self) -> DeviceHandle | None:
        """The resolved current device, if any."""
        return self._current

    def subscribe(self, listener: DeviceListener) -> Callable[[], None]:
        """Register a listener for attach/detach events.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def attach(self, handle: DeviceHandle) -> None:
        """Record a newly attached device and start its readiness probe.

        A handle with the serial of an already attached device replaces it.
        """
        logger.info("Device attached: %s (%s mode)", handle.serial, handle.mode.value)
        self._devices[handle.serial] = handle
        self._emit(DeviceEvent(DeviceEventKind.ATTACHED, handle))
        self._refresh()

    def detach(self, serial: str) -> None:
        """Forget a device that is no longer attached."""
        handle = self._devices.pop(serial, None)
        if handle is None:
            return
        logger.info("Device detached: %s (%s mode)", serial, handle.mode.value)
        self._emit(DeviceEvent(DeviceEventKind.DETACHED, handle))
        self._refresh()

    def current_device(self) -> asyncio.Future[DeviceHandle]:
        """Return a future for the current device.

        The future is already resolved when a probed device is current,
        pending while a probe is running, and failed with
        DeviceNotReadyError when zero or several devices are attached.
        """
        if self._slot is not None:
            return asyncio.shield(self._slot)
        future: asyncio.Future[DeviceHandle] = (
            asyncio.get_running_loop().create_future()
        )
        future.set_exception(DeviceNotReadyError(self._reason))
        return future

    async def wait_for_device(self, timeout: float | None = None) -> DeviceHandle:
        """Wait until a current device is resolved.

        Raises:
            TimeoutError: If no device becomes current within timeout.
        """

        async def _wait() -> DeviceHandle:
            while True:
                await self._ready.wait()
                if self._current is not None:
                    return self._current

        return await asyncio.wait_for(_wait(), timeout)

    async def resolve(self, timeout: float | None = None) -> DeviceHandle:
        """Make one bounded attempt at resolving the current device.

        Args:
            timeout: Bound on the attempt in seconds (None = unbounded).

        Returns:
            The current device.

        Raises:
            DeviceNotReadyError: If no device is current within timeout.
        """

        async def _resolve() -> DeviceHandle:
            try:
                return await self.current_device()
            except DeviceNotReadyError:
                return await self.wait_for_device()

        try:
            return await asyncio.wait_for(_resolve(), timeout)
        except asyncio.TimeoutError:
            raise DeviceNotReadyError(
                f"No device ready within {timeout}s: {self._reason}"
            ) from None

    def _emit(self, event: DeviceEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _refresh(self) -> None:
        if self._probe_task is not None and not self._probe_task.done():
            self._probe_task.cancel()
        self._probe_task = None
        self._current = None
        self._ready.clear()

        if len(self._devices) != 1:
            if self._devices:
                self._fail_slot(
                    f"{len(self._devices)} devices attached, expected exactly one"
                )
            else:
                self._fail_slot("No device attached")
            return

        (handle,) = self._devices.values()
        loop = asyncio.get_running_loop()
        if self._slot is None or self._slot.done():
            self._slot = loop.create_future()
            self._slot.add_done_callback(_consume_exception)
        self._probe_task = loop.create_task(self._probe(handle, self._slot))

    def _fail_slot(self, reason: str) -> None:
        self._reason = reason
        if self._slot is not None and not self._slot.done():
            self._slot.set_exception(DeviceNotReadyError(reason))
        self._slot = None

    async def _probe(
        self, handle: DeviceHandle, slot: asyncio.Future[DeviceHandle]
    ) -> None:
        try:
            await handle.probe()
        except Exception as e:
            # Transient while the device is switching modes
            logger.warning("Readiness probe failed for %s: %s", handle.serial, e)
            if slot is self._slot:
                self._fail_slot(f"Readiness probe failed for {handle.serial}: {e}")
            return

        if self._devices.get(handle.serial) is not handle or slot is not self._slot:
            logger.debug("Device %s vanished during its probe", handle.serial)
            return

        logger.info(
            "Current device: %s (%s mode, model=%s)",
            handle.serial,
            handle.mode.value,
            handle.model,
        )
        self._current = handle
        self._ready.set()
        if not slot.done():
            slot.set_result(handle)


__all__ = [
    "DeviceEvent",
    "DeviceEventKind",
    "DeviceListener",
    "DeviceRegistry",
]
