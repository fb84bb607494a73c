"""Device enumeration polling.

DeviceMonitor periodically lists devices in normal (adb) and flash
(fastboot) mode and turns differences between two polls into attach and
detach notifications on a DeviceRegistry.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from blobfree_installer.config import Settings
from blobfree_installer.devices.handle import (
    DeviceHandle,
    FlashModeDevice,
    NormalModeDevice,
)
from blobfree_installer.devices.registry import DeviceRegistry
from blobfree_installer.devices.transport import (
    AdbTransport,
    FastbootTransport,
    list_adb_devices,
    list_fastboot_devices,
)
from blobfree_installer.errors import TransportError
from blobfree_installer.types import DeviceMode

logger = logging.getLogger(__name__)

# Returns the serials currently attached in each mode
Enumerator = Callable[[], dict[DeviceMode, list[str]]]
HandleFactory = Callable[[str, DeviceMode], DeviceHandle]


def make_enumerator(settings: Settings) -> Enumerator:
    """Build an enumerator that queries adb and fastboot."""

    def enumerate_devices() -> dict[DeviceMode, list[str]]:
        found: dict[DeviceMode, list[str]] = {DeviceMode.NORMAL: [], DeviceMode.FLASH: []}
        try:
            found[DeviceMode.NORMAL] = list_adb_devices(
                settings.adb_path, timeout=settings.command_timeout
            )
        except TransportError as e:
            logger.debug("adb enumeration failed: %s", e)
        try:
            found[DeviceMode.FLASH] = list_fastboot_devices(
                settings.fastboot_path, timeout=settings.command_timeout
            )
        except TransportError as e:
            logger.debug("fastboot enumeration failed: %s", e)
        return found

    return enumerate_devices


def make_handle_factory(settings: Settings) -> HandleFactory:
    """Build a factory creating subprocess-backed device handles."""

    def create(serial: str, mode: DeviceMode) -> DeviceHandle:
        if mode is DeviceMode.NORMAL:
            return NormalModeDevice(
                AdbTransport(
                    serial,
                    adb_path=settings.adb_path,
                    timeout=settings.command_timeout,
                    pull_timeout=settings.pull_timeout,
                )
            )
        return FlashModeDevice(
            FastbootTransport(
                serial,
                fastboot_path=settings.fastboot_path,
                timeout=settings.command_timeout,
                flash_timeout=settings.flash_timeout,
            )
        )

    return create


class DeviceMonitor:
    """Feeds a DeviceRegistry from periodic device enumeration."""

    def __init__(
        self,
        registry: DeviceRegistry,
        enumerate_devices: Enumerator,
        create_handle: HandleFactory,
        interval: float = 1.0,
    ) -> None:
        self.registry = registry
        self.enumerate_devices = enumerate_devices
        self.create_handle = create_handle
        self.interval = interval
        self._seen: dict[str, DeviceMode] = {}

    @classmethod
    def from_settings(cls, registry: DeviceRegistry, settings: Settings) -> DeviceMonitor:
        return cls(
            registry,
            make_enumerator(settings),
            make_handle_factory(settings),
            interval=settings.poll_interval,
        )

    async def poll_once(self) -> None:
        """Enumerate devices once and notify the registry of changes."""
        listing = await asyncio.to_thread(self.enumerate_devices)

        now: dict[str, DeviceMode] = {}
        for mode in (DeviceMode.NORMAL, DeviceMode.FLASH):
            for serial in listing.get(mode, []):
                now.setdefault(serial, mode)

        for serial, mode in list(self._seen.items()):
            if now.get(serial) is not mode:
                del self._seen[serial]
                self.registry.detach(serial)

        for serial, mode in now.items():
            if serial not in self._seen:
                self._seen[serial] = mode
                self.registry.attach(self.create_handle(serial, mode))

    async def run(self) -> None:
        """Poll until cancelled."""
        logger.debug("Device monitor started (interval=%.1fs)", self.interval)
        try:
            while True:
                await self.poll_once()
                await asyncio.sleep(self.interval)
        finally:
            logger.debug("Device monitor stopped")


__all__ = [
    "DeviceMonitor",
    "Enumerator",
    "HandleFactory",
    "make_enumerator",
    "make_handle_factory",
]
