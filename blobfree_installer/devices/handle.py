"""Device handles for the two modes a device can be attached in.

A physical device is represented by a NormalModeDevice while it runs its
regular system, and by a distinct FlashModeDevice once it reboots into flash
mode. The two share only their serial number; nothing should rely on a
handle surviving a mode transition.

Transport calls are blocking subprocess invocations, so every operation is
run in a worker thread and exposed as a coroutine.
"""

from __future__ import annotations

import asyncio
import logging
from typing import ClassVar

from blobfree_installer.devices.transport import (
    FlashModeTransport,
    NormalModeTransport,
    parse_getprop,
)
from blobfree_installer.types import DeviceMode

logger = logging.getLogger(__name__)

# Variables fetched when a flash-mode device attaches
FLASH_PROBE_VARIABLES = ("product", "serialno")


class DeviceHandle:
    """Base class for a connected device.

    Attributes:
        serial: Stable identifier shared across modes.
        properties: Mode-specific property cache, filled by probe().
    """

    mode: ClassVar[DeviceMode]

    def __init__(self, serial: str) -> None:
        self.serial = serial
        self.properties: dict[str, str] = {}

    async def probe(self) -> dict[str, str]:
        """Run the readiness probe and fill the property cache."""
        raise NotImplementedError

    @property
    def model(self) -> str | None:
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(serial='{self.serial}')>"


class NormalModeDevice(DeviceHandle):
    """A device running its regular system, reachable over adb."""

    mode = DeviceMode.NORMAL

    def __init__(self, transport: NormalModeTransport) -> None:
        super().__init__(transport.serial)
        self.transport = transport

    @property
    def model(self) -> str | None:
        return self.properties.get("ro.product.model")

    async def probe(self) -> dict[str, str]:
        self.properties = await self.get_properties()
        logger.debug("Probed %s: %d properties", self.serial, len(self.properties))
        return self.properties

    async def get_properties(self) -> dict[str, str]:
        output = await self.shell("getprop")
        return parse_getprop(output)

    async def shell(self, command: str) -> str:
        return await asyncio.to_thread(self.transport.shell, command)

    async def pull(self, remote_path: str, local_path: str) -> None:
        await asyncio.to_thread(self.transport.pull, remote_path, local_path)

    async def get_model(self) -> str:
        return await asyncio.to_thread(self.transport.get_model)

    async def reboot_to_flash_mode(self) -> None:
        logger.info("Rebooting %s into flash mode", self.serial)
        await asyncio.to_thread(self.transport.reboot_to_flash_mode)

    async def summon_elevated_access(self) -> None:
        logger.info("Requesting elevated access on %s", self.serial)
        await asyncio.to_thread(self.transport.summon_elevated_access)

    async def is_elevated(self) -> bool:
        return await asyncio.to_thread(self.transport.is_elevated)


class FlashModeDevice(DeviceHandle):
    """A device in flash mode, accepting raw partition writes."""

    mode = DeviceMode.FLASH

    def __init__(
        self,
        transport: FlashModeTransport,
        probe_variables: tuple[str, ...] = FLASH_PROBE_VARIABLES,
    ) -> None:
        super().__init__(transport.serial)
        self.transport = transport
        self.probe_variables = probe_variables

    @property
    def model(self) -> str | None:
        return self.properties.get("product")

    async def probe(self) -> dict[str, str]:
        variables: dict[str, str] = {}
        for name in self.probe_variables:
            variables[name] = await self.get_variable(name)
        self.properties = variables
        logger.debug("Probed %s: %s", self.serial, variables)
        return self.properties

    async def get_variable(self, name: str) -> str:
        return await asyncio.to_thread(self.transport.get_variable, name)

    async def write_partition(self, partition: str, image_path: str) -> None:
        await asyncio.to_thread(self.transport.write_partition, partition, image_path)

    async def reboot_to_normal_mode(self) -> None:
        logger.info("Rebooting %s into normal mode", self.serial)
        await asyncio.to_thread(self.transport.reboot_to_normal_mode)


__all__ = [
    "FLASH_PROBE_VARIABLES",
    "DeviceHandle",
    "FlashModeDevice",
    "NormalModeDevice",
]
