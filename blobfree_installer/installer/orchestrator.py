"""Flash stage state machine.

FlashOrchestrator takes a normal-mode device and a partition table and
drives it through:

    IDLE -> REBOOTING_TO_FLASH -> AWAITING_FLASH_DEVICE -> FLASHING
         -> REBOOTING_TO_NORMAL -> DONE

with FAILED reachable from every non-terminal state. The device drops off
the bus while rebooting and comes back as a different handle, so after the
reboot the orchestrator waits a fixed settle interval and then makes one
bounded resolution attempt through the registry.

Partitions are written one at a time in table order. A failed write is
recorded and the sequence moves on to the next partition; there is no
retry within a run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from blobfree_installer.devices.handle import (
    DeviceHandle,
    FlashModeDevice,
    NormalModeDevice,
)
from blobfree_installer.devices.registry import DeviceRegistry
from blobfree_installer.distribution.models import PartitionEntry, PartitionTable
from blobfree_installer.errors import (
    DeviceNotReadyError,
    TransportError,
    UnexpectedModeError,
)
from blobfree_installer.types import (
    DeviceMode,
    PartitionStatus,
    PipelineState,
    ProgressCallback,
)

logger = logging.getLogger(__name__)

StateListener = Callable[[PipelineState], None]
Sleeper = Callable[[float], Awaitable[None]]

# States during which interrupting the host can brick the device
RISKY_STATES = frozenset(
    {
        PipelineState.REBOOTING_TO_FLASH,
        PipelineState.AWAITING_FLASH_DEVICE,
        PipelineState.FLASHING,
        PipelineState.REBOOTING_TO_NORMAL,
    }
)


@dataclass
class PartitionOutcome:
    """Result of writing one partition.

    Attributes:
        image_name: Image file name, e.g. ``system.img``.
        partition: Physical partition written.
        image_file: Image that was written.
        status: Write outcome.
        error_message: Error detail if the write failed.
    """

    image_name: str
    partition: str
    image_file: Path
    status: PartitionStatus = PartitionStatus.PENDING
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is PartitionStatus.SUCCEEDED


@dataclass
class FlashReport:
    """Outcome of the flash stage.

    Attributes:
        serial: Serial of the flash-mode device.
        outcomes: Per-partition outcomes, in write order.
        rebooted: Whether the reboot to normal mode was acknowledged.
    """

    serial: str | None = None
    outcomes: list[PartitionOutcome] = field(default_factory=list)
    rebooted: bool = False

    @property
    def failed(self) -> list[PartitionOutcome]:
        return [o for o in self.outcomes if o.status is PartitionStatus.FAILED]

    @property
    def success(self) -> bool:
        return self.rebooted and not self.failed


class FlashOrchestrator:
    """Drives one device through reboot, flash and reboot."""

    def __init__(
        self,
        registry: DeviceRegistry,
        settle_delay: float = 5.0,
        resolve_timeout: float | None = None,
        on_state: StateListener | None = None,
        progress: ProgressCallback | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.settle_delay = settle_delay
        self.resolve_timeout = settle_delay if resolve_timeout is None else resolve_timeout
        self.on_state = on_state
        self.progress = progress
        self._sleep = sleep
        self.state = PipelineState.IDLE
        self.report = FlashReport()

    @property
    def risky(self) -> bool:
        """True while the device must not be interrupted."""
        return self.state in RISKY_STATES

    def _enter(self, state: PipelineState) -> None:
        logger.debug("Flash state: %s -> %s", self.state.value, state.value)
        self.state = state
        if self.on_state is not None:
            self.on_state(state)

    async def await_flash_device(self) -> FlashModeDevice:
        """Settle, then resolve the device and check it is in flash mode.

        Raises:
            DeviceNotReadyError: If no device is current after settling.
            UnexpectedModeError: If the device came back in normal mode.
        """
        logger.info("Waiting %.1fs for the device to settle", self.settle_delay)
        await self._sleep(self.settle_delay)
        self._enter(PipelineState.AWAITING_FLASH_DEVICE)

        handle: DeviceHandle = await self.registry.resolve(self.resolve_timeout)
        if not isinstance(handle, FlashModeDevice):
            raise UnexpectedModeError(
                handle.serial, DeviceMode.FLASH.value, handle.mode.value
            )
        return handle

    async def flash_partition(
        self, device: FlashModeDevice, entry: PartitionEntry
    ) -> PartitionOutcome:
        """Write one partition, recording rather than raising failures."""
        outcome = PartitionOutcome(
            image_name=entry.image_name,
            partition=entry.partition,
            image_file=entry.image_file,
        )
        try:
            await device.write_partition(entry.partition, str(entry.image_file))
        except (TransportError, OSError) as e:
            logger.warning(
                "Flashing %s to %s failed: %s", entry.image_name, entry.partition, e
            )
            outcome.status = PartitionStatus.FAILED
            outcome.error_message = str(e)
        else:
            logger.info("Flashed %s to %s", entry.image_name, entry.partition)
            outcome.status = PartitionStatus.SUCCEEDED
        return outcome

    async def run(self, device: DeviceHandle, partitions: PartitionTable) -> FlashReport:
        """Run the flash stage.

        Args:
            device: Current normal-mode device.
            partitions: Partition table, written in iteration order.

        Returns:
            FlashReport with per-partition outcomes.

        Raises:
            DeviceNotReadyError: If the device is not in normal mode or does
                not come back after rebooting.
            UnexpectedModeError: If the device came back in the wrong mode.
            TransportError: If a reboot command fails.
        """
        self.report = FlashReport(serial=device.serial)
        try:
            if not isinstance(device, NormalModeDevice):
                raise DeviceNotReadyError(
                    f"Device {device.serial} is in {device.mode.value} mode, "
                    "expected normal mode"
                )

            self._enter(PipelineState.REBOOTING_TO_FLASH)
            await device.reboot_to_flash_mode()

            flash_device = await self.await_flash_device()
            self.report.serial = flash_device.serial

            self._enter(PipelineState.FLASHING)
            entries = list(partitions.values())
            total = len(entries)
            for index, entry in enumerate(entries, start=1):
                logger.info(
                    "Flashing %s (%d/%d) to %s",
                    entry.image_name,
                    index,
                    total,
                    entry.partition,
                )
                self.report.outcomes.append(
                    await self.flash_partition(flash_device, entry)
                )
                if self.progress is not None:
                    self.progress(index, total, entry.image_name)

            self._enter(PipelineState.REBOOTING_TO_NORMAL)
            await flash_device.reboot_to_normal_mode()
            self.report.rebooted = True
            self._enter(PipelineState.DONE)
        except Exception:
            self._enter(PipelineState.FAILED)
            raise

        failed = self.report.failed
        if failed:
            logger.warning(
                "%d of %d partition(s) failed: %s",
                len(failed),
                len(self.report.outcomes),
                [o.partition for o in failed],
            )
        return self.report


__all__ = [
    "RISKY_STATES",
    "FlashOrchestrator",
    "FlashReport",
    "PartitionOutcome",
    "StateListener",
]
