"""Blob pulling from a live device.

Blobs are pulled one at a time into ``<working root>/blobs/<source path>``.
A blob that fails to transfer is logged and skipped; downstream image
builds tolerate missing blobs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from blobfree_installer.devices.handle import DeviceHandle, NormalModeDevice
from blobfree_installer.distribution.models import BlobMap, WorkingRoot
from blobfree_installer.errors import DeviceNotReadyError, TransportError
from blobfree_installer.types import ProgressCallback

logger = logging.getLogger(__name__)


@dataclass
class PullReport:
    """Outcome of a pull run.

    Attributes:
        pulled: Sources transferred in this run.
        failed: Sources whose transfer failed.
        skipped: Sources already present locally.
    """

    pulled: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def pending_sources(root: WorkingRoot, blob_map: BlobMap) -> tuple[list[str], list[str]]:
    """Split distinct blob sources into (to pull, already present).

    Parent directories of every blob are created as a side effect.
    """
    pending: list[str] = []
    present: list[str] = []
    for source in blob_map.sources:
        local = root.blobs_dir / source.lstrip("/")
        local.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        if local.exists():
            present.append(source)
        else:
            pending.append(source)
    return pending, present


async def pull_blobs(
    device: DeviceHandle | None,
    root: WorkingRoot,
    blob_map: BlobMap,
    progress: ProgressCallback | None = None,
    requires_root: bool = True,
) -> PullReport:
    """Pull the blobs listed in a blob map from the device.

    Args:
        device: Current device; must be in normal mode.
        root: Working root.
        blob_map: Parsed blob map.
        progress: Called after each item with (index, total, source).
        requires_root: Whether the matched descriptor needs elevated access.

    Returns:
        PullReport for this run.

    Raises:
        DeviceNotReadyError: If the device is missing or not in normal mode.
    """
    if not isinstance(device, NormalModeDevice):
        raise DeviceNotReadyError(f"Device {device!r} cannot transfer files")

    root.blobs_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    pending, present = pending_sources(root, blob_map)
    report = PullReport(skipped=present)

    if requires_root:
        try:
            elevated = await device.is_elevated()
        except TransportError as e:
            logger.warning("Could not check elevated access on %s: %s", device.serial, e)
            elevated = False
        if not elevated:
            logger.error("Device %s is not running with elevated access", device.serial)

    total = len(pending)
    logger.info(
        "Pulling %d blob(s) from %s (%d already present)", total, device.serial, len(present)
    )

    for index, source in enumerate(pending, start=1):
        local = root.blobs_dir / source.lstrip("/")
        try:
            await device.pull(source, str(local))
        except (TransportError, OSError) as e:
            logger.warning("Failed to pull %s: %s", source, e)
            report.failed.append(source)
        else:
            logger.debug("Pulled %s to %s", source, local)
            report.pulled.append(source)
        if progress is not None:
            progress(index, total, source)

    logger.info(
        "Blob pull finished: %d pulled, %d failed", len(report.pulled), len(report.failed)
    )
    return report


__all__ = ["PullReport", "pending_sources", "pull_blobs"]
