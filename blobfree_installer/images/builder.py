"""Partition image construction.

This module handles:
- Packing a ramdisk directory into a gzip'd cpio archive (mkbootfs)
- Composing boot and recovery images (mkbootimg)
- Building filesystem images (make_ext4fs)
- Running all partition builds concurrently with a bounded fan-out

A tool's exit code is only logged; the presence of its output file is what
decides success.
"""

from __future__ import annotations

import asyncio
import gzip
import logging
from dataclasses import dataclass, field
from pathlib import Path

from blobfree_installer.distribution.models import (
    PartitionEntry,
    PartitionTable,
    WorkingRoot,
)
from blobfree_installer.errors import ImageBuildError, InstallerError
from blobfree_installer.images.tools import (
    MAKE_EXT4FS,
    MKBOOTFS,
    MKBOOTIMG,
    ImagingTools,
)

logger = logging.getLogger(__name__)

BOOTABLE_IMAGES = ("boot.img", "recovery.img")
DATA_IMAGE = "data.img"

RAMDISK_DIR = "RAMDISK"
RAMDISK_FILE = "initrd.img"
KERNEL_FILE = "kernel"
DT_IMAGE = "dt.img"
BOOT_METADATA = ("cmdline", "pagesize", "base")

# Security contexts are taken from the boot ramdisk when it ships them
FILE_CONTEXTS = Path("BOOT") / RAMDISK_DIR / "file_contexts"


@dataclass
class BuildReport:
    """Outcome of a build batch.

    Attributes:
        built: Image name to output path for successful builds.
        failed: Image name to error message for failed builds.
    """

    built: dict[str, Path] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


def split_args(args: str | None) -> list[str]:
    """Split an argument string on runs of spaces."""
    if not args:
        return []
    return args.split()


def adjust_data_partition(
    partitions: PartitionTable,
    runs_target_os: bool,
    keep_user_data: bool,
) -> bool:
    """Drop the data image when the user keeps data on a target-OS device.

    The data image is built and flashed when the device does not run the
    target OS yet, or when the user chose not to keep their data.

    Returns:
        True if the data entry was removed.
    """
    if runs_target_os and keep_user_data and DATA_IMAGE in partitions:
        del partitions[DATA_IMAGE]
        logger.info("Keeping user data: %s will not be built or flashed", DATA_IMAGE)
        return True
    return False


class ImageBuilder:
    """Builds partition images for one working root."""

    def __init__(
        self,
        tools: ImagingTools,
        root: WorkingRoot,
        extra_args: dict[str, str] | None = None,
    ) -> None:
        self.tools = tools
        self.root = root
        self.extra_args = extra_args or {}

    @property
    def log_dir(self) -> Path:
        return self.root.images_dir / "logs"

    def _verify(self, output: Path, image: str) -> Path:
        if not output.is_file():
            raise ImageBuildError(f"{image} was not produced at {output}", image=image)
        return output

    def build_ramdisk(self, content_dir: Path) -> Path:
        """Pack ``<content_dir>/RAMDISK`` into ``<content_dir>/initrd.img``.

        Raises:
            ImageBuildError: If the ramdisk directory is absent or no
                archive was written.
        """
        ramdisk_dir = content_dir / RAMDISK_DIR
        output = content_dir / RAMDISK_FILE
        image = f"{content_dir.name.lower()}-ramdisk"
        if not ramdisk_dir.is_dir():
            raise ImageBuildError(f"No {RAMDISK_DIR} directory in {content_dir}", image=image)

        output.unlink(missing_ok=True)
        run = self.tools.run(
            MKBOOTFS,
            [str(ramdisk_dir)],
            log_path=self.log_dir / f"{image}.log",
            capture_stdout=True,
        )
        output.write_bytes(gzip.compress(run.stdout or b""))
        logger.debug("Wrote ramdisk %s", output)
        return self._verify(output, image)

    def build_bootable(self, content_dir: Path, ramdisk: Path, output: Path) -> Path:
        """Compose a bootable image from a kernel, a ramdisk and metadata.

        Raises:
            ImageBuildError: If a metadata file is missing or the image
                was not produced.
        """
        metadata: dict[str, str] = {}
        for name in BOOT_METADATA:
            path = content_dir / name
            try:
                metadata[name] = path.read_text(encoding="utf-8").strip()
            except OSError as e:
                raise ImageBuildError(
                    f"Cannot read {path}: {e}", image=output.name
                ) from e

        args = ["--kernel", str(content_dir / KERNEL_FILE), "--ramdisk", str(ramdisk)]
        for name in BOOT_METADATA:
            args += [f"--{name}", metadata[name]]
        dt_image = self.root.path / DT_IMAGE
        if dt_image.is_file():
            args += ["--dt", str(dt_image)]
        args += split_args(self.extra_args.get(output.name))
        args += ["--output", str(output)]

        output.unlink(missing_ok=True)
        self.tools.run(MKBOOTIMG, args, log_path=self.log_dir / f"{output.name}.log")
        return self._verify(output, output.name)

    def filesystem_args(self, entry: PartitionEntry) -> list[str]:
        """Extra make_ext4fs arguments for a partition entry."""
        extra = self.extra_args.get(entry.image_name)
        if extra is None:
            extra = self.extra_args.get(f"{entry.partition}.img")
        args = split_args(extra)
        file_contexts = self.root.content_dir / FILE_CONTEXTS
        if file_contexts.is_file():
            args += ["-S", str(file_contexts)]
        return args

    def build_filesystem_image(self, entry: PartitionEntry) -> Path:
        """Build a filesystem image from a content directory.

        Raises:
            ImageBuildError: If the image was not produced.
        """
        args = self.filesystem_args(entry)
        args += [str(entry.image_file), str(entry.source_dir)]

        entry.image_file.unlink(missing_ok=True)
        self.tools.run(
            MAKE_EXT4FS, args, log_path=self.log_dir / f"{entry.image_name}.log"
        )
        return self._verify(entry.image_file, entry.image_name)

    def build_partition(self, entry: PartitionEntry) -> Path:
        """Build the image for one partition table entry."""
        logger.info("Building %s from %s", entry.image_name, entry.source_dir)
        entry.image_file.parent.mkdir(parents=True, exist_ok=True)
        if entry.image_name in BOOTABLE_IMAGES:
            ramdisk = self.build_ramdisk(entry.source_dir)
            return self.build_bootable(entry.source_dir, ramdisk, entry.image_file)
        return self.build_filesystem_image(entry)


async def build_images(
    builder: ImageBuilder,
    partitions: PartitionTable,
    max_concurrent: int = 4,
) -> BuildReport:
    """Build every partition image concurrently.

    One failing build does not cancel the others.

    Args:
        builder: ImageBuilder for the working root.
        partitions: Partition table (after any data adjustment).
        max_concurrent: Upper bound on simultaneous builds.

    Returns:
        BuildReport listing built and failed images.
    """
    semaphore = asyncio.Semaphore(max_concurrent)

    async def build_one(entry: PartitionEntry) -> Path:
        async with semaphore:
            return await asyncio.to_thread(builder.build_partition, entry)

    entries = list(partitions.values())
    logger.info("Building %d image(s): %s", len(entries), [e.image_name for e in entries])
    results = await asyncio.gather(
        *(build_one(e) for e in entries), return_exceptions=True
    )

    report = BuildReport()
    for entry, result in zip(entries, results):
        if isinstance(result, InstallerError):
            logger.error("Building %s failed: %s", entry.image_name, result.message)
            report.failed[entry.image_name] = result.message
        elif isinstance(result, BaseException):
            raise result
        else:
            report.built[entry.image_name] = result
    return report


def ensure_images(partitions: PartitionTable) -> None:
    """Check every image to be flashed exists.

    Raises:
        ImageBuildError: If any image is missing.
    """
    missing = [e.image_name for e in partitions.values() if not e.image_file.is_file()]
    if missing:
        raise ImageBuildError(
            f"Missing image(s) before flashing: {', '.join(missing)}",
            image=missing[0],
        )


__all__ = [
    "BOOTABLE_IMAGES",
    "DATA_IMAGE",
    "BuildReport",
    "ImageBuilder",
    "adjust_data_partition",
    "build_images",
    "ensure_images",
    "split_args",
]
