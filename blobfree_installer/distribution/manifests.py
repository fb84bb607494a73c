"""Parsers for the text manifests shipped with a distribution.

This module handles:
- The blob map (``source:target`` per line)
- The partition table (recovery fstab format)
- The per-image extra build arguments (``image.img: args`` per line)
"""

from __future__ import annotations

import logging

from blobfree_installer.distribution.models import (
    BlobMap,
    BlobMapEntry,
    PartitionEntry,
    PartitionTable,
    WorkingRoot,
)

logger = logging.getLogger(__name__)

# Partition table rows start with a block device path
DEVICE_PATH_PREFIX = "/dev"


def parse_blob_map(text: str) -> BlobMap:
    """Parse the blob map.

    Lines without a colon, or with an empty source or target, are skipped.

    Args:
        text: Content of the blob map file.

    Returns:
        BlobMap with entries in file order.
    """
    blob_map = BlobMap()
    for raw in text.splitlines():
        line = raw.strip()
        if ":" not in line:
            continue
        source, target = line.split(":")[:2]
        source, target = source.strip(), target.strip()
        if not source or not target:
            logger.debug("Skipping blob map line %r", line)
            continue
        blob_map.entries.append(BlobMapEntry(source=source, target=target))
    return blob_map


def parse_partition_table(text: str, root: WorkingRoot) -> PartitionTable:
    """Parse the partition table into entries keyed by image name.

    Only lines starting with a device path are considered. Column 0 is the
    device path (its last segment is the partition name) and column 1 the
    mount point. The mount point's last segment, upper-cased, must exist as
    a directory under the content tree; rows without it are skipped.

    Args:
        text: Content of the partition table file.
        root: Working root the distribution was extracted into.

    Returns:
        Ordered mapping of ``<mount>.img`` to PartitionEntry.
    """
    table: PartitionTable = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line.startswith(DEVICE_PATH_PREFIX):
            continue

        parts = line.split()
        if len(parts) < 2:
            logger.debug("Skipping partition table line %r", line)
            continue

        partition = parts[0].rstrip("/").split("/")[-1]
        mount_name = parts[1].rstrip("/").split("/")[-1]
        if not partition or not mount_name:
            continue

        source_dir = root.content_dir / mount_name.upper()
        if not source_dir.is_dir():
            logger.debug("No content directory %s, skipping", source_dir)
            continue

        image_name = f"{mount_name}.img"
        table[image_name] = PartitionEntry(
            image_name=image_name,
            source_dir=source_dir,
            image_file=root.images_dir / image_name,
            partition=partition,
        )

    logger.debug("Partition table: %s", list(table))
    return table


def parse_extra_args(text: str) -> dict[str, str]:
    """Parse per-image extra build arguments.

    Args:
        text: Content of the extra arguments file.

    Returns:
        Mapping of image name to its (stripped) argument string.
    """
    extra: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if ":" not in line:
            continue
        name, args = line.split(":", 1)
        name = name.strip()
        if name:
            extra[name] = args.strip()
    return extra


__all__ = [
    "DEVICE_PATH_PREFIX",
    "parse_blob_map",
    "parse_extra_args",
    "parse_partition_table",
]
