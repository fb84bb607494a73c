"""Distribution archive extraction.

This module handles:
- Unpacking a distribution zip into its per-product working root
- Verifying the required manifest files are present
- Unpacking the nested content package into ``content/``
- Loading the parsed manifests of an extracted distribution

A distribution archive is named ``PRODUCT.<anything>.zip``; its working
root is ``<scratch>/PRODUCT`` so repeated installs of the same product
reuse the same directory.
"""

from __future__ import annotations

import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from blobfree_installer.catalog.io import load_catalog
from blobfree_installer.catalog.schema import Catalog
from blobfree_installer.distribution.manifests import (
    parse_blob_map,
    parse_extra_args,
    parse_partition_table,
)
from blobfree_installer.distribution.models import (
    BLOB_MAP_FILE,
    BLOBFREE_ARCHIVE,
    DEVICES_FILE,
    EXTRA_ARGS_FILE,
    PARTITION_TABLE_FILE,
    REQUIRED_MANIFESTS,
    BlobMap,
    PartitionTable,
    WorkingRoot,
)
from blobfree_installer.errors import ArchiveCorruptError, DistributionError

logger = logging.getLogger(__name__)


@dataclass
class Distribution:
    """Parsed manifests of an extracted distribution.

    Attributes:
        root: Working root.
        blob_map: Blobs to pull and inject.
        partitions: Partition table, mutable so callers can drop entries.
        extra_args: Per-image extra build arguments.
        catalog: Device descriptors shipped with the distribution.
    """

    root: WorkingRoot
    blob_map: BlobMap
    partitions: PartitionTable
    extra_args: dict[str, str]
    catalog: Catalog


def product_name(archive_path: Path) -> str:
    """Derive the product name from an archive file name.

    Args:
        archive_path: Distribution archive path.

    Returns:
        Text before the first ``.`` of the file name.

    Raises:
        DistributionError: If the name yields an empty product.
    """
    name = archive_path.name.split(".")[0]
    if not name:
        raise DistributionError(f"Cannot derive product name from {archive_path.name}")
    return name


def _ensure_dir(path: Path) -> None:
    if path.exists() and not path.is_dir():
        raise DistributionError(f"{path} exists but is not a directory")
    path.mkdir(mode=0o700, parents=True, exist_ok=True)


def _safe_extract(archive_path: Path, dest_dir: Path) -> list[str]:
    """Extract a zip archive, refusing members that escape dest_dir.

    Returns:
        Names of the extracted members.

    Raises:
        ArchiveCorruptError: If the archive is unreadable or unsafe.
    """
    try:
        with zipfile.ZipFile(archive_path) as zf:
            names = zf.namelist()
            # Security: prevent path traversal
            for name in names:
                member_path = PurePosixPath(name.replace("\\", "/"))
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ArchiveCorruptError(
                        f"Refusing to extract {name} from {archive_path.name}: "
                        "path traversal detected"
                    )
            zf.extractall(dest_dir)
    except zipfile.BadZipFile as e:
        raise ArchiveCorruptError(f"{archive_path.name} is not a valid zip: {e}") from e
    except FileNotFoundError as e:
        raise ArchiveCorruptError(f"{archive_path} not found") from e
    return names


def extract_distribution(archive_path: Path, scratch_dir: Path) -> WorkingRoot:
    """Unpack a distribution archive into its working root.

    Args:
        archive_path: Distribution zip file.
        scratch_dir: Scratch root holding one working root per product.

    Returns:
        WorkingRoot with ``content/``, ``blobs/`` and ``images/`` created.

    Raises:
        ArchiveCorruptError: If the archive is unreadable, unsafe, or a
            required manifest is missing after unpacking.
        DistributionError: If a working directory path is not a directory.
    """
    product = product_name(archive_path)
    root = WorkingRoot(path=scratch_dir / product, product=product)
    logger.info("Extracting %s to %s", archive_path.name, root.path)

    _ensure_dir(root.path)
    _safe_extract(archive_path, root.path)

    missing = [name for name in REQUIRED_MANIFESTS if not root.manifest(name).is_file()]
    if missing:
        raise ArchiveCorruptError(
            f"{archive_path.name} is missing required file(s): {', '.join(missing)}",
            missing=missing,
        )

    _ensure_dir(root.content_dir)
    _ensure_dir(root.images_dir)
    _ensure_dir(root.blobs_dir)

    logger.info("Extracting content package %s", BLOBFREE_ARCHIVE)
    _safe_extract(root.manifest(BLOBFREE_ARCHIVE), root.content_dir)

    return root


def load_distribution(root: WorkingRoot) -> Distribution:
    """Parse the manifests of an extracted distribution.

    Args:
        root: Working root returned by extract_distribution().

    Returns:
        Distribution with all manifests parsed.

    Raises:
        ArchiveCorruptError: If a manifest cannot be read.
        CatalogError: If devices.json is not a valid catalog.
    """
    try:
        blob_map = parse_blob_map(
            root.manifest(BLOB_MAP_FILE).read_text(encoding="utf-8")
        )
        partitions = parse_partition_table(
            root.manifest(PARTITION_TABLE_FILE).read_text(encoding="utf-8"), root
        )
        extra_args = parse_extra_args(
            root.manifest(EXTRA_ARGS_FILE).read_text(encoding="utf-8")
        )
    except (OSError, UnicodeDecodeError) as e:
        raise ArchiveCorruptError(f"Cannot read manifest: {e}") from e

    catalog = load_catalog(root.manifest(DEVICES_FILE))

    logger.info(
        "Distribution %s: %d blob(s), %d partition(s), %d descriptor(s)",
        root.product,
        len(blob_map.sources),
        len(partitions),
        len(catalog),
    )
    return Distribution(
        root=root,
        blob_map=blob_map,
        partitions=partitions,
        extra_args=extra_args,
        catalog=catalog,
    )


__all__ = [
    "Distribution",
    "extract_distribution",
    "load_distribution",
    "product_name",
]
