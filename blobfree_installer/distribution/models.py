"""Data classes describing an unpacked distribution."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

# Manifest file names at the root of a distribution archive
BLOBFREE_ARCHIVE = "blobfree.zip"
BLOB_MAP_FILE = "blobs-toinject.txt"
EXTRA_ARGS_FILE = "cmdline-fs.txt"
DEVICES_FILE = "devices.json"
PARTITION_TABLE_FILE = "recovery.fstab"

REQUIRED_MANIFESTS = (
    BLOBFREE_ARCHIVE,
    BLOB_MAP_FILE,
    EXTRA_ARGS_FILE,
    DEVICES_FILE,
    PARTITION_TABLE_FILE,
)

# Subdirectories of a working root
CONTENT_DIR = "content"
BLOBS_DIR = "blobs"
IMAGES_DIR = "images"


@dataclass(frozen=True)
class WorkingRoot:
    """Scratch directory holding one distribution's files.

    Attributes:
        path: Working root directory (``<scratch>/<product>``).
        product: Product name derived from the archive file name.
    """

    path: Path
    product: str

    @property
    def content_dir(self) -> Path:
        return self.path / CONTENT_DIR

    @property
    def blobs_dir(self) -> Path:
        return self.path / BLOBS_DIR

    @property
    def images_dir(self) -> Path:
        return self.path / IMAGES_DIR

    def manifest(self, name: str) -> Path:
        """Path of a manifest file at the working root."""
        return self.path / name


@dataclass(frozen=True)
class BlobMapEntry:
    """One ``source:target`` line of the blob map.

    Attributes:
        source: Absolute path of the blob on the device.
        target: Path of the blob inside the content tree.
    """

    source: str
    target: str

    @property
    def source_rel(self) -> str:
        return self.source.lstrip("/")

    @property
    def target_rel(self) -> str:
        return self.target.lstrip("/")


@dataclass
class BlobMap:
    """Parsed blob map, in file order."""

    entries: list[BlobMapEntry] = field(default_factory=list)

    @property
    def sources(self) -> list[str]:
        """Distinct source paths, in first-seen order."""
        return list(dict.fromkeys(e.source for e in self.entries))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


@dataclass(frozen=True)
class PartitionEntry:
    """One usable row of the partition table.

    Attributes:
        image_name: Image file name, e.g. ``system.img``.
        source_dir: Content directory the image is built from.
        image_file: Output image path under the images directory.
        partition: Physical partition name to flash.
    """

    image_name: str
    source_dir: Path
    image_file: Path
    partition: str


# Keyed by image name, in table order
PartitionTable = dict[str, PartitionEntry]


__all__ = [
    "BLOBFREE_ARCHIVE",
    "BLOBS_DIR",
    "BLOB_MAP_FILE",
    "CONTENT_DIR",
    "DEVICES_FILE",
    "EXTRA_ARGS_FILE",
    "IMAGES_DIR",
    "PARTITION_TABLE_FILE",
    "REQUIRED_MANIFESTS",
    "BlobMap",
    "BlobMapEntry",
    "PartitionEntry",
    "PartitionTable",
    "WorkingRoot",
]
