"""Distribution package module.

This module handles:
- Extracting distribution archives into per-product working roots
- Parsing the blob map, partition table and extra build arguments
"""

from blobfree_installer.distribution.extract import (
    Distribution,
    extract_distribution,
    load_distribution,
    product_name,
)
from blobfree_installer.distribution.manifests import (
    parse_blob_map,
    parse_extra_args,
    parse_partition_table,
)
from blobfree_installer.distribution.models import (
    BlobMap,
    BlobMapEntry,
    PartitionEntry,
    PartitionTable,
    WorkingRoot,
)

__all__ = [
    "BlobMap",
    "BlobMapEntry",
    "Distribution",
    "PartitionEntry",
    "PartitionTable",
    "WorkingRoot",
    "extract_distribution",
    "load_distribution",
    "parse_blob_map",
    "parse_extra_args",
    "parse_partition_table",
    "product_name",
]
