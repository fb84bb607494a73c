"""Image building module.

This module handles:
- Locating and running the external imaging tools
- Building ramdisk, bootable and filesystem partition images
"""

from blobfree_installer.images.builder import (
    BuildReport,
    ImageBuilder,
    adjust_data_partition,
    build_images,
    ensure_images,
)
from blobfree_installer.images.tools import ImagingTools, ToolRun

__all__ = [
    "BuildReport",
    "ImageBuilder",
    "ImagingTools",
    "ToolRun",
    "adjust_data_partition",
    "build_images",
    "ensure_images",
]
