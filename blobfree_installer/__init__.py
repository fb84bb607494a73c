"""Blob-free Installer - re-flash devices from blob-free distributions.

This package extracts a blob-free distribution, pulls the proprietary blobs
from the connected device, rebuilds the partition images and flashes them
back through the device's flash mode.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
