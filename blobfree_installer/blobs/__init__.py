"""Blob handling module.

This module handles:
- Pulling proprietary blobs from the live device, one at a time
- Injecting pulled blobs into the distribution content tree
"""

from blobfree_installer.blobs.inject import inject_blobs
from blobfree_installer.blobs.pull import PullReport, pull_blobs

__all__ = ["PullReport", "inject_blobs", "pull_blobs"]
