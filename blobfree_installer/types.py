"""Shared type definitions for blobfree_installer.

This module contains enums and type aliases shared across subpackages
to avoid circular imports.
"""

from collections.abc import Callable
from enum import Enum


class DeviceMode(str, Enum):
    """Transport mode a device is attached in."""

    NORMAL = "normal"
    FLASH = "flash"


class PipelineState(str, Enum):
    """States of the flash stage state machine."""

    IDLE = "idle"
    REBOOTING_TO_FLASH = "rebooting-to-flash"
    AWAITING_FLASH_DEVICE = "awaiting-flash-device"
    FLASHING = "flashing"
    REBOOTING_TO_NORMAL = "rebooting-to-normal"
    DONE = "done"
    FAILED = "failed"


class InstallStage(str, Enum):
    """Stages of one install run, in execution order."""

    EXTRACT = "extract"
    DETECT = "detect"
    ELEVATE = "elevate"
    PULL_BLOBS = "pull-blobs"
    INJECT_BLOBS = "inject-blobs"
    BUILD_IMAGES = "build-images"
    FLASH = "flash"
    CLEANUP = "cleanup"


class InstallStatus(str, Enum):
    """Status of an install run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PartitionStatus(str, Enum):
    """Outcome of writing one partition."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# (index, total, item name)
ProgressCallback = Callable[[int, int, str], None]


__all__ = [
    "DeviceMode",
    "InstallStage",
    "InstallStatus",
    "PartitionStatus",
    "PipelineState",
    "ProgressCallback",
]
