"""Install pipeline module.

This module handles:
- The flash stage state machine (FlashOrchestrator)
- The end-to-end install pipeline (Installer)
- Per-product install locking
- Install records and the service layer
"""

from blobfree_installer.installer.orchestrator import (
    FlashOrchestrator,
    FlashReport,
    PartitionOutcome,
)
from blobfree_installer.installer.pipeline import (
    InstallResult,
    Installer,
    PipelineContext,
)

__all__ = [
    "FlashOrchestrator",
    "FlashReport",
    "InstallResult",
    "Installer",
    "PartitionOutcome",
    "PipelineContext",
]
