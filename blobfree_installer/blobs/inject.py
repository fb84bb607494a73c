"""Copy pulled blobs into the distribution content tree."""

import logging
import shutil

from blobfree_installer.distribution.models import BlobMap, WorkingRoot

logger = logging.getLogger(__name__)


def inject_blobs(root: WorkingRoot, blob_map: BlobMap) -> list[str]:
    """Copy pulled blobs to their mapped targets.

    Targets that already exist are left alone, so injecting twice is a
    no-op the second time. Missing sources and copy failures are logged
    and skipped.

    Args:
        root: Working root.
        blob_map: Parsed blob map.

    Returns:
        Targets copied in this run, in blob map order.
    """
    injected: list[str] = []
    for entry in blob_map:
        source = root.blobs_dir / entry.source_rel
        target = root.content_dir / entry.target_rel

        if target.exists():
            continue
        if not source.is_file():
            logger.warning("Blob %s was not pulled, cannot inject %s", entry.source, entry.target)
            continue

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as e:
            logger.warning("Failed to copy %s to %s: %s", source, target, e)
            continue

        logger.debug("Injected %s -> %s", entry.source, entry.target)
        injected.append(entry.target)

    logger.info("Injected %d blob(s)", len(injected))
    return injected


__all__ = ["inject_blobs"]
