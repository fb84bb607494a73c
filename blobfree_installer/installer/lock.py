"""Per-product install lock.

Installs of the same product share one working root, so only one of them
may run at a time. The lock is an advisory ``flock`` on a file under the
scratch root and is released when the holder exits, even on a crash.
"""

import fcntl
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from blobfree_installer.errors import InstallInProgressError

logger = logging.getLogger(__name__)


def lock_path(scratch_dir: Path, product: str) -> Path:
    """Return the lock file used for a product."""
    safe_name = product.replace("/", "_").replace(":", "_")[:64]
    return scratch_dir / f".install_{safe_name}.lock"


@contextmanager
def install_lock(scratch_dir: Path, product: str) -> Iterator[None]:
    """Hold the install lock for a product.

    Args:
        scratch_dir: Scratch root.
        product: Product name.

    Yields:
        None while the lock is held.

    Raises:
        InstallInProgressError: If another process holds the lock.
    """
    scratch_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_path(scratch_dir, product)

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise InstallInProgressError(product) from None
        lock_acquired = True
        logger.debug("Install lock acquired for %s", product)
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Install lock released for %s", product)
        os.close(fd)


__all__ = ["install_lock", "lock_path"]
