"""Allow running as ``python -m blobfree_installer``."""

from blobfree_installer.cli import app

app(prog_name="blobfree")
