"""External imaging tool detection and execution.

This module handles:
- Locating mkbootfs, mkbootimg and make_ext4fs
- Executing a tool with output captured to a per-image log file
- Enforcing tool timeouts

Tools are looked up in the configured tools directory (directly or in a
per-platform subdirectory), then on PATH.
"""

from __future__ import annotations

import logging
import platform
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from blobfree_installer.errors import ImageBuildError, ToolNotFoundError

logger = logging.getLogger(__name__)

MKBOOTFS = "mkbootfs"
MKBOOTIMG = "mkbootimg"
MAKE_EXT4FS = "make_ext4fs"

TOOLS = (MKBOOTFS, MKBOOTIMG, MAKE_EXT4FS)


@dataclass
class ToolRun:
    """Result of one tool execution.

    Attributes:
        exit_code: Process exit code (informational only).
        log_path: Path to the tool log file.
        command: The command that was executed.
        started_at: Start time.
        finished_at: Finish time.
        stdout: Captured stdout when requested.
    """

    exit_code: int
    log_path: Path
    command: str
    started_at: datetime
    finished_at: datetime
    stdout: bytes | None = None


def platform_subdir() -> str | None:
    """Return the per-platform tools subdirectory name for this host."""
    system = platform.system()
    if system == "Linux":
        return "linux64" if platform.machine() in ("x86_64", "AMD64") else "linux"
    if system == "Darwin":
        return "mac64"
    if system == "Windows":
        return "win32"
    return None


def _binary_name(tool: str) -> str:
    return f"{tool}.exe" if platform.system() == "Windows" else tool


def find_tool(tool: str, tools_dir: Path | None = None) -> Path | None:
    """Locate one imaging tool.

    Args:
        tool: Tool name.
        tools_dir: Optional directory searched before PATH.

    Returns:
        Path to the executable, or None if not found.
    """
    binary = _binary_name(tool)
    if tools_dir is not None:
        candidates = [tools_dir / binary]
        subdir = platform_subdir()
        if subdir:
            candidates.append(tools_dir / subdir / binary)
        for candidate in candidates:
            if candidate.is_file():
                return candidate

    found = shutil.which(binary)
    return Path(found) if found else None


class ImagingTools:
    """Resolved paths of the imaging tools plus a runner."""

    def __init__(self, tools_dir: Path | None = None, timeout: int | None = None) -> None:
        self.tools_dir = tools_dir
        self.timeout = timeout
        self.paths: dict[str, Path] = {}
        self.detect()

    def detect(self) -> dict[str, Path]:
        """Look up every tool; missing ones are logged, not fatal."""
        for tool in TOOLS:
            path = find_tool(tool, self.tools_dir)
            if path is None:
                logger.warning("Imaging tool %s not found", tool)
                continue
            logger.debug("Tool %s at %s", tool, path)
            self.paths[tool] = path
        return self.paths

    def get(self, tool: str) -> Path:
        """Return the path of a tool.

        Raises:
            ToolNotFoundError: If the tool was not detected.
        """
        if tool not in self.paths:
            raise ToolNotFoundError(tool)
        return self.paths[tool]

    def missing(self) -> list[str]:
        return [t for t in TOOLS if t not in self.paths]

    def run(
        self,
        tool: str,
        args: list[str],
        log_path: Path,
        cwd: Path | None = None,
        capture_stdout: bool = False,
    ) -> ToolRun:
        """Execute a tool with its output written to a log file.

        Args:
            tool: Tool name.
            args: Tool arguments.
            log_path: Log file to write.
            cwd: Working directory.
            capture_stdout: Return stdout as bytes instead of logging it.

        Returns:
            ToolRun with execution details.

        Raises:
            ToolNotFoundError: If the tool was not detected.
            ImageBuildError: If the tool times out or fails to start.
        """
        cmd = [str(self.get(tool)), *args]
        cmd_str = shlex.join(cmd)
        logger.info("Executing: %s", cmd_str)

        log_path.parent.mkdir(parents=True, exist_ok=True)
        started_at = datetime.now(timezone.utc)
        stdout: bytes | None = None

        try:
            with log_path.open("w") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write(f"# CWD: {cwd or Path.cwd()}\n")
                log_file.write("# " + "=" * 70 + "\n\n")
                log_file.flush()

                result = subprocess.run(
                    cmd,
                    cwd=cwd,
                    stdout=subprocess.PIPE if capture_stdout else log_file,
                    stderr=log_file if capture_stdout else subprocess.STDOUT,
                    timeout=self.timeout,
                    check=False,
                )
                exit_code = result.returncode
                if capture_stdout:
                    stdout = result.stdout

        except subprocess.TimeoutExpired as e:
            message = f"{tool} timed out after {self.timeout} seconds"
            logger.error("%s. See log: %s", message, log_path)
            with log_path.open("a") as log_file:
                log_file.write(f"\n# TIMEOUT after {self.timeout} seconds\n")
            raise ImageBuildError(message) from e

        except OSError as e:
            message = f"Failed to execute {tool}: {e}"
            logger.error(message)
            raise ImageBuildError(message) from e

        finished_at = datetime.now(timezone.utc)
        with log_path.open("a") as log_file:
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n")

        if exit_code != 0:
            logger.warning("%s exited with code %d. See log: %s", tool, exit_code, log_path)

        return ToolRun(
            exit_code=exit_code,
            log_path=log_path,
            command=cmd_str,
            started_at=started_at,
            finished_at=finished_at,
            stdout=stdout,
        )


__all__ = [
    "MAKE_EXT4FS",
    "MKBOOTFS",
    "MKBOOTIMG",
    "TOOLS",
    "ImagingTools",
    "ToolRun",
    "find_tool",
    "platform_subdir",
]
