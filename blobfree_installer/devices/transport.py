"""Subprocess transports for adb (normal mode) and fastboot (flash mode).

This module handles:
- Running adb/fastboot commands with timeouts
- Parsing `getprop`, `getvar` and device list output
- Raising TransportError when a command fails

The wire protocols themselves are left to the adb and fastboot executables.
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
from typing import Protocol

from blobfree_installer.errors import TransportError

logger = logging.getLogger(__name__)

# `[ro.product.model]: [FakeDevice 2.0]`
_GETPROP_LINE = re.compile(r"^\[(?P<key>[^\]]*)\]: \[(?P<value>.*)\]$")


class NormalModeTransport(Protocol):
    """Operations available while a device is in normal (debug) mode."""

    serial: str

    def shell(self, command: str) -> str: ...

    def pull(self, remote_path: str, local_path: str) -> None: ...

    def get_model(self) -> str: ...

    def reboot_to_flash_mode(self) -> None: ...

    def summon_elevated_access(self) -> None: ...

    def is_elevated(self) -> bool: ...


class FlashModeTransport(Protocol):
    """Operations available while a device is in flash mode."""

    serial: str

    def get_variable(self, name: str) -> str: ...

    def write_partition(self, partition: str, image_path: str) -> None: ...

    def reboot_to_normal_mode(self) -> None: ...


def run_command(
    cmd: list[str],
    timeout: float | None = None,
    text: bool = True,
) -> subprocess.CompletedProcess:
    """Run a transport command and return the completed process.

    Args:
        cmd: Command as a list of strings.
        timeout: Command timeout in seconds.
        text: Decode stdout/stderr as text; undecodable bytes are replaced.

    Returns:
        CompletedProcess (the exit code is not checked here).

    Raises:
        TransportError: If the command times out or cannot be started.
    """
    cmd_str = shlex.join(cmd)
    logger.debug("Executing: %s", cmd_str)

    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=text,
            errors="replace" if text else None,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise TransportError(
            f"Command timed out after {timeout}s: {cmd_str}", returncode=-1
        ) from e
    except OSError as e:
        raise TransportError(f"Failed to execute {cmd_str}: {e}") from e


def _check(result: subprocess.CompletedProcess, what: str) -> str:
    """Return combined output of a successful command or raise."""
    output = (result.stdout or "") + (result.stderr or "")
    if result.returncode != 0:
        raise TransportError(
            f"{what} failed with exit code {result.returncode}: {output.strip()}",
            returncode=result.returncode,
            output=output,
        )
    return output


def parse_getprop(output: str) -> dict[str, str]:
    """Parse `getprop` output into a property mapping.

    Lines not of the form `[key]: [value]` are ignored.

    Args:
        output: Raw `getprop` output.

    Returns:
        Mapping of property names to values.
    """
    properties: dict[str, str] = {}
    for raw in output.splitlines():
        match = _GETPROP_LINE.match(raw.strip())
        if match:
            properties[match.group("key")] = match.group("value")
    return properties


def parse_getvar(output: str, name: str) -> str | None:
    """Extract a variable value from `fastboot getvar` output.

    fastboot prints `name: value` (usually on stderr) followed by a
    `finished. total time` trailer.

    Args:
        output: Combined stdout/stderr of `fastboot getvar`.
        name: Variable name that was queried.

    Returns:
        The value, or None if the variable was not reported.
    """
    prefix = f"{name}:"
    for raw in output.splitlines():
        line = raw.strip()
        if line.startswith(prefix):
            return line[len(prefix) :].strip()
    return None


def parse_device_list(output: str, state: str) -> list[str]:
    """Parse `adb devices` / `fastboot devices` output.

    Args:
        output: Raw command output.
        state: Device state column to keep ("device" for adb, "fastboot").

    Returns:
        Serial numbers in the requested state, in listed order.
    """
    serials: list[str] = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) >= 2 and parts[1] == state and parts[0] not in serials:
            serials.append(parts[0])
    return serials


def list_adb_devices(adb_path: str = "adb", timeout: float = 10) -> list[str]:
    """List serials of devices attached in normal (adb) mode."""
    result = run_command([adb_path, "devices"], timeout=timeout)
    return parse_device_list(_check(result, "adb devices"), "device")


def list_fastboot_devices(fastboot_path: str = "fastboot", timeout: float = 10) -> list[str]:
    """List serials of devices attached in flash (fastboot) mode."""
    result = run_command([fastboot_path, "devices"], timeout=timeout)
    return parse_device_list(_check(result, "fastboot devices"), "fastboot")


class AdbTransport:
    """Normal-mode transport backed by the adb executable."""

    def __init__(
        self,
        serial: str,
        adb_path: str = "adb",
        timeout: float = 60,
        pull_timeout: float = 300,
    ) -> None:
        self.serial = serial
        self.adb_path = adb_path
        self.timeout = timeout
        self.pull_timeout = pull_timeout

    def _adb(self, args: list[str], timeout: float | None = None) -> str:
        cmd = [self.adb_path, "-s", self.serial, *args]
        result = run_command(cmd, timeout=timeout or self.timeout)
        return _check(result, f"adb {args[0]}")

    def shell(self, command: str) -> str:
        result = run_command(
            [self.adb_path, "-s", self.serial, "shell", command],
            timeout=self.timeout,
        )
        # Shell output is stdout only; stderr carries adb diagnostics
        if result.returncode != 0 and not result.stdout:
            raise TransportError(
                f"adb shell {command!r} failed: {(result.stderr or '').strip()}",
                returncode=result.returncode,
                output=result.stderr or "",
            )
        return result.stdout or ""

    def pull(self, remote_path: str, local_path: str) -> None:
        self._adb(["pull", remote_path, local_path], timeout=self.pull_timeout)

    def get_model(self) -> str:
        return self.shell("getprop ro.product.model").strip()

    def reboot_to_flash_mode(self) -> None:
        self._adb(["reboot", "bootloader"])

    def summon_elevated_access(self) -> None:
        self._adb(["root"])

    def is_elevated(self) -> bool:
        return self.shell("id -u").strip() == "0"


class FastbootTransport:
    """Flash-mode transport backed by the fastboot executable."""

    def __init__(
        self,
        serial: str,
        fastboot_path: str = "fastboot",
        timeout: float = 60,
        flash_timeout: float = 1800,
    ) -> None:
        self.serial = serial
        self.fastboot_path = fastboot_path
        self.timeout = timeout
        self.flash_timeout = flash_timeout

    def _fastboot(self, args: list[str], timeout: float | None = None) -> str:
        cmd = [self.fastboot_path, "-s", self.serial, *args]
        result = run_command(cmd, timeout=timeout or self.timeout)
        return _check(result, f"fastboot {args[0]}")

    def get_variable(self, name: str) -> str:
        output = self._fastboot(["getvar", name])
        value = parse_getvar(output, name)
        if value is None:
            raise TransportError(f"fastboot getvar {name}: no value reported", output=output)
        return value

    def write_partition(self, partition: str, image_path: str) -> None:
        logger.info("Flashing %s with %s on %s", partition, image_path, self.serial)
        self._fastboot(["flash", partition, image_path], timeout=self.flash_timeout)

    def reboot_to_normal_mode(self) -> None:
        self._fastboot(["reboot"])


__all__ = [
    "AdbTransport",
    "FastbootTransport",
    "FlashModeTransport",
    "NormalModeTransport",
    "list_adb_devices",
    "list_fastboot_devices",
    "parse_device_list",
    "parse_getprop",
    "parse_getvar",
    "run_command",
]
