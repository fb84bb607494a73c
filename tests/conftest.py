"""Shared fixtures: fake device transports, imaging tools and distributions."""

import asyncio
import json
import zipfile
from pathlib import Path

import pytest

from blobfree_installer.config import Settings
from blobfree_installer.devices.handle import FlashModeDevice, NormalModeDevice
from blobfree_installer.devices.registry import DeviceRegistry
from blobfree_installer.errors import TransportError
from blobfree_installer.images.tools import MAKE_EXT4FS, MKBOOTFS, MKBOOTIMG, TOOLS
from blobfree_installer.images.tools import ImagingTools, ToolRun

FAKE_SERIAL = "FAKE0001"
FAKE_MODEL = "FakeDevice 2.0"
FAKE_PRODUCT = "FD2"

FAKE_PROPERTIES = {
    "ro.product.model": FAKE_MODEL,
    "ro.product.device": "fakedevice",
    "ro.product.manufacturer": "Fake",
    "ro.build.version.sdk": "22",
}

FAKE_BLOBS = {
    "/system/lib/libfake.so": b"\x7fELF fake library",
    "/system/vendor/firmware/fw.bin": b"firmware",
    "/system/etc/fake.conf": b"key=value\n",
}

TARGET_OS_MARKER = "/system/b2g/b2g"


class FakeNormalTransport:
    """In-memory stand-in for an adb connection."""

    def __init__(
        self,
        serial: str = FAKE_SERIAL,
        properties: dict[str, str] | None = None,
        files: dict[str, bytes] | None = None,
        elevated: bool = False,
        fail_pulls: tuple[str, ...] = (),
    ) -> None:
        self.serial = serial
        self.properties = dict(FAKE_PROPERTIES if properties is None else properties)
        self.files = dict(FAKE_BLOBS if files is None else files)
        self.elevated = elevated
        self.fail_pulls = fail_pulls
        self.calls: list[tuple[str, ...]] = []
        self.rebooted_to_flash = False

    def shell(self, command: str) -> str:
        self.calls.append(("shell", command))
        if command == "getprop":
            return "\n".join(f"[{k}]: [{v}]" for k, v in self.properties.items()) + "\n"
        if command.startswith("ls "):
            path = command[3:]
            if path in self.files:
                return f"{path}\n"
            return f"ls: {path}: No such file or directory\n"
        if command == "id -u":
            return "0\n" if self.elevated else "2000\n"
        return ""

    def pull(self, remote_path: str, local_path: str) -> None:
        self.calls.append(("pull", remote_path))
        if remote_path in self.fail_pulls or remote_path not in self.files:
            raise TransportError(f"remote object '{remote_path}' does not exist")
        Path(local_path).write_bytes(self.files[remote_path])

    def get_model(self) -> str:
        return self.properties.get("ro.product.model", "")

    def reboot_to_flash_mode(self) -> None:
        self.calls.append(("reboot_to_flash_mode",))
        self.rebooted_to_flash = True

    def summon_elevated_access(self) -> None:
        self.calls.append(("summon_elevated_access",))
        self.elevated = True

    def is_elevated(self) -> bool:
        return self.elevated


class FakeFlashTransport:
    """In-memory stand-in for a fastboot connection."""

    def __init__(
        self,
        serial: str = FAKE_SERIAL,
        variables: dict[str, str] | None = None,
        fail_partitions: tuple[str, ...] = (),
    ) -> None:
        self.serial = serial
        self.variables = (
            {"product": FAKE_PRODUCT, "serialno": serial} if variables is None else variables
        )
        self.fail_partitions = fail_partitions
        self.written: list[tuple[str, str]] = []
        self.rebooted = False

    def get_variable(self, name: str) -> str:
        if name not in self.variables:
            raise TransportError(f"fastboot getvar {name}: no value reported")
        return self.variables[name]

    def write_partition(self, partition: str, image_path: str) -> None:
        self.written.append((partition, image_path))
        if partition in self.fail_partitions:
            raise TransportError(f"FAILED (remote: partition '{partition}' write failed)")

    def reboot_to_normal_mode(self) -> None:
        self.rebooted = True


class FakeBus:
    """Simulates the device re-enumerating when it changes mode.

    Used as the settle-delay sleep: after an elevated-access request the
    normal-mode handle is replaced (adb restarts), and after a reboot into
    flash mode the device comes back as a flash-mode handle.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        normal: FakeNormalTransport,
        flash: FakeFlashTransport,
        reappear: bool = True,
    ) -> None:
        self.registry = registry
        self.normal = normal
        self.flash = flash
        self.reappear = reappear
        self.delays: list[float] = []

    def plug_normal(self) -> None:
        self.registry.attach(NormalModeDevice(self.normal))

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        if self.normal.rebooted_to_flash:
            if self.normal.serial in {h.serial for h in self.registry.attached}:
                self.registry.detach(self.normal.serial)
                if self.reappear:
                    self.registry.attach(FlashModeDevice(self.flash))
        else:
            self.registry.detach(self.normal.serial)
            self.plug_normal()
        await asyncio.sleep(0)


class FakeImagingTools(ImagingTools):
    """Imaging tools that create their output files without running anything."""

    def __init__(self, fail: tuple[str, ...] = ()) -> None:
        self.tools_dir = None
        self.timeout = None
        self.paths = {tool: Path("/fake/bin") / tool for tool in TOOLS}
        self.fail = fail
        self.calls: list[tuple[str, list[str]]] = []

    def run(self, tool, args, log_path, cwd=None, capture_stdout=False):
        self.calls.append((tool, list(args)))
        output: Path | None = None
        if tool == MKBOOTIMG:
            output = Path(args[args.index("--output") + 1])
        elif tool == MAKE_EXT4FS:
            output = Path(args[-2])
        if output is not None and output.name not in self.fail:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(f"{tool} image".encode())
        return ToolRun(
            exit_code=0 if output is None or output.name not in self.fail else 1,
            log_path=log_path,
            command=f"{tool} {' '.join(args)}",
            started_at=None,
            finished_at=None,
            stdout=b"070701 fake cpio" if tool == MKBOOTFS else None,
        )

    def built(self, tool: str) -> list[list[str]]:
        return [args for name, args in self.calls if name == tool]


FSTAB = """\
# Android fstab file.
# <src>                                          <mnt_point>  <type>  <mnt_flags>  <fs_mgr_flags>
/dev/block/platform/msm_sdcc.1/by-name/boot      /boot        emmc    defaults     defaults
/dev/block/platform/msm_sdcc.1/by-name/recovery  /recovery    emmc    defaults     defaults
/dev/block/platform/msm_sdcc.1/by-name/system    /system      ext4    ro,barrier=1 wait
/dev/block/platform/msm_sdcc.1/by-name/cache     /cache       ext4    noatime      wait
/dev/block/platform/msm_sdcc.1/by-name/userdata  /data        ext4    noatime      wait
"""

BLOB_MAP = """\
/system/lib/libfake.so:/SYSTEM/lib/libfake.so
/system/vendor/firmware/fw.bin:/SYSTEM/vendor/firmware/fw.bin
/system/lib/libfake.so:/SYSTEM/lib/hw/libfake.so
/system/etc/fake.conf:/SYSTEM/etc/fake.conf
not a blob line
:/SYSTEM/lib/empty-source.so
"""

EXTRA_ARGS = """\
system.img: -l 838860800 -a system
userdata.img: -l 1073741824 -a data
boot.img: --ramdisk_offset 0x01000000
"""

CATALOG = [
    {
        "name": "Fake Device 2.0",
        "description": "Fake device used in tests",
        "url": "local",
        "adb": {"ro.product.model": [FAKE_MODEL]},
        "fastboot": {"product": FAKE_PRODUCT},
        "requiresRoot": True,
    }
]


def _bootable_dir(name: str) -> dict[str, bytes]:
    return {
        f"{name}/kernel": b"kernel",
        f"{name}/cmdline": b"console=ttyHSL0,115200 androidboot.hardware=fake\n",
        f"{name}/pagesize": b"2048\n",
        f"{name}/base": b"0x00000000\n",
        f"{name}/RAMDISK/init": b"init",
        f"{name}/RAMDISK/init.rc": b"on boot\n",
    }


DEFAULT_CONTENT: dict[str, bytes] = {
    **_bootable_dir("BOOT"),
    **_bootable_dir("RECOVERY"),
    "SYSTEM/build.prop": b"ro.build.id=fake\n",
    "SYSTEM/b2g/b2g": b"b2g",
    "DATA/.keep": b"",
}


def make_distribution(
    directory: Path,
    name: str = "fakedevice.blobfree-dist.zip",
    content: dict[str, bytes] | None = None,
    fstab: str = FSTAB,
    blob_map: str | bytes = BLOB_MAP,
    extra_args: str = EXTRA_ARGS,
    catalog: list | None = None,
    omit: tuple[str, ...] = (),
) -> Path:
    """Write a distribution archive and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    content_zip = directory / "blobfree.zip"
    with zipfile.ZipFile(content_zip, "w") as zf:
        for path, data in (DEFAULT_CONTENT if content is None else content).items():
            zf.writestr(path, data)

    members = {
        "blobfree.zip": content_zip.read_bytes(),
        "blobs-toinject.txt": blob_map if isinstance(blob_map, bytes) else blob_map.encode(),
        "cmdline-fs.txt": extra_args.encode(),
        "devices.json": json.dumps(CATALOG if catalog is None else catalog).encode(),
        "recovery.fstab": fstab.encode(),
    }
    archive = directory / name
    with zipfile.ZipFile(archive, "w") as zf:
        for member, data in members.items():
            if member not in omit:
                zf.writestr(member, data)
    content_zip.unlink()
    return archive


@pytest.fixture
def normal_transport() -> FakeNormalTransport:
    return FakeNormalTransport()


@pytest.fixture
def flash_transport() -> FakeFlashTransport:
    return FakeFlashTransport()


@pytest.fixture
def fake_tools() -> FakeImagingTools:
    return FakeImagingTools()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with a private scratch root and no settle delays."""
    return Settings(
        scratch_dir=tmp_path / "scratch",
        db_url="sqlite:///:memory:",
        settle_delay=0,
        elevation_settle_delay=0,
        resolve_timeout=5,
        target_os_marker=TARGET_OS_MARKER,
    )


@pytest.fixture
def distribution_archive(tmp_path: Path) -> Path:
    return make_distribution(tmp_path / "downloads")
