"""End-to-end install pipeline.

An install runs these stages in order, threading a PipelineContext
through them:

1. EXTRACT: unpack the distribution and parse its manifests
2. DETECT: resolve the current device and match it against the remote
   catalog, or the distribution's own one
3. ELEVATE: request elevated access if required, check for the target OS
4. PULL_BLOBS: pull blobs from the device, one at a time
5. INJECT_BLOBS: copy pulled blobs into the content tree
6. BUILD_IMAGES: build every partition image concurrently
7. FLASH: reboot to flash mode, write partitions, reboot to normal mode
8. CLEANUP: optionally remove the working root

A fatal InstallerError stops the run and is reported in the InstallResult
together with the stage it happened in.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from blobfree_installer.blobs.inject import inject_blobs
from blobfree_installer.blobs.pull import PullReport, pull_blobs
from blobfree_installer.catalog.io import fetch_catalog
from blobfree_installer.catalog.matcher import require_match
from blobfree_installer.catalog.schema import Catalog, DeviceDescriptor
from blobfree_installer.config import Settings
from blobfree_installer.devices.handle import DeviceHandle, NormalModeDevice
from blobfree_installer.devices.registry import DeviceRegistry
from blobfree_installer.distribution.extract import (
    Distribution,
    extract_distribution,
    load_distribution,
    product_name,
)
from blobfree_installer.errors import (
    PARTITION_FLASH_FAILED,
    CatalogFetchError,
    DeviceNotReadyError,
    InstallerError,
    TransportError,
)
from blobfree_installer.images.builder import (
    BuildReport,
    ImageBuilder,
    adjust_data_partition,
    build_images,
    ensure_images,
)
from blobfree_installer.images.tools import ImagingTools
from blobfree_installer.installer.lock import install_lock
from blobfree_installer.installer.orchestrator import (
    FlashOrchestrator,
    FlashReport,
    PartitionOutcome,
    Sleeper,
    StateListener,
)
from blobfree_installer.types import InstallStage, ProgressCallback

logger = logging.getLogger(__name__)

StageListener = Callable[[InstallStage], None]


@dataclass
class PipelineContext:
    """State accumulated over one install run."""

    archive: Path
    keep_user_data: bool = True
    distribution: Distribution | None = None
    device: NormalModeDevice | None = None
    descriptors: list[DeviceDescriptor] = field(default_factory=list)
    runs_target_os: bool = False
    pull_report: PullReport | None = None
    injected: list[str] = field(default_factory=list)
    build_report: BuildReport | None = None
    flash_report: FlashReport | None = None

    @property
    def descriptor(self) -> DeviceDescriptor | None:
        """The descriptor used for this run (first match)."""
        return self.descriptors[0] if self.descriptors else None


@dataclass
class InstallResult:
    """Outcome of an install run.

    Attributes:
        success: Whether every stage and every partition write succeeded.
        product: Product name of the distribution.
        stage: Stage that failed, or None on success.
        error_code: Error code on failure.
        error_message: Error message on failure.
        serial: Device serial.
        model: Device model.
        descriptor: Name of the matched descriptor.
        runs_target_os: Whether the device already ran the target OS.
        keep_user_data: The user's data retention choice.
        pulled: Number of blobs pulled.
        injected: Number of blobs injected.
        images: Names of images built.
        partitions: Per-partition flash outcomes.
    """

    success: bool
    product: str | None = None
    stage: InstallStage | None = None
    error_code: str | None = None
    error_message: str | None = None
    serial: str | None = None
    model: str | None = None
    descriptor: str | None = None
    runs_target_os: bool = False
    keep_user_data: bool = True
    pulled: int = 0
    injected: int = 0
    images: list[str] = field(default_factory=list)
    partitions: list[PartitionOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "success": self.success,
            "product": self.product,
            "stage": self.stage.value if self.stage else None,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "serial": self.serial,
            "model": self.model,
            "descriptor": self.descriptor,
            "runs_target_os": self.runs_target_os,
            "keep_user_data": self.keep_user_data,
            "pulled": self.pulled,
            "injected": self.injected,
            "images": self.images,
            "partitions": [
                {
                    "image": o.image_name,
                    "partition": o.partition,
                    "status": o.status.value,
                    "error_message": o.error_message,
                }
                for o in self.partitions
            ],
        }


async def device_runs_target_os(device: NormalModeDevice, marker: str) -> bool:
    """Check whether the device already runs the target OS.

    The target OS is present when listing its marker file echoes the path.
    """
    try:
        output = await device.shell(f"ls {marker}")
    except TransportError as e:
        logger.debug("Target OS check failed: %s", e)
        return False
    return output.strip() == marker


class Installer:
    """Runs install pipelines against the registry's current device."""

    def __init__(
        self,
        registry: DeviceRegistry,
        settings: Settings,
        tools: ImagingTools | None = None,
        catalog: Catalog | None = None,
        on_stage: StageListener | None = None,
        on_state: StateListener | None = None,
        progress: ProgressCallback | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.settings = settings
        self.tools = tools
        self.catalog = catalog
        self.on_stage = on_stage
        self.on_state = on_state
        self.progress = progress
        self._sleep = sleep
        self.stage: InstallStage | None = None
        self.orchestrator: FlashOrchestrator | None = None
        self._elevating = False

    @property
    def risky(self) -> bool:
        """True while the host must not be interrupted."""
        if self._elevating:
            return True
        return self.orchestrator is not None and self.orchestrator.risky

    def _enter(self, stage: InstallStage) -> None:
        logger.info("Stage: %s", stage.value)
        self.stage = stage
        if self.on_stage is not None:
            self.on_stage(stage)

    async def _resolve_normal_device(self) -> NormalModeDevice:
        handle: DeviceHandle = await self.registry.resolve(
            self.settings.effective_resolve_timeout()
        )
        if not isinstance(handle, NormalModeDevice):
            raise DeviceNotReadyError(
                f"Device {handle.serial} is in {handle.mode.value} mode, "
                "expected normal mode"
            )
        return handle

    def _fetch_catalog(self, url: str) -> Catalog:
        with httpx.Client() as client:
            return fetch_catalog(client, url)

    async def load_catalog(self, distribution: Distribution) -> Catalog:
        """Return the catalog devices are matched against.

        An explicit catalog wins, then the configured remote catalog, then
        the distribution's own devices.json. A remote catalog that cannot be
        fetched falls back to devices.json; one that fails validation is
        fatal.
        """
        if self.catalog is not None:
            return self.catalog

        url = self.settings.catalog_url
        if url and not self.settings.offline:
            try:
                return await asyncio.to_thread(self._fetch_catalog, url)
            except CatalogFetchError as e:
                logger.warning("%s; using the distribution's device list", e.message)
        return distribution.catalog

    async def extract(self, ctx: PipelineContext) -> Distribution:
        self._enter(InstallStage.EXTRACT)
        root = await asyncio.to_thread(
            extract_distribution, ctx.archive, self.settings.scratch_dir
        )
        ctx.distribution = await asyncio.to_thread(load_distribution, root)
        return ctx.distribution

    async def detect(
        self, ctx: PipelineContext, distribution: Distribution
    ) -> tuple[NormalModeDevice, DeviceDescriptor]:
        self._enter(InstallStage.DETECT)
        device = await self._resolve_normal_device()
        catalog = await self.load_catalog(distribution)
        ctx.descriptors = require_match(device.properties, catalog, device.serial)
        ctx.device = device
        logger.info(
            "Device %s (%s) matches %s",
            device.serial,
            device.model,
            [d.name for d in ctx.descriptors],
        )
        return device, ctx.descriptors[0]

    async def elevate(
        self,
        ctx: PipelineContext,
        device: NormalModeDevice,
        descriptor: DeviceDescriptor,
    ) -> NormalModeDevice:
        self._enter(InstallStage.ELEVATE)
        if descriptor.requires_root:
            self._elevating = True
            try:
                await device.summon_elevated_access()
                delay = self.settings.elevation_settle_delay
                logger.info("Waiting %.1fs for elevated access to settle", delay)
                await self._sleep(delay)
                device = await self._resolve_normal_device()
            finally:
                self._elevating = False
            ctx.device = device

        ctx.runs_target_os = await device_runs_target_os(
            device, self.settings.target_os_marker
        )
        logger.info("Device already runs the target OS: %s", ctx.runs_target_os)
        return device

    async def pull(
        self,
        ctx: PipelineContext,
        distribution: Distribution,
        device: NormalModeDevice,
        descriptor: DeviceDescriptor,
    ) -> None:
        self._enter(InstallStage.PULL_BLOBS)
        ctx.pull_report = await pull_blobs(
            device,
            distribution.root,
            distribution.blob_map,
            progress=self.progress,
            requires_root=descriptor.requires_root,
        )

    async def inject(self, ctx: PipelineContext, distribution: Distribution) -> None:
        self._enter(InstallStage.INJECT_BLOBS)
        ctx.injected = await asyncio.to_thread(
            inject_blobs, distribution.root, distribution.blob_map
        )

    async def build(self, ctx: PipelineContext, distribution: Distribution) -> None:
        self._enter(InstallStage.BUILD_IMAGES)
        partitions = distribution.partitions
        adjust_data_partition(partitions, ctx.runs_target_os, ctx.keep_user_data)

        if self.tools is None:
            self.tools = ImagingTools(
                self.settings.tools_dir, timeout=self.settings.build_timeout
            )
        builder = ImageBuilder(self.tools, distribution.root, distribution.extra_args)
        ctx.build_report = await build_images(
            builder, partitions, max_concurrent=self.settings.max_concurrent_builds
        )
        ensure_images(partitions)

    async def flash(
        self,
        ctx: PipelineContext,
        distribution: Distribution,
        device: NormalModeDevice,
    ) -> None:
        self._enter(InstallStage.FLASH)
        self.orchestrator = FlashOrchestrator(
            self.registry,
            settle_delay=self.settings.settle_delay,
            resolve_timeout=self.settings.resolve_timeout,
            on_state=self.on_state,
            progress=self.progress,
            sleep=self._sleep,
        )
        try:
            ctx.flash_report = await self.orchestrator.run(
                device, distribution.partitions
            )
        finally:
            if ctx.flash_report is None:
                ctx.flash_report = self.orchestrator.report

    def cleanup(self, ctx: PipelineContext) -> None:
        if ctx.distribution is None or not self.settings.cleanup_workdir:
            return
        self._enter(InstallStage.CLEANUP)
        path = ctx.distribution.root.path
        try:
            shutil.rmtree(path)
            logger.info("Removed working directory %s", path)
        except OSError as e:
            logger.warning("Failed to remove %s: %s", path, e)

    async def run(self, archive: Path, keep_user_data: bool = True) -> InstallResult:
        """Run a complete install.

        Args:
            archive: Distribution archive.
            keep_user_data: Keep the data partition if the device already
                runs the target OS.

        Returns:
            InstallResult describing the run.
        """
        ctx = PipelineContext(archive=archive, keep_user_data=keep_user_data)
        self.stage = None
        error: InstallerError | None = None

        try:
            self.stage = InstallStage.EXTRACT
            with install_lock(self.settings.scratch_dir, product_name(archive)):
                try:
                    distribution = await self.extract(ctx)
                    device, descriptor = await self.detect(ctx, distribution)
                    device = await self.elevate(ctx, device, descriptor)
                    await self.pull(ctx, distribution, device, descriptor)
                    await self.inject(ctx, distribution)
                    await self.build(ctx, distribution)
                    await self.flash(ctx, distribution, device)
                finally:
                    failed_stage = self.stage
                    self.cleanup(ctx)
                    self.stage = failed_stage
        except InstallerError as e:
            stage_name = self.stage.value if self.stage else "setup"
            logger.error("Install failed during %s: %s", stage_name, e.message)
            error = e

        return self._result(ctx, error)

    def _result(self, ctx: PipelineContext, error: InstallerError | None) -> InstallResult:
        if ctx.distribution is not None:
            product = ctx.distribution.root.product
        else:
            product = ctx.archive.name.split(".")[0] or None

        result = InstallResult(
            success=error is None,
            product=product,
            serial=ctx.device.serial if ctx.device else None,
            model=ctx.device.model if ctx.device else None,
            descriptor=ctx.descriptor.name if ctx.descriptor else None,
            runs_target_os=ctx.runs_target_os,
            keep_user_data=ctx.keep_user_data,
            pulled=len(ctx.pull_report.pulled) if ctx.pull_report else 0,
            injected=len(ctx.injected),
            images=list(ctx.build_report.built) if ctx.build_report else [],
            partitions=list(ctx.flash_report.outcomes) if ctx.flash_report else [],
        )
        if error is not None:
            result.stage = self.stage
            result.error_code = error.code
            result.error_message = error.message
        elif ctx.flash_report is not None and ctx.flash_report.failed:
            failed = [o.partition for o in ctx.flash_report.failed]
            result.success = False
            result.stage = InstallStage.FLASH
            result.error_code = PARTITION_FLASH_FAILED
            result.error_message = f"Failed to flash partition(s): {', '.join(failed)}"
        return result


__all__ = [
    "InstallResult",
    "Installer",
    "PipelineContext",
    "StageListener",
    "device_runs_target_os",
]
