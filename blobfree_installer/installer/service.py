"""Install service layer.

This module provides high-level install operations:
- install: Run one install pipeline, optionally recording it
- get_install_records / get_install: Query the install audit trail
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

from blobfree_installer.catalog.schema import Catalog
from blobfree_installer.config import Settings, get_settings
from blobfree_installer.devices.registry import DeviceRegistry
from blobfree_installer.images.tools import ImagingTools
from blobfree_installer.installer.models import InstallRecord, PartitionFlashRecord
from blobfree_installer.installer.orchestrator import Sleeper, StateListener
from blobfree_installer.installer.pipeline import (
    InstallResult,
    Installer,
    StageListener,
)
from blobfree_installer.types import InstallStatus, ProgressCallback

logger = logging.getLogger(__name__)


def _record_result(record: InstallRecord, result: InstallResult) -> None:
    if result.product:
        record.product = result.product
    record.device_serial = result.serial
    record.device_model = result.model
    record.descriptor_name = result.descriptor
    record.runs_target_os = result.runs_target_os
    for outcome in result.partitions:
        record.partitions.append(
            PartitionFlashRecord(
                image_name=outcome.image_name,
                partition=outcome.partition,
                status=outcome.status.value,
                error_message=outcome.error_message,
            )
        )
    if result.success:
        record.mark_succeeded()
    else:
        record.mark_failed(
            stage=result.stage.value if result.stage else None,
            code=result.error_code,
            message=result.error_message,
        )


async def install(
    archive: Path,
    registry: DeviceRegistry,
    keep_user_data: bool = True,
    session: Session | None = None,
    settings: Settings | None = None,
    tools: ImagingTools | None = None,
    catalog: Catalog | None = None,
    installer: Installer | None = None,
    on_stage: StageListener | None = None,
    on_state: StateListener | None = None,
    progress: ProgressCallback | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> InstallResult:
    """Run one install, recording it when a session is supplied.

    Args:
        archive: Distribution archive.
        registry: Device registry fed by a monitor.
        keep_user_data: Keep the data partition on target-OS devices.
        session: Optional database session for the install record.
        settings: Optional settings; uses default if not provided.
        tools: Optional pre-detected imaging tools.
        catalog: Optional catalog overriding the distribution's own.
        installer: Optional pre-built Installer (the other hooks are then
            ignored).
        on_stage: Called when a pipeline stage starts.
        on_state: Called on flash state transitions.
        progress: Per-item progress callback.
        sleep: Awaitable used for settle delays.

    Returns:
        InstallResult describing the run.
    """
    if settings is None:
        settings = get_settings()

    record: InstallRecord | None = None
    if session is not None:
        record = InstallRecord(
            product=archive.name.split(".")[0],
            archive_path=str(archive),
            keep_user_data=keep_user_data,
        )
        session.add(record)
        record.mark_running()
        session.commit()
        logger.debug("Created install record %d", record.id)

    if installer is None:
        installer = Installer(
            registry,
            settings,
            tools=tools,
            catalog=catalog,
            on_stage=on_stage,
            on_state=on_state,
            progress=progress,
            sleep=sleep,
        )

    try:
        result = await installer.run(archive, keep_user_data=keep_user_data)
    except asyncio.CancelledError:
        if record is not None and session is not None:
            record.mark_failed(
                stage=installer.stage.value if installer.stage else None,
                code="install_cancelled",
                message="Install was interrupted",
            )
            session.commit()
        raise
    except Exception as e:
        if record is not None and session is not None:
            record.mark_failed(
                stage=installer.stage.value if installer.stage else None,
                code="unexpected_error",
                message=str(e),
            )
            session.commit()
        raise

    if record is not None and session is not None:
        _record_result(record, result)
        session.commit()

    if result.success:
        logger.info("Install of %s finished successfully", result.product)
    else:
        logger.error(
            "Install of %s failed (%s): %s",
            result.product,
            result.error_code,
            result.error_message,
        )
    return result


def get_install(session: Session, install_id: int) -> InstallRecord | None:
    """Get an install record by ID."""
    return session.get(InstallRecord, install_id)


def get_install_records(
    session: Session,
    product: str | None = None,
    status: InstallStatus | None = None,
    limit: int = 100,
) -> list[InstallRecord]:
    """List install records with optional filters.

    Args:
        session: Database session.
        product: Filter by product name.
        status: Filter by status.
        limit: Maximum results to return.

    Returns:
        List of InstallRecord instances, newest first.
    """
    stmt = select(InstallRecord)

    if product is not None:
        stmt = stmt.where(InstallRecord.product == product)
    if status is not None:
        stmt = stmt.where(InstallRecord.status == status.value)

    stmt = stmt.order_by(InstallRecord.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


__all__ = ["get_install", "get_install_records", "install"]
