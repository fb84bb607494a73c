"""Install ORM models.

InstallRecord tracks one install run and PartitionFlashRecord the outcome
of each partition written during it. Records are kept locally as an audit
trail of what was flashed to which device.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from blobfree_installer.db import Base
from blobfree_installer.types import InstallStatus, PartitionStatus


class InstallRecord(Base):
    """ORM model for an install run.

    Attributes:
        id: Primary key.
        product: Product name of the distribution.
        archive_path: Distribution archive used.
        device_serial: Serial of the device installed to.
        device_model: Model reported by the device.
        descriptor_name: Name of the matched catalog descriptor.
        runs_target_os: Whether the device already ran the target OS.
        keep_user_data: Whether the user chose to keep their data.
        status: Install status (pending, running, succeeded, failed).
        failed_stage: Stage that failed, if any.
        error_code: Error code if the install failed.
        error_message: Error message if the install failed.
        requested_at: Timestamp when the install was requested.
        started_at: Timestamp when the install started.
        finished_at: Timestamp when the install finished.
    """

    __tablename__ = "install_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    product: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    archive_path: Mapped[str] = mapped_column(String(1000), nullable=False)

    # Device identification
    device_serial: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device_model: Mapped[str | None] = mapped_column(String(255), nullable=True)
    descriptor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Install options
    runs_target_os: Mapped[bool] = mapped_column(nullable=False, default=False)
    keep_user_data: Mapped[bool] = mapped_column(nullable=False, default=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InstallStatus.PENDING.value, index=True
    )
    failed_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timing
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    partitions: Mapped[list["PartitionFlashRecord"]] = relationship(
        "PartitionFlashRecord",
        back_populates="install",
        cascade="all, delete-orphan",
        order_by="PartitionFlashRecord.id",
    )

    __table_args__ = (Index("ix_install_records_product_status", "product", "status"),)

    def __repr__(self) -> str:
        return (
            f"<InstallRecord(id={self.id}, product='{self.product}', "
            f"device_serial='{self.device_serial}', status='{self.status}')>"
        )

    def mark_running(self) -> None:
        """Mark this install as running."""
        self.status = InstallStatus.RUNNING.value
        self.started_at = datetime.now()

    def mark_succeeded(self) -> None:
        """Mark this install as succeeded."""
        self.status = InstallStatus.SUCCEEDED.value
        self.finished_at = datetime.now()

    def mark_failed(
        self,
        stage: str | None = None,
        code: str | None = None,
        message: str | None = None,
    ) -> None:
        """Mark this install as failed.

        Args:
            stage: Stage the install failed in.
            code: Error code.
            message: Error message details.
        """
        self.status = InstallStatus.FAILED.value
        self.finished_at = datetime.now()
        if stage:
            self.failed_stage = stage
        if code:
            self.error_code = code
        if message:
            self.error_message = message

    def is_succeeded(self) -> bool:
        """Check if this install succeeded."""
        return self.status == InstallStatus.SUCCEEDED.value


class PartitionFlashRecord(Base):
    """ORM model for one partition written during an install."""

    __tablename__ = "partition_flash_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    install_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("install_records.id"), nullable=False, index=True
    )
    image_name: Mapped[str] = mapped_column(String(255), nullable=False)
    partition: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PartitionStatus.PENDING.value
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    install: Mapped[InstallRecord] = relationship(
        "InstallRecord", back_populates="partitions"
    )

    def __repr__(self) -> str:
        return (
            f"<PartitionFlashRecord(id={self.id}, partition='{self.partition}', "
            f"status='{self.status}')>"
        )


__all__ = ["InstallRecord", "PartitionFlashRecord"]
