"""Error taxonomy for blobfree_installer.

Every fatal condition raised by the core derives from InstallerError and
carries a stable string code that the CLI and install records surface.
Recoverable per-item conditions (a missing blob, a partition that failed to
flash) are logged by the component that hits them and never raised.
"""

# Error code constants
ARCHIVE_CORRUPT = "archive_corrupt"
DISTRIBUTION_ERROR = "distribution_error"
DEVICE_NOT_READY = "device_not_ready"
UNSUPPORTED_DEVICE = "unsupported_device"
UNEXPECTED_MODE = "unexpected_mode"
TRANSPORT_ERROR = "transport_error"
TOOL_NOT_FOUND = "tool_not_found"
IMAGE_BUILD_FAILED = "image_build_failed"
CATALOG_INVALID = "catalog_invalid"
CATALOG_FETCH_FAILED = "catalog_fetch_failed"
INSTALL_IN_PROGRESS = "install_in_progress"
# Reported, never raised: the flash sequence continues past a failed write
PARTITION_FLASH_FAILED = "partition_flash_failed"


class InstallerError(Exception):
    """Base exception for all fatal installer errors."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class DistributionError(InstallerError):
    """The distribution cannot be unpacked into its working directory."""

    def __init__(self, message: str, code: str = DISTRIBUTION_ERROR) -> None:
        super().__init__(message, code)


class ArchiveCorruptError(DistributionError):
    """A required manifest file is missing or the archive is unreadable."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message, code=ARCHIVE_CORRUPT)
        self.missing = missing or []


class DeviceNotReadyError(InstallerError):
    """No usable device is attached, or it is in the wrong state."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=DEVICE_NOT_READY)


class UnsupportedDeviceError(InstallerError):
    """The attached device matches no catalog descriptor."""

    def __init__(self, serial: str, model: str | None = None) -> None:
        label = f"{serial} ({model})" if model else serial
        super().__init__(f"Unsupported device: {label}", code=UNSUPPORTED_DEVICE)
        self.serial = serial
        self.model = model


class UnexpectedModeError(InstallerError):
    """The device reappeared in a different mode than expected."""

    def __init__(self, serial: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Device {serial} is in {actual} mode, expected {expected} mode",
            code=UNEXPECTED_MODE,
        )
        self.serial = serial
        self.expected = expected
        self.actual = actual


class TransportError(InstallerError):
    """A device transport command failed."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        output: str = "",
    ) -> None:
        super().__init__(message, code=TRANSPORT_ERROR)
        self.returncode = returncode
        self.output = output


class ToolNotFoundError(InstallerError):
    """An external imaging tool is not available."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"Imaging tool not found: {tool}", code=TOOL_NOT_FOUND)
        self.tool = tool


class ImageBuildError(InstallerError):
    """An image could not be produced."""

    def __init__(self, message: str, image: str | None = None) -> None:
        super().__init__(message, code=IMAGE_BUILD_FAILED)
        self.image = image


class CatalogError(InstallerError):
    """The device catalog is malformed."""

    def __init__(self, message: str, code: str = CATALOG_INVALID) -> None:
        super().__init__(message, code)


class CatalogFetchError(CatalogError):
    """The remote device catalog could not be fetched."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=CATALOG_FETCH_FAILED)


class InstallInProgressError(InstallerError):
    """Another install for the same product holds the working directory."""

    def __init__(self, product: str) -> None:
        super().__init__(
            f"Another install of {product} is already running",
            code=INSTALL_IN_PROGRESS,
        )
        self.product = product


__all__ = [
    "ARCHIVE_CORRUPT",
    "CATALOG_FETCH_FAILED",
    "CATALOG_INVALID",
    "DEVICE_NOT_READY",
    "DISTRIBUTION_ERROR",
    "IMAGE_BUILD_FAILED",
    "INSTALL_IN_PROGRESS",
    "PARTITION_FLASH_FAILED",
    "TOOL_NOT_FOUND",
    "TRANSPORT_ERROR",
    "UNEXPECTED_MODE",
    "UNSUPPORTED_DEVICE",
    "ArchiveCorruptError",
    "CatalogError",
    "CatalogFetchError",
    "DeviceNotReadyError",
    "DistributionError",
    "ImageBuildError",
    "InstallInProgressError",
    "InstallerError",
    "ToolNotFoundError",
    "TransportError",
    "UnexpectedModeError",
    "UnsupportedDeviceError",
]
