"""Device access module.

This module handles:
- adb/fastboot subprocess transports
- Mode-specific device handles (normal and flash mode)
- The single-slot registry of the current device
- Polling device enumeration into attach/detach notifications
"""

from blobfree_installer.devices.handle import (
    DeviceHandle,
    FlashModeDevice,
    NormalModeDevice,
)
from blobfree_installer.devices.monitor import DeviceMonitor
from blobfree_installer.devices.registry import (
    DeviceEvent,
    DeviceEventKind,
    DeviceRegistry,
)
from blobfree_installer.devices.transport import (
    AdbTransport,
    FastbootTransport,
    list_adb_devices,
    list_fastboot_devices,
    parse_getprop,
)

__all__ = [
    "AdbTransport",
    "DeviceEvent",
    "DeviceEventKind",
    "DeviceHandle",
    "DeviceMonitor",
    "DeviceRegistry",
    "FastbootTransport",
    "FlashModeDevice",
    "NormalModeDevice",
    "list_adb_devices",
    "list_fastboot_devices",
    "parse_getprop",
]
