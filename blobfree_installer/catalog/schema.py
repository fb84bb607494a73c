"""Pydantic models for the device catalog.

A catalog is a JSON array (or YAML list) of device descriptors. Each
descriptor names the property predicates a device must satisfy in each
transport mode, for example:

    {
      "name": "Fake Device 2.0",
      "url": "local",
      "adb": {"ro.product.model": ["FakeDevice 2.0"]},
      "fastboot": {"product": "FD2"},
      "requiresRoot": false
    }
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from blobfree_installer.types import DeviceMode

# Property value predicate: exact value, or one of several alternatives
Predicate = str | list[str]


class DeviceDescriptor(BaseModel):
    """A supported device/build entry.

    Attributes:
        name: Display name.
        description: Optional free-form description.
        url: Download URL of the distribution, or a local marker.
        adb: Predicates over normal-mode properties (getprop keys).
        fastboot: Predicates over flash-mode variables (getvar names).
        requires_root: Whether blob pulling needs elevated access.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    name: str = Field(min_length=1, description="Display name")
    description: str | None = Field(default=None, description="Description")
    url: str | None = Field(default=None, description="Distribution URL or local marker")
    adb: dict[str, Predicate] = Field(
        default_factory=dict,
        description="Normal-mode property predicates",
    )
    fastboot: dict[str, Predicate] = Field(
        default_factory=dict,
        description="Flash-mode variable predicates",
    )
    requires_root: bool = Field(
        default=True,
        alias="requiresRoot",
        description="Blob pulling requires elevated access",
    )

    @field_validator("adb", "fastboot")
    @classmethod
    def validate_predicates(cls, v: dict[str, Predicate]) -> dict[str, Predicate]:
        """Reject empty alternative lists, which could never match."""
        for key, value in v.items():
            if isinstance(value, list) and not value:
                raise ValueError(f"predicate '{key}' has no alternatives")
        return v

    def predicates(self, mode: DeviceMode) -> dict[str, Predicate]:
        """Return the predicate set that applies in the given mode."""
        if mode is DeviceMode.FLASH:
            return self.fastboot
        return self.adb


class Catalog(BaseModel):
    """An immutable, ordered collection of device descriptors."""

    model_config = ConfigDict(frozen=True)

    devices: list[DeviceDescriptor] = Field(default_factory=list)

    @classmethod
    def from_data(cls, data: Any) -> "Catalog":
        """Build a catalog from parsed JSON/YAML data.

        Accepts either a list of descriptors or a mapping with a
        ``devices`` list.
        """
        if isinstance(data, list):
            return cls.model_validate({"devices": data})
        return cls.model_validate(data)

    def __len__(self) -> int:
        return len(self.devices)

    def names(self) -> list[str]:
        return [d.name for d in self.devices]


__all__ = ["Catalog", "DeviceDescriptor", "Predicate"]
