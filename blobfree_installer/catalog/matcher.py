"""Compatibility matching between live device properties and the catalog."""

import logging
from collections.abc import Mapping

from blobfree_installer.catalog.schema import Catalog, DeviceDescriptor, Predicate
from blobfree_installer.errors import UnsupportedDeviceError
from blobfree_installer.types import DeviceMode

logger = logging.getLogger(__name__)


def predicate_holds(value: str | None, expected: Predicate) -> bool:
    """Check one predicate against a property value.

    A missing property never satisfies a predicate.
    """
    if value is None:
        return False
    if isinstance(expected, list):
        return value in expected
    return value == expected


def descriptor_matches(
    properties: Mapping[str, str],
    descriptor: DeviceDescriptor,
    mode: DeviceMode = DeviceMode.NORMAL,
) -> bool:
    """Check whether every predicate of a descriptor holds.

    A descriptor with no predicates for the mode matches any device.
    """
    return all(
        predicate_holds(properties.get(key), expected)
        for key, expected in descriptor.predicates(mode).items()
    )


def match(
    properties: Mapping[str, str],
    catalog: Catalog,
    mode: DeviceMode = DeviceMode.NORMAL,
) -> list[DeviceDescriptor]:
    """Return all catalog descriptors matching the device properties.

    Args:
        properties: Live properties (getprop keys or getvar names).
        catalog: Catalog to match against.
        mode: Mode the properties were read in; selects the predicate set.

    Returns:
        Matching descriptors in catalog order (possibly empty).
    """
    matches = [d for d in catalog.devices if descriptor_matches(properties, d, mode)]
    logger.debug(
        "Matched %d of %d descriptor(s): %s",
        len(matches),
        len(catalog),
        [d.name for d in matches],
    )
    return matches


def require_match(
    properties: Mapping[str, str],
    catalog: Catalog,
    serial: str,
    mode: DeviceMode = DeviceMode.NORMAL,
) -> list[DeviceDescriptor]:
    """Like match(), but an empty result is fatal.

    Raises:
        UnsupportedDeviceError: If no descriptor matches.
    """
    matches = match(properties, catalog, mode)
    if not matches:
        model_key = "product" if mode is DeviceMode.FLASH else "ro.product.model"
        raise UnsupportedDeviceError(serial, properties.get(model_key))
    return matches


__all__ = ["descriptor_matches", "match", "predicate_holds", "require_match"]
