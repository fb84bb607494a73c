"""Device catalog module.

This module handles:
- DeviceDescriptor/Catalog schema validation
- Loading catalogs from JSON/YAML files and the remote catalog URL
- Matching live device properties against catalog descriptors
"""

from blobfree_installer.catalog.io import fetch_catalog, load_catalog
from blobfree_installer.catalog.matcher import match, require_match
from blobfree_installer.catalog.schema import Catalog, DeviceDescriptor

__all__ = [
    "Catalog",
    "DeviceDescriptor",
    "fetch_catalog",
    "load_catalog",
    "match",
    "require_match",
]
