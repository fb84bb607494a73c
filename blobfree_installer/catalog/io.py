"""Catalog loading from files and from the remote catalog URL.

Local catalogs may be JSON (the distribution's own ``devices.json``) or
YAML. The remote catalog is a JSON array served over HTTP.
"""

import json
import logging
from pathlib import Path
from typing import Any

import httpx
import yaml
from pydantic import ValidationError

from blobfree_installer.catalog.schema import Catalog
from blobfree_installer.errors import CatalogError, CatalogFetchError

logger = logging.getLogger(__name__)

# Timeout for catalog requests (seconds)
FETCH_TIMEOUT = 30


def parse_catalog_data(data: Any, source: str = "<data>") -> Catalog:
    """Validate parsed catalog data.

    Args:
        data: Parsed JSON/YAML content.
        source: Where the data came from, for error messages.

    Returns:
        Validated Catalog.

    Raises:
        CatalogError: If data does not match the schema.
    """
    if data is None:
        return Catalog()
    if not isinstance(data, (list, dict)):
        raise CatalogError(
            f"{source}: expected a list of devices, got {type(data).__name__}"
        )
    try:
        return Catalog.from_data(data)
    except ValidationError as e:
        raise CatalogError(f"{source}: invalid catalog: {e}") from e


def load_catalog(path: Path) -> Catalog:
    """Load and validate a catalog from a file (YAML or JSON).

    File format is determined by extension (.yaml, .yml for YAML,
    .json for JSON).

    Args:
        path: Path to the catalog file.

    Returns:
        Validated Catalog.

    Raises:
        FileNotFoundError: If the file does not exist.
        CatalogError: If the file cannot be parsed or validated, or its
            extension is not supported.
    """
    suffix = path.suffix.lower()
    if suffix not in (".yaml", ".yml", ".json"):
        raise CatalogError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise CatalogError(f"{path}: not valid UTF-8: {e}") from e

    if suffix == ".json":
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise CatalogError(f"{path}: invalid JSON: {e}") from e
    else:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise CatalogError(f"{path}: invalid YAML: {e}") from e

    catalog = parse_catalog_data(data, source=str(path))
    logger.debug("Loaded %d device descriptor(s) from %s", len(catalog), path)
    return catalog


def fetch_catalog(client: httpx.Client, url: str) -> Catalog:
    """Fetch and validate the remote catalog.

    Args:
        client: HTTP client.
        url: Catalog URL.

    Returns:
        Validated Catalog.

    Raises:
        CatalogFetchError: If the request fails or the body is not JSON.
        CatalogError: If the body does not match the schema.
    """
    logger.info("Fetching device catalog from %s", url)
    try:
        response = client.get(url, timeout=FETCH_TIMEOUT, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise CatalogFetchError(
            f"HTTP error {e.response.status_code} fetching {url}"
        ) from e
    except httpx.TimeoutException as e:
        raise CatalogFetchError(f"Timeout fetching {url}") from e
    except httpx.RequestError as e:
        raise CatalogFetchError(f"Request error fetching {url}: {e}") from e

    try:
        data = response.json()
    except ValueError as e:
        raise CatalogFetchError(f"Catalog at {url} is not valid JSON") from e

    return parse_catalog_data(data, source=url)


def catalog_to_json(catalog: Catalog) -> str:
    """Render a catalog as a JSON array using the on-disk field names."""
    data = [
        d.model_dump(by_alias=True, exclude_none=True) for d in catalog.devices
    ]
    return json.dumps(data, indent=2, ensure_ascii=False)


__all__ = [
    "FETCH_TIMEOUT",
    "catalog_to_json",
    "fetch_catalog",
    "load_catalog",
    "parse_catalog_data",
]
