"""Rendered manifest handling.

`kpt fn source <dir>` prints the package as a ResourceList:

    apiVersion: config.kubernetes.io/v1
    kind: ResourceList
    items:
    - apiVersion: v1
      kind: Namespace
      ...

The items are the hydrated manifests. Plain multi-document YAML is accepted
as well so a renderer that emits a stream works unchanged.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml

from deployer.errors import NamespaceCollectionError, RenderError

logger = logging.getLogger(__name__)

RESOURCE_LIST_KIND = 'ResourceList'


def parse_manifests(raw: str, path: Optional[Path] = None) -> list[dict]:
    """Parse renderer output into a list of manifests.

    Args:
        raw: ResourceList or multi-document YAML text
        path: Package directory, attached to errors

    Raises:
        RenderError: If the text is not YAML or an item is not a mapping
    """
    if not raw or not raw.strip():
        return []
    try:
        docs = [d for d in yaml.safe_load_all(raw) if d is not None]
    except yaml.YAMLError as e:
        raise RenderError(f"Rendered output is not valid YAML: {e}", path) from e

    if len(docs) == 1 and isinstance(docs[0], dict) and docs[0].get('kind') == RESOURCE_LIST_KIND:
        items = docs[0].get('items') or []
        if not isinstance(items, list):
            raise RenderError("ResourceList items must be a list", path)
    else:
        items = docs

    manifests = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise RenderError(f"Manifest {i} is not a mapping", path)
        manifests.append(item)
    logger.debug(f"Parsed {len(manifests)} manifest(s)")
    return manifests


def collect_namespaces(manifests: list[dict]) -> list[str]:
    """Return the sorted, unique namespaces referenced by manifests.

    Cluster-scoped objects (no metadata.namespace) contribute nothing.

    Raises:
        NamespaceCollectionError: If a manifest or its metadata is malformed
    """
    namespaces: set[str] = set()
    for i, manifest in enumerate(manifests):
        if not isinstance(manifest, dict):
            raise NamespaceCollectionError(f"Manifest {i} is not a mapping")
        metadata = manifest.get('metadata') or {}
        if not isinstance(metadata, dict):
            raise NamespaceCollectionError(f"Manifest {i} has invalid metadata")
        if ns := metadata.get('namespace'):
            namespaces.add(str(ns))
    return sorted(namespaces)
