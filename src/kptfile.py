"""Kptfile persistence.

A Kptfile sits at the root of every deployment unit. Only the ``inventory``
block matters to the deployer; every other key is carried through unchanged
so a rewrite never loses what `kpt pkg init` or the user put there.

Example:
    apiVersion: kpt.dev/v1
    kind: Kptfile
    metadata:
      name: app
    inventory:
      namespace: default
      name: app
      inventoryID: 0f1e2d3c-...
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from deployer.errors import KptfileIOError, KptfileNotFoundError, KptfileParseError

logger = logging.getLogger(__name__)

KPTFILE_NAME = 'Kptfile'


@dataclass
class Inventory:
    """Inventory (ownership) identity recorded in the Kptfile.

    Attributes:
        inventory_id: Opaque ID of the owning inventory group (``inventoryID``)
        name: Human-readable inventory name
        namespace: Namespace holding the inventory object
        extra: Unknown keys, preserved on write
    """
    inventory_id: str = ''
    name: str = ''
    namespace: str = ''
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {}
        if self.namespace:
            d['namespace'] = self.namespace
        if self.name:
            d['name'] = self.name
        if self.inventory_id:
            d['inventoryID'] = self.inventory_id
        d.update(self.extra)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'Inventory':
        extra = {k: v for k, v in data.items() if k not in ('inventoryID', 'id', 'name', 'namespace')}
        return cls(
            inventory_id=str(data.get('inventoryID', data.get('id')) or ''),
            name=str(data.get('name') or ''),
            namespace=str(data.get('namespace') or ''),
            extra=extra,
        )


@dataclass
class Kptfile:
    """In-memory Kptfile.

    ``inventory`` is None when the file carries no inventory block, which is
    the state `kpt pkg init` leaves behind.
    """
    inventory: Optional[Inventory] = None
    document: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {k: v for k, v in self.document.items() if k != 'inventory'}
        if self.inventory is not None:
            d['inventory'] = self.inventory.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'Kptfile':
        raw_inventory = data.get('inventory')
        if raw_inventory is not None and not isinstance(raw_inventory, dict):
            raise ValueError(f"inventory must be a mapping, got {type(raw_inventory).__name__}")
        inventory = Inventory.from_dict(raw_inventory) if raw_inventory is not None else None
        return cls(inventory=inventory, document=dict(data))


def kptfile_path(directory: Path) -> Path:
    """Return the Kptfile location for a deployment unit directory."""
    return Path(directory) / KPTFILE_NAME


def exists(path: Path) -> bool:
    """Check whether a Kptfile exists."""
    return Path(path).is_file()


def read(path: Path) -> Kptfile:
    """Load a Kptfile.

    Raises:
        KptfileNotFoundError: If the file does not exist
        KptfileParseError: If the content is not a YAML mapping
        KptfileIOError: On any other filesystem error
    """
    path = Path(path)
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise KptfileNotFoundError("Kptfile not found", path) from e
    except yaml.YAMLError as e:
        raise KptfileParseError(f"Kptfile is not valid YAML: {e}", path) from e
    except OSError as e:
        raise KptfileIOError(f"Failed to read Kptfile: {e}", path) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise KptfileParseError(f"Kptfile must be a mapping, got {type(data).__name__}", path)

    try:
        kf = Kptfile.from_dict(data)
    except ValueError as e:
        raise KptfileParseError(f"Invalid Kptfile: {e}", path) from e
    logger.debug(f"Loaded Kptfile from {path}")
    return kf


def write(path: Path, kf: Kptfile) -> Path:
    """Save a Kptfile atomically.

    Content goes to a temp file beside the target and is renamed over it, so
    readers see either the old file or the new one.

    Raises:
        KptfileIOError: On write or rename failure
    """
    path = Path(path)
    tmp_file = path.with_name(f'.{path.name}.tmp')
    try:
        content = yaml.safe_dump(kf.to_dict(), default_flow_style=False, sort_keys=False)
        with open(tmp_file, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_file, path)
    except (OSError, yaml.YAMLError) as e:
        if tmp_file.exists():
            tmp_file.unlink()
        raise KptfileIOError(f"Failed to write Kptfile: {e}", path) from e
    logger.debug(f"Saved Kptfile to {path}")
    return path
