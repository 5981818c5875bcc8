"""Kptfile inventory reconciliation.

Runs before every apply and destroy so that kpt always finds a Kptfile with
inventory identity matching what the caller asked for.

A deployment unit moves through three states:

    Absent --(kpt pkg init)--> no inventory --(kpt live init)--> inventory

Once the inventory exists, `kpt live init` must not run again (kpt rejects
it), so from then on requested values are merged into the file directly.

Namespace precedence for the merge:
    per-unit namespace > inventory namespace > stored value > "default"
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import kptfile
from deployer.errors import InitializationError, KptCommandError, LiveInitError
from deployer.events import EventLog, EventSink
from deployer.kpt import KptRunner
from kptfile import Inventory, Kptfile

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = 'default'

# Reconcile outcomes
INITIALIZED = 'initialized'  # kpt live init recorded a new inventory
UPDATED = 'updated'          # stored inventory rewritten with requested values
UNCHANGED = 'unchanged'      # nothing to do


@dataclass(frozen=True)
class DesiredInventory:
    """Requested inventory identity. Empty fields request no change.

    Attributes:
        name: Inventory name
        inventory_id: Inventory ID
        namespace: Namespace of the deployment unit (kube namespace)
        inventory_namespace: Global inventory namespace
        force: Pass --force to `kpt live init`
        flags: Extra kpt flags for `kpt live init`
    """
    name: str = ''
    inventory_id: str = ''
    namespace: str = ''
    inventory_namespace: str = ''
    force: bool = False
    flags: tuple[str, ...] = ()

    def init_namespace(self) -> str:
        """Namespace handed to `kpt live init`."""
        return self.namespace or self.inventory_namespace or DEFAULT_NAMESPACE


@dataclass(frozen=True)
class Uninitialized:
    """Kptfile without an inventory block."""
    kptfile: Kptfile


@dataclass(frozen=True)
class Initialized:
    """Kptfile carrying inventory identity."""
    kptfile: Kptfile
    inventory: Inventory


InventoryState = Union[Uninitialized, Initialized]


def classify(kf: Kptfile) -> InventoryState:
    if kf.inventory is None:
        return Uninitialized(kf)
    return Initialized(kf, kf.inventory)


@dataclass(frozen=True)
class FieldRule:
    """Resolves one inventory field.

    The first non-empty desired candidate wins, then the stored value, then
    the fallback.
    """
    field: str
    label: str
    desired: tuple[str, ...]
    fallback: str = ''

    def resolve(self, stored: str) -> str:
        for candidate in self.desired:
            if candidate:
                return candidate
        return stored or self.fallback


@dataclass(frozen=True)
class FieldChange:
    """A single overwritten inventory field."""
    field: str
    old: str
    new: str
    label: str = dataclasses.field(default='', compare=False)

    def message(self) -> str:
        return f"Updating Kptfile {self.label or self.field} from {self.old} to {self.new}"


def inventory_rules(desired: DesiredInventory) -> list[FieldRule]:
    return [
        FieldRule('inventory_id', 'inventory', (desired.inventory_id,)),
        FieldRule('name', 'name', (desired.name,)),
        FieldRule('namespace', 'namespace',
                  (desired.namespace, desired.inventory_namespace), DEFAULT_NAMESPACE),
    ]


def merge_inventory(stored: Inventory, desired: DesiredInventory) -> tuple[Inventory, list[FieldChange]]:
    """Apply the field rules to a stored inventory.

    Returns:
        (merged inventory, changes) tuple. ``stored`` is not modified and
        nothing is reported; callers decide how to surface the changes.
    """
    merged = dataclasses.replace(stored, extra=dict(stored.extra))
    changes: list[FieldChange] = []
    for rule in inventory_rules(desired):
        old = getattr(stored, rule.field)
        new = rule.resolve(old)
        if new != old:
            setattr(merged, rule.field, new)
            changes.append(FieldChange(rule.field, old, new, rule.label))
    return merged, changes


@dataclass
class ReconcileResult:
    """Outcome of a reconcile pass.

    Attributes:
        outcome: initialized, updated or unchanged
        inventory: Inventory recorded in the Kptfile afterwards
        bootstrapped: True when `kpt pkg init` created the Kptfile
        changes: Fields overwritten by the merge
    """
    outcome: str
    inventory: Inventory
    bootstrapped: bool = False
    changes: list[FieldChange] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'outcome': self.outcome,
            'bootstrapped': self.bootstrapped,
            'inventory': self.inventory.to_dict(),
            'changes': [{'field': c.field, 'old': c.old, 'new': c.new} for c in self.changes],
        }


class InventoryReconciler:
    """Brings one deployment unit's Kptfile in line with the desired inventory."""

    def __init__(
        self,
        directory: Path,
        kpt: KptRunner,
        desired: DesiredInventory,
        events: Optional[EventSink] = None,
    ):
        self.directory = Path(directory)
        self.kpt = kpt
        self.desired = desired
        self.events = events if events is not None else EventLog()

    @property
    def path(self) -> Path:
        return kptfile.kptfile_path(self.directory)

    def reconcile(self) -> ReconcileResult:
        """Initialize or update the Kptfile as needed.

        Raises:
            InitializationError: If `kpt pkg init` fails
            LiveInitError: If `kpt live init` fails
            KptfileError: If the Kptfile cannot be read or written
        """
        bootstrapped = False
        if not kptfile.exists(self.path):
            self._init_package()
            bootstrapped = True

        state = classify(kptfile.read(self.path))
        if isinstance(state, Uninitialized):
            inventory = self._init_inventory()
            return ReconcileResult(INITIALIZED, inventory, bootstrapped=bootstrapped)

        merged, changes = merge_inventory(state.inventory, self.desired)
        if not changes:
            logger.debug(f"Kptfile inventory up to date in {self.directory}")
            return ReconcileResult(UNCHANGED, state.inventory, bootstrapped=bootstrapped)

        for change in changes:
            self.events.warning(change.message())
        state.kptfile.inventory = merged
        kptfile.write(self.path, state.kptfile)
        return ReconcileResult(UPDATED, merged, bootstrapped=bootstrapped, changes=changes)

    def _init_package(self) -> None:
        try:
            self.kpt.init(self.directory)
        except KptCommandError as e:
            raise InitializationError(f"kpt pkg init failed: {e}", self.directory) from e
        if not kptfile.exists(self.path):
            raise InitializationError("kpt pkg init did not create a Kptfile", self.directory)

    def _init_inventory(self) -> Inventory:
        d = self.desired
        try:
            self.kpt.live_init(
                self.directory,
                name=d.name,
                inventory_id=d.inventory_id,
                namespace=d.init_namespace(),
                force=d.force,
                flags=d.flags,
            )
        except KptCommandError as e:
            raise LiveInitError(f"kpt live init failed: {e}", self.directory) from e

        inventory = kptfile.read(self.path).inventory
        if inventory is None:
            raise LiveInitError("kpt live init left the Kptfile without inventory", self.directory)
        return inventory
