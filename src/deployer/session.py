"""Deploy and cleanup of a kpt deployment unit.

deploy:  reconcile -> read manifests -> collect namespaces -> live apply -> track
cleanup: reconcile -> live destroy

Reconcile, apply and destroy failures abort. Reading manifests and
collecting namespaces only feed auxiliary features (port forwarding, health
checks), so their failures are reported as events and the deploy goes on.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from deployer.artifacts import Artifact, ArtifactTracker, ImageList
from deployer.errors import (
    ApplyError,
    DeployError,
    DestroyError,
    KptCommandError,
    NamespaceCollectionError,
    RenderError,
)
from deployer.events import EventLog, EventSink
from deployer.kpt import KptRunner
from deployer.manifests import collect_namespaces, parse_manifests
from deployer.reconcile import DesiredInventory, InventoryReconciler, ReconcileResult

logger = logging.getLogger(__name__)


class DeploySession:
    """Runs kpt deploy/cleanup for one package directory.

    Collaborators are injected so tests can substitute any of them.
    """

    def __init__(
        self,
        directory: Path,
        kpt: KptRunner,
        desired: Optional[DesiredInventory] = None,
        flags: tuple[str, ...] = (),
        apply_flags: tuple[str, ...] = (),
        events: Optional[EventSink] = None,
        tracker: Optional[ArtifactTracker] = None,
        namespace_collector: Callable[[list[dict]], list[str]] = collect_namespaces,
    ):
        self.directory = Path(directory)
        self.kpt = kpt
        self.desired = desired or DesiredInventory()
        self.flags = tuple(flags)
        self.apply_flags = tuple(apply_flags)
        self.events = events if events is not None else EventLog()
        self.tracker = tracker if tracker is not None else ImageList()
        self.namespace_collector = namespace_collector

    def reconcile(self) -> ReconcileResult:
        """Make sure the Kptfile exists and carries the desired inventory."""
        return InventoryReconciler(self.directory, self.kpt, self.desired, self.events).reconcile()

    def deploy(self, artifacts: Optional[list[Artifact]] = None) -> list[str]:
        """Apply the package and return the namespaces it deploys into.

        Raises:
            DeployError: If reconciling the Kptfile fails
            ApplyError: If `kpt live apply` fails
        """
        self.reconcile()

        manifests = self._read_manifests()
        namespaces = self._collect_namespaces(manifests)

        try:
            self.kpt.live_apply(self.directory, self.flags + self.apply_flags)
        except KptCommandError as e:
            raise ApplyError(f"kpt live apply failed: {e}", self.directory) from e

        if artifacts:
            self.tracker.register(list(artifacts))
        logger.info(f"Deployed {self.directory} (namespaces: {', '.join(namespaces) or 'none'})")
        return namespaces

    def cleanup(self) -> None:
        """Delete what was deployed.

        The Kptfile is reconciled first since destroy also needs the inventory.

        Raises:
            DeployError: If reconciling the Kptfile fails
            DestroyError: If `kpt live destroy` fails
        """
        self.reconcile()
        try:
            self.kpt.live_destroy(self.directory, self.flags)
        except KptCommandError as e:
            raise DestroyError(f"kpt live destroy failed: {e}", self.directory) from e
        logger.info(f"Destroyed {self.directory}")

    def dependencies(self) -> list[str]:
        # v2 deployers watch no files of their own
        return []

    def render(self, *args, **kwargs) -> None:
        raise DeployError("render is not supported by the kpt deployer", self.directory)

    def _read_manifests(self) -> list[dict]:
        try:
            raw = self.kpt.source(self.directory)
            return parse_manifests(raw, self.directory)
        except (KptCommandError, RenderError) as e:
            self.events.info(f"could not read the hydrated manifest from {self.directory}: {e}")
            return []

    def _collect_namespaces(self, manifests: list[dict]) -> list[str]:
        try:
            return self.namespace_collector(manifests)
        except NamespaceCollectionError as e:
            self.events.info(
                "could not fetch deployed resource namespace. "
                f"This might cause port-forward and deploy health-check to fail: {e}"
            )
            return []
