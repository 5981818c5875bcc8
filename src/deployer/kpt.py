"""kpt CLI invocation.

KptCli is the default implementation of every external collaborator the
deployer needs. Each method builds the argument list, runs kpt, and raises
KptCommandError on a non-zero exit.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, TextIO, runtime_checkable

from common import run_command
from deployer.errors import KptCommandError

logger = logging.getLogger(__name__)


@runtime_checkable
class KptRunner(Protocol):
    """Protocol for the kpt operations used by the reconciler and session."""

    def init(self, directory: Path) -> None:
        """Create a minimal Kptfile (`kpt pkg init`)."""

    def live_init(
        self,
        directory: Path,
        name: str = '',
        inventory_id: str = '',
        namespace: str = '',
        force: bool = False,
        flags: tuple[str, ...] = (),
    ) -> None:
        """Record inventory identity in the Kptfile (`kpt live init`)."""

    def live_apply(self, directory: Path, flags: tuple[str, ...] = ()) -> None:
        """Apply the package to the cluster (`kpt live apply`)."""

    def live_destroy(self, directory: Path, flags: tuple[str, ...] = ()) -> None:
        """Delete the package's objects from the cluster (`kpt live destroy`)."""

    def source(self, directory: Path) -> str:
        """Return the rendered package as text (`kpt fn source`)."""


def pkg_init_args(directory: Path) -> list[str]:
    return ['pkg', 'init', str(directory)]


def live_init_args(
    directory: Path,
    name: str = '',
    inventory_id: str = '',
    namespace: str = '',
    force: bool = False,
    flags: tuple[str, ...] = (),
) -> list[str]:
    """Build `kpt live init` arguments; empty values are left out."""
    args = ['live', 'init', str(directory), *flags]
    if name:
        args += ['--name', name]
    if inventory_id:
        args += ['--inventory-id', inventory_id]
    if namespace:
        args += ['--namespace', namespace]
    if force:
        args += ['--force', 'true']
    return args


def live_apply_args(directory: Path, flags: tuple[str, ...] = ()) -> list[str]:
    return ['live', 'apply', str(directory), *flags]


def live_destroy_args(directory: Path, flags: tuple[str, ...] = ()) -> list[str]:
    return ['live', 'destroy', str(directory), *flags]


def fn_source_args(directory: Path) -> list[str]:
    return ['fn', 'source', str(directory)]


@dataclass
class KptCli:
    """Runs the kpt binary.

    Attributes:
        binary: kpt executable name or path
        out: Sink for streamed command output (None = capture only)
        cancel: Event that, once set, terminates the running command
        timeout: Per-command timeout in seconds
    """
    binary: str = 'kpt'
    out: Optional[TextIO] = None
    cancel: Optional[threading.Event] = None
    timeout: int = 600

    def _run(self, args: list[str], stream: bool = True) -> str:
        cmd = [self.binary, *args]
        rc, stdout, stderr = run_command(
            cmd,
            timeout=self.timeout,
            out=self.out if stream else None,
            cancel=self.cancel,
        )
        if rc != 0:
            raise KptCommandError(cmd, rc, '\n'.join(s for s in (stdout, stderr) if s))
        return stdout

    def init(self, directory: Path) -> None:
        logger.info(f"Initializing Kptfile in {directory}")
        self._run(pkg_init_args(directory))

    def live_init(
        self,
        directory: Path,
        name: str = '',
        inventory_id: str = '',
        namespace: str = '',
        force: bool = False,
        flags: tuple[str, ...] = (),
    ) -> None:
        logger.info(f"Initializing Kptfile inventory in {directory}")
        self._run(live_init_args(directory, name, inventory_id, namespace, force, flags))

    def live_apply(self, directory: Path, flags: tuple[str, ...] = ()) -> None:
        logger.info(f"Applying {directory}")
        self._run(live_apply_args(directory, flags))

    def live_destroy(self, directory: Path, flags: tuple[str, ...] = ()) -> None:
        logger.info(f"Destroying {directory}")
        self._run(live_destroy_args(directory, flags))

    def source(self, directory: Path) -> str:
        # Output is parsed, so it must not be mixed into the user's stream
        return self._run(fn_source_args(directory), stream=False)
