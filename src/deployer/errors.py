"""Error kinds raised by the kpt deployer.

Fatal errors abort the current deploy or cleanup. RenderError and
NamespaceCollectionError are non-fatal: the session turns them into
informational events and carries on with empty data.
"""

from pathlib import Path
from typing import Optional, Union


class DeployError(Exception):
    """Base exception for deployer errors.

    Attributes:
        path: Directory or file the error relates to
        message: Human-readable description
    """

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        self.message = message
        self.path = Path(path) if path is not None else None
        if self.path is not None:
            super().__init__(f"{message} ({self.path})")
        else:
            super().__init__(message)


class KptfileError(DeployError):
    """Kptfile could not be read or written."""


class KptfileNotFoundError(KptfileError):
    """Kptfile does not exist."""


class KptfileParseError(KptfileError):
    """Kptfile content is not well-formed YAML or has the wrong shape."""


class KptfileIOError(KptfileError):
    """Filesystem error other than a missing Kptfile."""


class InitializationError(DeployError):
    """`kpt pkg init` failed."""


class LiveInitError(DeployError):
    """`kpt live init` failed or left the Kptfile without inventory."""


class ApplyError(DeployError):
    """`kpt live apply` failed."""


class DestroyError(DeployError):
    """`kpt live destroy` failed."""


class RenderError(DeployError):
    """Rendered manifests could not be read (non-fatal)."""


class NamespaceCollectionError(DeployError):
    """Namespaces could not be collected from manifests (non-fatal)."""


class KptCommandError(Exception):
    """A kpt subprocess exited non-zero.

    Attributes:
        cmd: Full command line
        returncode: Process exit code (-1 for timeout/cancel/spawn errors)
        output: Captured output, used for diagnostics
    """

    def __init__(self, cmd: list[str], returncode: int, output: str = ''):
        self.cmd = cmd
        self.returncode = returncode
        self.output = output
        detail = output.strip().splitlines()[-1] if output.strip() else 'no output'
        super().__init__(f"{' '.join(cmd)} exited {returncode}: {detail}")
