"""Deploy configuration management.

Configuration is loaded from a YAML file (camelCase keys, as in the
deploy stanza of a pipeline config):

    dir: ./manifests
    name: my-app
    inventoryID: 7c1f...
    inventoryNamespace: inventory
    namespace: my-app
    force: false
    flags: []
    applyFlags: [--reconcile-timeout=2m]
    kptBinary: kpt
    timeout: 600

Resolution order for the config file:
1. --config command-line flag
2. $KPT_DEPLOY_CONFIG environment variable
3. ./kpt-deploy.yaml in the working directory
4. Built-in defaults (no file)

Command-line options override file values when non-empty.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from deployer.reconcile import DesiredInventory

CONFIG_ENV_VAR = 'KPT_DEPLOY_CONFIG'
DEFAULT_CONFIG_NAME = 'kpt-deploy.yaml'
DEFAULT_TIMEOUT = 600


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class DeployConfig:
    """Configuration for one kpt deployment unit.

    Attributes:
        dir: Package directory holding the Kptfile
        name: Inventory name
        inventory_id: Inventory ID
        inventory_namespace: Global inventory namespace
        namespace: Namespace of the deployment unit
        force: Pass --force to `kpt live init`
        flags: Extra flags for every kpt live command
        apply_flags: Extra flags for `kpt live apply` only
        kpt_binary: kpt executable
        timeout: Per-command timeout in seconds
        config_file: File the values came from (None = defaults)
    """
    dir: Path = field(default_factory=lambda: Path('.'))
    name: str = ''
    inventory_id: str = ''
    inventory_namespace: str = ''
    namespace: str = ''
    force: bool = False
    flags: list[str] = field(default_factory=list)
    apply_flags: list[str] = field(default_factory=list)
    kpt_binary: str = 'kpt'
    timeout: int = DEFAULT_TIMEOUT
    config_file: Optional[Path] = None

    def __post_init__(self):
        if isinstance(self.dir, str):
            self.dir = Path(self.dir)

    @classmethod
    def from_dict(cls, data: dict, base_dir: Optional[Path] = None) -> 'DeployConfig':
        """Create DeployConfig from a parsed YAML mapping.

        A relative ``dir`` is resolved against ``base_dir``.
        """
        if not isinstance(data, dict):
            raise ConfigError(f"Deploy config must be a mapping, got {type(data).__name__}")

        directory = Path(str(data.get('dir', '.')))
        if base_dir is not None and not directory.is_absolute():
            directory = base_dir / directory

        try:
            timeout = int(data.get('timeout', DEFAULT_TIMEOUT))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"timeout must be an integer: {data.get('timeout')!r}") from e

        return cls(
            dir=directory,
            name=str(data.get('name') or ''),
            inventory_id=str(data.get('inventoryID') or ''),
            inventory_namespace=str(data.get('inventoryNamespace') or ''),
            namespace=str(data.get('namespace') or ''),
            force=_bool(data, 'force'),
            flags=_str_list(data, 'flags'),
            apply_flags=_str_list(data, 'applyFlags'),
            kpt_binary=str(data.get('kptBinary') or 'kpt'),
            timeout=timeout,
        )

    def apply_overrides(
        self,
        directory: Optional[str] = None,
        name: Optional[str] = None,
        inventory_id: Optional[str] = None,
        inventory_namespace: Optional[str] = None,
        namespace: Optional[str] = None,
        force: bool = False,
    ) -> None:
        """Overlay command-line options; empty values keep the file's."""
        if directory:
            self.dir = Path(directory)
        if name:
            self.name = name
        if inventory_id:
            self.inventory_id = inventory_id
        if inventory_namespace:
            self.inventory_namespace = inventory_namespace
        if namespace:
            self.namespace = namespace
        if force:
            self.force = True

    def desired_inventory(self) -> DesiredInventory:
        return DesiredInventory(
            name=self.name,
            inventory_id=self.inventory_id,
            namespace=self.namespace,
            inventory_namespace=self.inventory_namespace,
            force=self.force,
            flags=tuple(self.flags),
        )


def _str_list(data: dict, key: str) -> list[str]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list, got {type(value).__name__}")
    return [str(v) for v in value]


def _bool(data: dict, key: str) -> bool:
    value = data.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return value


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e


def discover_config_path(explicit: Optional[str] = None) -> Optional[Path]:
    """Find the deploy config file.

    Returns:
        Path to the config file, or None when no file is configured
    """
    # 1. Explicit flag (highest priority)
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise ConfigError(f"Config file {path} does not exist")
        return path

    # 2. Environment variable
    if env_path := os.environ.get(CONFIG_ENV_VAR):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"{CONFIG_ENV_VAR}={env_path} does not exist")

    # 3. Working directory
    local = Path.cwd() / DEFAULT_CONFIG_NAME
    if local.exists():
        return local

    return None


def load_deploy_config(explicit: Optional[str] = None) -> DeployConfig:
    """Load the deploy config, falling back to defaults when no file exists."""
    path = discover_config_path(explicit)
    if path is None:
        return DeployConfig()
    config = DeployConfig.from_dict(_parse_yaml(path), base_dir=path.parent)
    config.config_file = path
    return config
