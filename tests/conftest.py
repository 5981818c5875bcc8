"""Shared pytest fixtures for kpt-deploy tests."""

import sys
from pathlib import Path

import pytest
import yaml

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

MINIMAL_KPTFILE = """\
apiVersion: kpt.dev/v1
kind: Kptfile
metadata:
  name: app
info:
  description: sample description
"""


class FakeKpt:
    """In-process stand-in for the kpt CLI.

    init/live_init write the Kptfile the way kpt would; every call is
    recorded in ``calls`` as (method, kwargs). Set the ``*_error`` attributes
    to make a method raise.
    """

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.init_error = None
        self.live_init_error = None
        self.apply_error = None
        self.destroy_error = None
        self.source_error = None
        self.source_output = ''
        self.init_creates_file = True
        self.live_init_writes_inventory = True

    def called(self, method: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def init(self, directory):
        self.calls.append(('init', {'directory': Path(directory)}))
        if self.init_error:
            raise self.init_error
        if self.init_creates_file:
            (Path(directory) / 'Kptfile').write_text(MINIMAL_KPTFILE)

    def live_init(self, directory, name='', inventory_id='', namespace='', force=False, flags=()):
        self.calls.append(('live_init', {
            'directory': Path(directory),
            'name': name,
            'inventory_id': inventory_id,
            'namespace': namespace,
            'force': force,
            'flags': tuple(flags),
        }))
        if self.live_init_error:
            raise self.live_init_error
        if self.live_init_writes_inventory:
            path = Path(directory) / 'Kptfile'
            data = yaml.safe_load(path.read_text()) or {}
            data['inventory'] = {
                'namespace': namespace or 'default',
                'name': name or Path(directory).name,
                'inventoryID': inventory_id or 'generated-id',
            }
            path.write_text(yaml.safe_dump(data, sort_keys=False))

    def live_apply(self, directory, flags=()):
        self.calls.append(('live_apply', {'directory': Path(directory), 'flags': tuple(flags)}))
        if self.apply_error:
            raise self.apply_error

    def live_destroy(self, directory, flags=()):
        self.calls.append(('live_destroy', {'directory': Path(directory), 'flags': tuple(flags)}))
        if self.destroy_error:
            raise self.destroy_error

    def source(self, directory):
        self.calls.append(('source', {'directory': Path(directory)}))
        if self.source_error:
            raise self.source_error
        return self.source_output


@pytest.fixture
def fake_kpt():
    """FakeKpt instance with no failures configured."""
    return FakeKpt()


@pytest.fixture
def package_dir(tmp_path):
    """Empty package directory (no Kptfile)."""
    directory = tmp_path / 'app'
    directory.mkdir()
    return directory


@pytest.fixture
def write_kptfile(package_dir):
    """Write a Kptfile into package_dir, optionally with an inventory block.

    Usage:
        path = write_kptfile(inventory={'inventoryID': 'x', 'name': 'old'})
    """
    def _write(inventory=None):
        data = yaml.safe_load(MINIMAL_KPTFILE)
        if inventory is not None:
            data['inventory'] = inventory
        path = package_dir / 'Kptfile'
        path.write_text(yaml.safe_dump(data, sort_keys=False))
        return path
    return _write


@pytest.fixture
def resource_list():
    """kpt fn source output with two namespaced objects and one cluster-scoped."""
    return """\
apiVersion: config.kubernetes.io/v1
kind: ResourceList
items:
- apiVersion: v1
  kind: Namespace
  metadata:
    name: web
- apiVersion: apps/v1
  kind: Deployment
  metadata:
    name: frontend
    namespace: web
- apiVersion: v1
  kind: ConfigMap
  metadata:
    name: settings
    namespace: backend
"""
