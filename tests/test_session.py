"""Tests for deployer.session (deploy and cleanup)."""

import sys
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from deployer.artifacts import Artifact, ImageList
from deployer.errors import (
    ApplyError,
    DeployError,
    DestroyError,
    InitializationError,
    KptCommandError,
    LiveInitError,
    NamespaceCollectionError,
)
from deployer.events import EventLog
from deployer.kpt import KptCli
from deployer.reconcile import DesiredInventory
from deployer.session import DeploySession

STORED = {'namespace': 'default', 'name': 'app', 'inventoryID': 'x'}


def _session(package_dir, fake_kpt, **kwargs):
    kwargs.setdefault('events', EventLog())
    kwargs.setdefault('tracker', ImageList())
    return DeploySession(package_dir, fake_kpt, **kwargs)


class TestDeploy:
    """Test DeploySession.deploy()."""

    def test_deploy_success(self, package_dir, fake_kpt, write_kptfile, resource_list):
        """Deploy returns namespaces from the rendered manifests."""
        write_kptfile(inventory=dict(STORED))
        fake_kpt.source_output = resource_list
        session = _session(package_dir, fake_kpt)

        namespaces = session.deploy([Artifact('gcr.io/p/app', 'gcr.io/p/app:v1')])

        assert namespaces == ['backend', 'web']
        assert [name for name, _ in fake_kpt.calls] == ['source', 'live_apply']
        assert 'gcr.io/p/app:v1' in session.tracker
        assert session.events.events == []

    def test_apply_flags(self, package_dir, fake_kpt, write_kptfile):
        """Apply receives common flags followed by apply-only flags."""
        write_kptfile(inventory=dict(STORED))
        session = _session(package_dir, fake_kpt, flags=('--dry-run',),
                           apply_flags=('--reconcile-timeout=2m',))
        session.deploy()
        assert fake_kpt.called('live_apply')[0]['flags'] == ('--dry-run', '--reconcile-timeout=2m')

    def test_deploy_bootstraps_empty_dir(self, package_dir, fake_kpt):
        """Reconcile runs before anything else."""
        session = _session(package_dir, fake_kpt, desired=DesiredInventory(name='app1'))
        session.deploy()
        assert [name for name, _ in fake_kpt.calls] == ['init', 'live_init', 'source', 'live_apply']

    def test_render_failure_is_not_fatal(self, package_dir, fake_kpt, write_kptfile):
        """Source failure emits an info event and apply still runs."""
        write_kptfile(inventory=dict(STORED))
        fake_kpt.source_error = KptCommandError(['kpt', 'fn', 'source'], 1, 'render failed')
        session = _session(package_dir, fake_kpt)

        namespaces = session.deploy()

        assert namespaces == []
        assert len(fake_kpt.called('live_apply')) == 1
        info = session.events.messages('info')
        assert len(info) == 1
        assert 'could not read the hydrated manifest' in info[0]

    def test_malformed_render_output_is_not_fatal(self, package_dir, fake_kpt, write_kptfile):
        write_kptfile(inventory=dict(STORED))
        fake_kpt.source_output = 'items: [unclosed\n'
        session = _session(package_dir, fake_kpt)

        assert session.deploy() == []
        assert len(fake_kpt.called('live_apply')) == 1
        assert len(session.events.messages('info')) == 1

    def test_namespace_collection_failure_is_not_fatal(self, package_dir, fake_kpt, write_kptfile,
                                                       resource_list):
        write_kptfile(inventory=dict(STORED))
        fake_kpt.source_output = resource_list
        collector = MagicMock(side_effect=NamespaceCollectionError('bad metadata'))
        session = _session(package_dir, fake_kpt, namespace_collector=collector)

        assert session.deploy() == []
        collector.assert_called_once()
        assert len(fake_kpt.called('live_apply')) == 1
        assert 'port-forward' in session.events.messages('info')[0]

    def test_apply_failure(self, package_dir, fake_kpt, write_kptfile):
        """Apply failure raises ApplyError and tracks nothing."""
        write_kptfile(inventory=dict(STORED))
        fake_kpt.apply_error = KptCommandError(['kpt', 'live', 'apply'], 1, 'denied')
        tracker = MagicMock()
        session = _session(package_dir, fake_kpt, tracker=tracker)

        with pytest.raises(ApplyError) as exc_info:
            session.deploy([Artifact('app', 'app:v1')])

        assert exc_info.value.path == package_dir
        assert isinstance(exc_info.value.__cause__, KptCommandError)
        tracker.register.assert_not_called()

    def test_reconcile_failure_aborts(self, package_dir, fake_kpt):
        fake_kpt.init_error = KptCommandError(['kpt', 'pkg', 'init'], 1, 'no kpt')
        session = _session(package_dir, fake_kpt)

        with pytest.raises(InitializationError):
            session.deploy()
        assert fake_kpt.called('source') == []
        assert fake_kpt.called('live_apply') == []

    def test_no_artifacts_registers_nothing(self, package_dir, fake_kpt, write_kptfile):
        write_kptfile(inventory=dict(STORED))
        tracker = MagicMock()
        _session(package_dir, fake_kpt, tracker=tracker).deploy()
        tracker.register.assert_not_called()

    def test_inventory_overwrite_emits_warning(self, package_dir, fake_kpt, write_kptfile):
        """Each overwritten inventory field reaches the event sink as a warning."""
        write_kptfile(inventory=dict(STORED))
        session = _session(package_dir, fake_kpt, desired=DesiredInventory(name='renamed'))

        session.deploy()

        assert session.events.messages('warning') == ['Updating Kptfile name from app to renamed']
        assert session.events.messages('info') == []

    def test_unchanged_inventory_emits_no_warning(self, package_dir, fake_kpt, write_kptfile):
        write_kptfile(inventory=dict(STORED))
        session = _session(package_dir, fake_kpt, desired=DesiredInventory(name='app'))
        session.deploy()
        assert session.events.messages('warning') == []


class TestDeployCancellation:
    """Cancellation through KptCli while kpt live apply is running."""

    def test_cancel_during_apply(self, package_dir, write_kptfile):
        path = write_kptfile(inventory=dict(STORED))
        before = path.read_text()
        cancel = threading.Event()
        tracker = MagicMock()
        session = _session(package_dir, KptCli(cancel=cancel), tracker=tracker)

        def fake_run(cmd, **kwargs):
            if cmd[1:3] == ['live', 'apply']:
                cancel.set()
                return -1, '', 'Command cancelled'
            return 0, '', ''

        with patch('deployer.kpt.run_command', side_effect=fake_run) as mock_cmd, \
             patch('deployer.reconcile.kptfile.write') as mock_write:
            with pytest.raises(ApplyError, match='cancelled') as exc_info:
                session.deploy([Artifact('app', 'app:v1')])

        assert isinstance(exc_info.value.__cause__, KptCommandError)
        assert mock_cmd.call_args.kwargs['cancel'] is cancel
        mock_write.assert_not_called()
        tracker.register.assert_not_called()
        assert path.read_text() == before

    def test_cancel_with_real_process(self, package_dir, write_kptfile):
        """A pre-set cancel event stops the kpt process and fails the apply."""
        write_kptfile(inventory=dict(STORED))
        cancel = threading.Event()
        cancel.set()
        tracker = MagicMock()
        kpt = KptCli(binary='sleep', cancel=cancel, timeout=30)
        session = _session(package_dir, kpt, tracker=tracker)

        with patch.object(KptCli, 'source', return_value=''):
            with pytest.raises(ApplyError, match='cancelled'):
                session.deploy([Artifact('app', 'app:v1')])
        tracker.register.assert_not_called()


class TestCleanup:
    """Test DeploySession.cleanup()."""

    def test_cleanup_success(self, package_dir, fake_kpt, write_kptfile):
        write_kptfile(inventory=dict(STORED))
        _session(package_dir, fake_kpt, flags=('--dry-run',)).cleanup()
        assert fake_kpt.called('live_destroy') == [{'directory': package_dir, 'flags': ('--dry-run',)}]

    def test_cleanup_initializes_inventory_first(self, package_dir, fake_kpt, write_kptfile):
        """Destroy needs the inventory, so a Kptfile without one is bootstrapped."""
        write_kptfile()
        _session(package_dir, fake_kpt, desired=DesiredInventory(name='app')).cleanup()
        assert [name for name, _ in fake_kpt.calls] == ['live_init', 'live_destroy']

    def test_destroy_failure(self, package_dir, fake_kpt, write_kptfile):
        write_kptfile(inventory=dict(STORED))
        fake_kpt.destroy_error = KptCommandError(['kpt', 'live', 'destroy'], 1, 'gone')
        with pytest.raises(DestroyError) as exc_info:
            _session(package_dir, fake_kpt).cleanup()
        assert exc_info.value.path == package_dir

    def test_reconcile_failure_aborts(self, package_dir, fake_kpt, write_kptfile):
        write_kptfile()
        fake_kpt.live_init_error = KptCommandError(['kpt', 'live', 'init'], 1, 'denied')
        with pytest.raises(LiveInitError):
            _session(package_dir, fake_kpt).cleanup()
        assert fake_kpt.called('live_destroy') == []


class TestMisc:
    """Other DeploySession behaviour."""

    def test_dependencies_empty(self, package_dir, fake_kpt):
        assert _session(package_dir, fake_kpt).dependencies() == []

    def test_render_not_supported(self, package_dir, fake_kpt):
        with pytest.raises(DeployError, match="not supported") as exc_info:
            _session(package_dir, fake_kpt).render()
        assert exc_info.value.path == package_dir

    def test_defaults(self, package_dir, fake_kpt):
        session = DeploySession(package_dir, fake_kpt)
        assert isinstance(session.events, EventLog)
        assert isinstance(session.tracker, ImageList)
        assert session.desired == DesiredInventory()
