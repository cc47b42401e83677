"""Tests for jobs/recovery.py - busy-node guard and stuck-node release."""

import os
import signal
from unittest.mock import MagicMock, patch

import pytest

from errors import BusyConflict
from jobs.recovery import ABORT_SIGNAL, RecoveryGuard, _process_alive
from nodes import Node
from nodes.models import COMPLETE, FAILED, IN_PROGRESS


class TestProcessAlive:
    """Test process liveness probing."""

    def test_own_process_alive(self):
        assert _process_alive(os.getpid())

    def test_missing_process(self):
        with patch('jobs.recovery.os.kill', side_effect=ProcessLookupError):
            assert not _process_alive(99999)

    def test_permission_denied_means_alive(self):
        with patch('jobs.recovery.os.kill', side_effect=PermissionError):
            assert _process_alive(1)


class TestCheck:
    """Test guarding operations against busy nodes."""

    def test_idle_set_passes(self, registry):
        kill = MagicMock()
        nodes = [Node(name='n1', status=COMPLETE)]
        assert RecoveryGuard(registry, kill=kill).check(nodes) == []
        kill.assert_not_called()

    def test_busy_rejected_with_all_names(self, registry):
        nodes = [
            Node(name='n1', status=IN_PROGRESS, deployment_pid=10),
            Node(name='n2', status=COMPLETE),
            Node(name='n3', status=FAILED),
        ]
        with pytest.raises(BusyConflict) as exc:
            RecoveryGuard(registry, kill=MagicMock()).check(nodes)
        assert exc.value.items == ['n1', 'n3']

    def test_force_signals_each_pid_once(self, registry):
        kill = MagicMock()
        nodes = [
            Node(name='n1', status=IN_PROGRESS, deployment_pid=4321),
            Node(name='n2', status=IN_PROGRESS, deployment_pid=4321),
            Node(name='n3', status=IN_PROGRESS, deployment_pid=55),
            Node(name='n4', status=FAILED),
        ]

        busy = RecoveryGuard(registry, kill=kill).check(nodes, force=True)

        assert [n.name for n in busy] == ['n1', 'n2', 'n3', 'n4']
        assert [c.args for c in kill.call_args_list] == [(4321, ABORT_SIGNAL), (55, ABORT_SIGNAL)]

    def test_force_tolerates_exited_process(self, registry):
        kill = MagicMock(side_effect=ProcessLookupError)
        nodes = [Node(name='n1', status=IN_PROGRESS, deployment_pid=4321)]
        assert len(RecoveryGuard(registry, kill=kill).check(nodes, force=True)) == 1

    def test_abort_signal_is_hangup(self):
        assert ABORT_SIGNAL == signal.SIGHUP


class TestStuck:
    """Test finding and releasing stuck nodes."""

    def test_find_stuck(self, registry):
        registry.add(Node(name='alive', status=IN_PROGRESS, deployment_pid=os.getpid()))
        registry.add(Node(name='orphan', status=IN_PROGRESS))
        registry.add(Node(name='dead', status=IN_PROGRESS, deployment_pid=99999))
        registry.add(Node(name='done', status=COMPLETE))

        with patch('jobs.recovery._process_alive', side_effect=lambda pid: pid == os.getpid()):
            stuck = RecoveryGuard(registry).find_stuck()

        assert [n.name for n in stuck] == ['dead', 'orphan']

    def test_release(self, registry):
        registry.add(Node(name='n1', status=IN_PROGRESS, deployment_pid=99999, last_action='remove'))
        guard = RecoveryGuard(registry)

        guard.release([registry.find('n1')])

        node = registry.find('n1')
        assert node.status == FAILED
        assert node.deployment_pid is None
        assert node.last_action is None

    def test_release_nothing(self, registry):
        assert RecoveryGuard(registry).release([]) == []
