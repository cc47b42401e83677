"""Tests for nodes/ - node records and the file-backed registry."""

import threading
from unittest.mock import patch

import pytest

from nodes import Identity, Node, NodeRegistry
from nodes.models import COMPLETE, FAILED, IN_PROGRESS


class TestNode:
    """Test Node record defaults and serialisation."""

    def test_hostname_defaults_to_name(self):
        assert Node(name='n1').hostname == 'n1'

    def test_invalid_status_rejected(self):
        with pytest.raises(ValueError):
            Node(name='n1', status='exploded')

    def test_to_dict_omits_unset_fields(self):
        d = Node(name='n1', identity='compute').to_dict()
        assert d == {'name': 'n1', 'hostname': 'n1', 'status': 'idle', 'identity': 'compute'}
        assert Node.from_dict(d) == Node(name='n1', identity='compute')


class TestIdentity:
    """Test identity capabilities."""

    def test_remove_requires_removable(self):
        identity = Identity(name='login', commands={'remove': '/bin/true'}, removable=False)
        assert not identity.supports('remove')

    def test_action_requires_command(self):
        identity = Identity(name='login', commands={'apply': '/bin/true'}, removable=True)
        assert identity.supports('apply')
        assert not identity.supports('remove')

    def test_relative_commands_resolved(self, tmp_path):
        (tmp_path / 'identities').mkdir()
        path = tmp_path / 'identities' / 'compute.yaml'
        path.write_text("commands:\n  apply: bin/apply.sh\n")
        identity = Identity.load(path)
        assert identity.name == 'compute'
        assert identity.command('apply') == str(tmp_path / 'bin' / 'apply.sh')


class TestNodeRegistry:
    """Test persistence and group updates."""

    def test_add_and_find(self, registry):
        registry.add(Node(name='n1', identity='compute'))
        assert registry.find('n1').identity == 'compute'
        assert registry.find('missing') is None

    def test_add_duplicate_rejected(self, registry):
        registry.add(Node(name='n1'))
        with pytest.raises(ValueError):
            registry.add(Node(name='n1'))

    def test_all_sorted_and_filtered(self, registry):
        registry.add(Node(name='b', status=FAILED))
        registry.add(Node(name='a', status=COMPLETE))
        assert [n.name for n in registry.all()] == ['a', 'b']
        assert [n.name for n in registry.all(lambda n: n.status == FAILED)] == ['b']

    def test_persists_across_instances(self, registry, config):
        registry.add(Node(name='n1'))
        assert NodeRegistry(config.data_dir).find('n1') is not None

    def test_group_update_all(self, registry):
        for name in ('n1', 'n2', 'n3'):
            registry.add(Node(name=name))
        group = registry.group([registry.find('n1'), registry.find('n2')])

        updated = group.update_all(status=IN_PROGRESS, deployment_pid=4321)

        assert [n.name for n in updated] == ['n1', 'n2']
        assert registry.find('n1').deployment_pid == 4321
        assert registry.find('n2').status == IN_PROGRESS
        assert registry.find('n3').deployment_pid is None

    def test_group_update_skips_vanished(self, registry):
        registry.add(Node(name='n1'))
        registry.add(Node(name='n2'))
        group = registry.group(registry.all())
        registry.delete(registry.find('n2'))

        assert [n.name for n in group.update_all(exit_status=0)] == ['n1']

    def test_group_update_unknown_field(self, registry):
        registry.add(Node(name='n1'))
        with pytest.raises(AttributeError):
            registry.group([registry.find('n1')]).update_all(colour='blue')
        assert registry.find('n1') is not None

    def test_failed_transaction_not_saved(self, registry):
        registry.add(Node(name='n1'))
        with pytest.raises(RuntimeError):
            with registry.transaction() as nodes:
                nodes.pop('n1')
                raise RuntimeError("abort")
        assert registry.find('n1') is not None

    def test_delete_all(self, registry):
        for name in ('n1', 'n2'):
            registry.add(Node(name=name))
        registry.group(registry.all()).delete_all()
        assert registry.all() == []

    def test_complete_records_exit_on_owned_nodes(self, registry):
        for name in ('n1', 'n2'):
            registry.add(Node(name=name, status=IN_PROGRESS, deployment_pid=111, last_action='apply'))

        owned = registry.group(registry.all()).complete(111, 3)

        assert [n.name for n in owned] == ['n1', 'n2']
        for name in ('n1', 'n2'):
            node = registry.find(name)
            assert node.status == FAILED
            assert node.exit_status == 3
            assert node.deployment_pid is None
            assert node.last_action is None

    def test_complete_skips_nodes_taken_over(self, registry):
        """A node re-owned by another job keeps its new owner."""
        registry.add(Node(name='n1', status=IN_PROGRESS, deployment_pid=111))
        registry.add(Node(name='n2', status=IN_PROGRESS, deployment_pid=222, last_action='remove'))
        group = registry.group(registry.all())

        owned = group.complete(111, 0, delete_on_success=True)

        assert [n.name for n in owned] == ['n1']
        assert registry.find('n1') is None
        taken = registry.find('n2')
        assert taken.deployment_pid == 222
        assert taken.status == IN_PROGRESS
        assert taken.last_action == 'remove'

    def test_complete_delete_is_one_write(self, registry):
        """Exit status and deletion land together; no intermediate state is saved."""
        for name in ('n1', 'n2'):
            registry.add(Node(name=name, status=IN_PROGRESS, deployment_pid=111))
        group = registry.group(registry.all())

        with patch.object(registry, '_save', wraps=registry._save) as save:
            group.complete(111, 0, delete_on_success=True)

        assert save.call_count == 1
        assert registry.all() == []

    def test_complete_failure_keeps_nodes_when_deleting(self, registry):
        registry.add(Node(name='n1', status=IN_PROGRESS, deployment_pid=111))

        registry.group(registry.all()).complete(111, 2, delete_on_success=True)

        node = registry.find('n1')
        assert node.status == FAILED
        assert node.exit_status == 2

    def test_concurrent_group_updates(self, registry):
        """Concurrent transactions never lose each other's writes."""
        names = [f'n{i}' for i in range(8)]
        for name in names:
            registry.add(Node(name=name))

        def worker(name):
            registry.group([registry.find(name)]).update_all(status=COMPLETE, exit_status=0)

        threads = [threading.Thread(target=worker, args=(n,)) for n in names]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(n.status == COMPLETE for n in registry.all())

    def test_busy_until_complete(self):
        assert NodeRegistry.is_busy(Node(name='n', status=IN_PROGRESS))
        assert NodeRegistry.is_busy(Node(name='n', status=FAILED))
        assert not NodeRegistry.is_busy(Node(name='n', status=COMPLETE))
