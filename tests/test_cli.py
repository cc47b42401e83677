"""Tests for cli.py - argument parsing and command dispatch."""

import os

import pytest

from cli import build_parser, main
from nodes import Node
from nodes.models import COMPLETE, IN_PROGRESS


@pytest.fixture
def run(profile_root):
    """Invoke the CLI against the test profile root."""
    def _run(*argv):
        return main(['--root', str(profile_root), *argv])
    return _run


class TestParser:
    """Test argument parsing."""

    def test_remove_options(self):
        args = build_parser().parse_args(['remove', 'n[1-3]', '--force', '--wait'])
        assert args.targets == ['n[1-3]']
        assert args.force
        assert args.wait
        assert args.remove_hunter_entry is None

    def test_hunter_entry_flags(self):
        assert build_parser().parse_args(['remove', 'n1', '--remove-hunter-entry']).remove_hunter_entry is True
        assert build_parser().parse_args(['remove', 'n1', '--keep-hunter-entry']).remove_hunter_entry is False

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert 'usage' in capsys.readouterr().out.lower()


class TestConfigure:
    """Test the configure command."""

    def test_answers_json(self, run, config, capsys):
        rc = run('configure', 'slurm', '--answers',
                 '{"cluster_name": "c1", "ipa_use": false, "default_password": "pw12"}')
        assert rc == 0
        assert config.cluster_type == 'slurm'
        assert "configured" in capsys.readouterr().out

    def test_type_named_in_answers(self, run, config):
        rc = run('configure', '--answers',
                 '{"cluster_type": "slurm", "cluster_name": "c1", "ipa_use": false, '
                 '"default_password": "pw12"}')
        assert rc == 0
        assert config.cluster_type == 'slurm'

    def test_type_in_answers_needs_reset_to_switch(self, run, config, capsys):
        config.select_cluster_type('other')
        rc = run('configure', '--answers',
                 '{"cluster_type": "slurm", "cluster_name": "c1", "ipa_use": false, '
                 '"default_password": "pw12"}')
        assert rc == 1
        assert '--reset-type' in capsys.readouterr().err

        rc = run('configure', '--reset-type', '--answers',
                 '{"cluster_type": "slurm", "cluster_name": "c1", "ipa_use": false, '
                 '"default_password": "pw12"}')
        assert rc == 0
        assert config.cluster_type == 'slurm'

    def test_reset_type_with_answers_needs_a_type(self, run, config, capsys):
        config.select_cluster_type('slurm')
        rc = run('configure', '--reset-type', '--answers',
                 '{"cluster_name": "c1", "ipa_use": false, "default_password": "pw12"}')
        assert rc == 1
        assert 'valid cluster type' in capsys.readouterr().err

    def test_validation_error(self, run, capsys):
        rc = run('configure', 'slurm', '--answers', '{"cluster_name": "c1", "bogus": 1}')
        assert rc == 1
        err = capsys.readouterr().err
        assert err.startswith('Error:')
        assert 'bogus' in err

    def test_unknown_type(self, run, capsys):
        assert run('configure', 'nope', '--accept-defaults') == 1
        assert 'slurm' in capsys.readouterr().err

    def test_reset_type_required(self, run, config, capsys):
        config.select_cluster_type('other')
        assert run('configure', 'slurm', '--accept-defaults') == 1
        assert '--reset-type' in capsys.readouterr().err

    def test_show(self, run, configured_type, config, capsys):
        config.select_cluster_type('slurm')
        assert run('configure', '--show') == 0
        assert 'Cluster name: mycluster' in capsys.readouterr().out


class TestList:
    """Test the list command."""

    def test_empty(self, run, capsys):
        assert run('list') == 0
        assert 'No nodes found' in capsys.readouterr().out

    def test_table_flags_stuck(self, run, registry, capsys):
        registry.add(Node(name='n1', identity='compute', status=COMPLETE))
        registry.add(Node(name='n2', identity='login', status=IN_PROGRESS))

        assert run('list') == 0

        out = capsys.readouterr().out
        assert 'Node' in out and 'Identity' in out
        assert 'in_progress (stuck)' in out

    def test_release_stuck(self, run, registry):
        registry.add(Node(name='n2', identity='login', status=IN_PROGRESS))
        assert run('list', '--release-stuck') == 0
        assert registry.find('n2').status == 'failed'


class TestJobs:
    """Test apply and remove through the CLI."""

    def test_requires_configured_type(self, run, capsys):
        assert run('remove', 'n1') == 1
        assert 'nodeprofile configure' in capsys.readouterr().err

    def test_apply_then_remove(self, run, configured_type, config, registry, capsys):
        config.select_cluster_type('slurm')

        assert run('apply', 'login', 'n[1-2]', '--wait') == 0
        assert [n.identity for n in registry.all()] == ['login', 'login']

        assert run('remove', 'n1,n2', '--wait') == 0
        assert registry.all() == []
        assert 'succeeded' in capsys.readouterr().out

    def test_busy_conflict(self, run, configured_type, config, registry, capsys):
        config.select_cluster_type('slurm')
        registry.add(Node(name='n1', identity='compute', status=IN_PROGRESS,
                          deployment_pid=os.getpid()))

        assert run('remove', 'n1') == 1
        assert 'n1' in capsys.readouterr().err

    def test_bad_host_range(self, run, configured_type, config, capsys):
        config.select_cluster_type('slurm')
        assert run('remove', 'n[1-') == 1
        assert capsys.readouterr().err.startswith('Error:')


class TestView:
    """Test the view command."""

    def test_view_log(self, run, registry, tmp_path, capsys):
        log = tmp_path / 'n1.log'
        log.write_text("PROFILE_COMMAND compute: run.sh\nt - p - Do it - shell - ok - {}\n")
        registry.add(Node(name='n1', status=COMPLETE, log_file=str(log)))

        assert run('view', 'n1') == 0
        assert '✅ Do it' in capsys.readouterr().out

    def test_view_unknown_node(self, run, capsys):
        assert run('view', 'ghost') == 1
        assert 'ghost' in capsys.readouterr().err
