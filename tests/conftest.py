"""Shared pytest fixtures for nodeprofile tests."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from cluster_type import ClusterType  # noqa: E402
from config import ProfileConfig  # noqa: E402
from nodes import NodeRegistry  # noqa: E402


METADATA = """
id: slurm
name: Slurm
description: Slurm multinode cluster
questions:
  - id: cluster_name
    env: CLUSTER_NAME
    text: 'Cluster name:'
    default: my-cluster
    validation:
      required: true
      format: '^[a-zA-Z0-9_\\-]+$'
      message: Invalid cluster name
  - id: ipa_use
    env: IPA_USE
    text: 'Use IPA?'
    type: conditional
    default: false
    questions:
      - id: ipa_domain
        env: IPA_DOMAIN
        text: 'IPA domain:'
        where: true
        default: cluster.local
  - id: default_password
    env: DEFAULT_PASSWORD
    text: 'Default user password:'
    type: password
    default: secret123
"""

SCRIPT_OK = "#!/bin/sh\necho \"running on $NODE\"\nexit 0\n"


def write_identity(type_dir: Path, name: str, commands: dict, removable: bool = True, env=None):
    """Write an identity definition plus executable scripts for its commands."""
    identity_dir = type_dir / 'identities'
    identity_dir.mkdir(parents=True, exist_ok=True)
    lines = [f"name: {name}", f"removable: {'true' if removable else 'false'}", "commands:"]
    for action, script in commands.items():
        path = type_dir / 'bin' / f'{name}-{action}.sh'
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(script)
        path.chmod(0o755)
        lines.append(f"  {action}: bin/{path.name}")
    if env:
        lines.append("env:")
        lines.extend(f"  {key}: {value}" for key, value in env.items())
    (identity_dir / f'{name}.yaml').write_text('\n'.join(lines) + '\n')


@pytest.fixture
def profile_root(tmp_path):
    """Profile root with one prepared cluster type.

    Creates:
    - types/slurm/metadata.yaml (cluster_name, ipa_use > ipa_domain, default_password)
    - types/slurm/state.yaml (prepared)
    - identities login and compute with apply/remove scripts
    """
    root = tmp_path / 'profile'
    type_dir = root / 'types' / 'slurm'
    type_dir.mkdir(parents=True)
    (type_dir / 'metadata.yaml').write_text(METADATA)
    (type_dir / 'state.yaml').write_text("prepared: true\n")
    write_identity(type_dir, 'login', {'apply': SCRIPT_OK, 'remove': SCRIPT_OK})
    write_identity(type_dir, 'compute', {'apply': SCRIPT_OK, 'remove': SCRIPT_OK},
                   env={'SLURM_ROLE': 'compute'})
    return root


@pytest.fixture
def config(profile_root):
    """Profile configuration rooted at profile_root."""
    return ProfileConfig(root=profile_root)


@pytest.fixture
def type_dir(profile_root):
    return profile_root / 'types' / 'slurm'


@pytest.fixture
def cluster_type(config, type_dir):
    """The slurm cluster type, loaded from disk."""
    return ClusterType.load(type_dir, config)


@pytest.fixture
def configured_type(cluster_type):
    """The slurm cluster type with every required answer saved."""
    cluster_type.save_answers({
        'cluster_name': 'mycluster',
        'ipa_use': False,
        'default_password': 'hunter22',
    })
    return cluster_type


@pytest.fixture
def registry(config):
    return NodeRegistry(config.data_dir)
