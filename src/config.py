"""Profile configuration management.

Configuration is loaded from the profile root:
- etc/config.yaml: Paths, hunter integration and probe settings
- <data_dir>/state.yaml: Selected cluster type (written by configure)

Resolution order for the profile root:
1. $NODEPROFILE_ROOT environment variable
2. /usr/local/etc/nodeprofile/ (FHS install)
3. ~/.nodeprofile/ (per-user default)

Relative paths in config.yaml are resolved against the root.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from common import PROBE_TIMEOUT
from errors import ProfileError

logger = logging.getLogger(__name__)

FHS_ROOT = Path('/usr/local/etc/nodeprofile')


class ConfigError(ProfileError):
    """Configuration error."""

    def __init__(self, message: str):
        super().__init__("E600", message)


@dataclass
class ProfileConfig:
    """Configuration for one profile root.

    Attributes:
        root: Profile root directory
        type_paths: Directories searched for cluster type definitions
        answers_dir: Saved answers, one YAML file per cluster type
        data_dir: Node store and selection state
        log_dir: Job logs and user-facing log symlinks
        inventory_dir: Ansible inventory files, one per cluster
        ansible_callback_dir: Callback plugins exported to jobs
        use_hunter: Whether nodes are tracked by hunter
        remove_hunter_entry: Drop hunter entries after a successful removal
        hunter_command: Hunter CLI used when no hunter_url is set
        hunter_url: Hunter HTTP endpoint (takes precedence over the CLI)
        probe_timeout: Per-probe bound for smart defaults, in seconds
    """
    root: Path
    type_paths: list[Path] = field(default_factory=list)
    answers_dir: Optional[Path] = None
    data_dir: Optional[Path] = None
    log_dir: Optional[Path] = None
    inventory_dir: Optional[Path] = None
    ansible_callback_dir: Optional[Path] = None
    use_hunter: bool = False
    remove_hunter_entry: bool = False
    hunter_command: str = 'flight hunter'
    hunter_url: Optional[str] = None
    probe_timeout: float = PROBE_TIMEOUT

    def __post_init__(self):
        self.root = Path(self.root)
        if not self.type_paths:
            self.type_paths = [self.root / 'types']
        self.type_paths = [self._resolve(p) for p in self.type_paths]
        self.answers_dir = self._resolve(self.answers_dir or 'var/answers')
        self.data_dir = self._resolve(self.data_dir or 'var/data')
        self.log_dir = self._resolve(self.log_dir or 'var/log')
        self.inventory_dir = self._resolve(self.inventory_dir or 'var/inventory')
        self.ansible_callback_dir = self._resolve(self.ansible_callback_dir or 'opt/ansible/callbacks')

    def _resolve(self, path) -> Path:
        path = Path(path).expanduser()
        return path if path.is_absolute() else self.root / path

    @property
    def state_file(self) -> Path:
        return self.data_dir / 'state.yaml'

    @property
    def cluster_type(self) -> Optional[str]:
        """Id of the selected cluster type, if any."""
        return read_yaml(self.state_file).get('cluster_type')

    def select_cluster_type(self, type_id: str) -> None:
        """Persist the selected cluster type."""
        state = read_yaml(self.state_file)
        state['cluster_type'] = type_id
        write_yaml(self.state_file, state)
        logger.debug(f"Selected cluster type '{type_id}'")

    @classmethod
    def from_dict(cls, root: Path, data: dict) -> 'ProfileConfig':
        hunter = data.get('hunter') or {}
        return cls(
            root=root,
            type_paths=data.get('type_paths') or [],
            answers_dir=data.get('answers_dir'),
            data_dir=data.get('data_dir'),
            log_dir=data.get('log_dir'),
            inventory_dir=data.get('inventory_dir'),
            ansible_callback_dir=data.get('ansible_callback_dir'),
            use_hunter=bool(data.get('use_hunter', False)),
            remove_hunter_entry=bool(data.get('remove_hunter_entry', False)),
            hunter_command=hunter.get('command', 'flight hunter'),
            hunter_url=hunter.get('url'),
            probe_timeout=float(data.get('probe_timeout', PROBE_TIMEOUT)),
        )


def read_yaml(path: Path) -> dict:
    """Parse a YAML mapping; a missing file is an empty mapping."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}")
    return data


def write_yaml(path: Path, data: dict) -> None:
    """Write a YAML mapping atomically (temp file, then rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f'.{path.name}.{os.getpid()}.{threading.get_ident()}.tmp')
    with open(tmp, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    os.replace(tmp, path)


def get_profile_root() -> Path:
    """Discover the profile root directory.

    Resolution order:
    1. $NODEPROFILE_ROOT environment variable
    2. /usr/local/etc/nodeprofile/ (FHS install)
    3. ~/.nodeprofile/ (per-user default)
    """
    if env_path := os.environ.get('NODEPROFILE_ROOT'):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"NODEPROFILE_ROOT={env_path} does not exist")

    if FHS_ROOT.exists():
        return FHS_ROOT

    return Path.home() / '.nodeprofile'


def load_config(root: Optional[Path] = None) -> ProfileConfig:
    """Load configuration for a profile root (discovered when not given)."""
    if root is None:
        root = get_profile_root()
    root = Path(root)
    data = read_yaml(root / 'etc' / 'config.yaml')
    config = ProfileConfig.from_dict(root, data)
    logger.debug(f"Loaded configuration from {root}")
    return config
