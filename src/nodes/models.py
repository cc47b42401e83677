"""Node and identity records.

A node is one managed host. Its deployment fields are owned by the job
orchestrator: deployment_pid is set exactly while an in-flight job owns
the node.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

# Node statuses
IDLE = 'idle'
COMPLETE = 'complete'
FAILED = 'failed'
IN_PROGRESS = 'in_progress'

STATUSES = (IDLE, COMPLETE, FAILED, IN_PROGRESS)


@dataclass
class Node:
    """Per-node deployment record.

    Attributes:
        name: Unique node name
        hostname: Hostname passed to deployment jobs
        identity: Name of the applied identity
        status: One of idle, complete, failed, in_progress
        deployment_pid: Process owning the node while a job runs
        exit_status: Exit code of the last job
        last_action: Action of the in-flight job (e.g. 'remove')
        log_file: Log of the node's most recent job
    """
    name: str
    hostname: str = ''
    identity: Optional[str] = None
    status: str = IDLE
    deployment_pid: Optional[int] = None
    exit_status: Optional[int] = None
    last_action: Optional[str] = None
    log_file: Optional[str] = None

    def __post_init__(self):
        if not self.hostname:
            self.hostname = self.name
        if self.status not in STATUSES:
            raise ValueError(f"Invalid status '{self.status}' for node '{self.name}'")

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'hostname': self.hostname,
            'status': self.status,
        }
        for key in ('identity', 'deployment_pid', 'exit_status', 'last_action', 'log_file'):
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'Node':
        return cls(
            name=data['name'],
            hostname=data.get('hostname', ''),
            identity=data.get('identity'),
            status=data.get('status', IDLE),
            deployment_pid=data.get('deployment_pid'),
            exit_status=data.get('exit_status'),
            last_action=data.get('last_action'),
            log_file=data.get('log_file'),
        )


@dataclass
class Identity:
    """A named capability bundle applied to nodes.

    Attributes:
        name: Identity name (e.g. 'compute')
        commands: Action name -> executable path
        removable: Whether nodes with this identity may be removed
        env: Identity-specific overrides for the job environment
    """
    name: str
    commands: dict[str, str] = field(default_factory=dict)
    removable: bool = False
    env: dict[str, Any] = field(default_factory=dict)

    def supports(self, action: str) -> bool:
        if action == 'remove' and not self.removable:
            return False
        return bool(self.commands.get(action))

    def command(self, action: str) -> str:
        return self.commands[action]

    @classmethod
    def from_dict(cls, data: dict, base_path: Optional[Path] = None) -> 'Identity':
        commands = {}
        for action, path in (data.get('commands') or {}).items():
            path = Path(path)
            if base_path is not None and not path.is_absolute():
                path = base_path / path
            commands[action] = str(path)
        return cls(
            name=data['name'],
            commands=commands,
            removable=bool(data.get('removable', False)),
            env=data.get('env') or {},
        )

    @classmethod
    def load(cls, path: Path) -> 'Identity':
        """Load an identity definition; relative commands resolve against its type directory."""
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        data.setdefault('name', path.stem)
        return cls.from_dict(data, base_path=path.parent.parent)
