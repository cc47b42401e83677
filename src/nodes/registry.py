"""File-backed node registry.

All nodes live in one YAML document (<data_dir>/nodes.yaml). Every
mutation is a transaction: an in-process lock plus an exclusive flock on
nodes.lock, a fresh read of the store, the change, and an atomic rename.
Readers in any process therefore observe a group update entirely or not
at all. Job completion is a compare-and-set on deployment_pid, so a job
that was forced aside cannot clear its successor's ownership.

Detached job supervisors run in their own processes and write through the
same transaction path.
"""

import fcntl
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

from config import read_yaml, write_yaml
from nodes.models import COMPLETE, FAILED, Node

logger = logging.getLogger(__name__)


class NodeRegistry:
    """Authoritative view of node records."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.store_file = self.data_dir / 'nodes.yaml'
        self.lock_file = self.data_dir / 'nodes.lock'
        self._lock = threading.RLock()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.lock_file, 'a', encoding='utf-8') as lock:
                fcntl.flock(lock, fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock, fcntl.LOCK_UN)

    def _load(self) -> dict[str, Node]:
        data = read_yaml(self.store_file)
        return {name: Node.from_dict(entry) for name, entry in (data.get('nodes') or {}).items()}

    def _save(self, nodes: dict[str, Node]) -> None:
        write_yaml(self.store_file, {'nodes': {name: node.to_dict() for name, node in nodes.items()}})

    @contextmanager
    def transaction(self) -> Iterator[dict[str, Node]]:
        """Yield the current records for mutation and persist them on exit.

        Nothing is written if the block raises.
        """
        with self._locked():
            nodes = self._load()
            yield nodes
            self._save(nodes)

    def find(self, name: str) -> Optional[Node]:
        with self._locked():
            return self._load().get(name)

    def all(self, predicate: Optional[Callable[[Node], bool]] = None) -> list[Node]:
        with self._locked():
            nodes = sorted(self._load().values(), key=lambda n: n.name)
        if predicate is not None:
            nodes = [n for n in nodes if predicate(n)]
        return nodes

    def add(self, node: Node) -> Node:
        with self.transaction() as nodes:
            if node.name in nodes:
                raise ValueError(f"Node '{node.name}' already exists")
            nodes[node.name] = node
        logger.debug(f"Added node '{node.name}'")
        return node

    def update(self, node: Node, **fields) -> Node:
        return self.group([node]).update_all(**fields)[0]

    def delete(self, node: Node) -> None:
        self.group([node]).delete_all()

    def group(self, nodes: list[Node]) -> 'NodeGroup':
        return NodeGroup(self, [n.name for n in nodes])

    @staticmethod
    def is_busy(node: Node) -> bool:
        """A node is busy until its last job completed successfully."""
        return node.status != COMPLETE


class NodeGroup:
    """A set of nodes updated or deleted as one unit."""

    def __init__(self, registry: NodeRegistry, names: list[str]):
        self.registry = registry
        self.names = list(dict.fromkeys(names))

    def update_all(self, **fields) -> list[Node]:
        """Apply the same field values to every node in the group.

        Nodes that no longer exist are skipped.
        """
        updated = []
        with self.registry.transaction() as nodes:
            for name in self.names:
                node = nodes.get(name)
                if node is None:
                    logger.debug(f"Node '{name}' vanished before update")
                    continue
                for key, value in fields.items():
                    if not hasattr(node, key):
                        raise AttributeError(f"Node has no field '{key}'")
                    setattr(node, key, value)
                updated.append(node)
        return updated

    def complete(self, owner: Optional[int], rc: int, delete_on_success: bool = False) -> list[Node]:
        """Record a job's exit on the nodes it still owns, in one transaction.

        Only nodes whose deployment_pid equals owner are touched; nodes taken
        over by another job since dispatch are left alone. With
        delete_on_success a zero exit deletes the owned nodes instead of
        marking them complete.

        Returns:
            The nodes that were owned by the job, as they were before deletion
        """
        owned = []
        with self.registry.transaction() as nodes:
            for name in self.names:
                node = nodes.get(name)
                if node is None or node.deployment_pid != owner:
                    logger.debug(f"Node '{name}' is no longer owned by pid {owner}")
                    continue
                owned.append(node)
                if rc == 0 and delete_on_success:
                    del nodes[name]
                    continue
                node.deployment_pid = None
                node.last_action = None
                node.exit_status = rc
                node.status = COMPLETE if rc == 0 else FAILED
        return owned

    def delete_all(self) -> None:
        with self.registry.transaction() as nodes:
            for name in self.names:
                nodes.pop(name, None)
        logger.debug(f"Deleted nodes: {', '.join(self.names)}")

    def __len__(self) -> int:
        return len(self.names)
