"""Deployment job orchestration.

Drives one action (apply, remove) across a set of target nodes:

1. Expand host-range expressions into node names
2. Check preconditions: nodes exist with an identity that supports the
   action, and are not busy (unless forced through RecoveryGuard)
3. Resolve every required answer of the selected cluster type
4. Partition the nodes by identity and prepare per-node logs
5. Spawn one job per partition and record ownership on its nodes
6. On completion, in one transaction, record the exit status on the nodes
   the job still owns (a successful removal deletes them instead), then
   run the follow-up (removal drops hunter entries)
"""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

import hostrange
from answers.tree import AnswerTree
from cluster_type import ClusterType
from config import ProfileConfig
from errors import JobFailure, PreconditionError, ValidationError
from hunter import HunterClient, HunterError
from inventory import Inventory
from jobs.recovery import RecoveryGuard
from jobs.spawner import Job, ProcessSpawner
from nodes.models import IN_PROGRESS, Identity, Node
from nodes.registry import NodeGroup, NodeRegistry

logger = logging.getLogger(__name__)

SuccessHook = Callable[[list[Node]], None]


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return ''
    return str(value)


@dataclass
class JobOrchestrator:
    """Runs identity-specific deployment jobs against groups of nodes.

    Attributes:
        config: Profile configuration
        registry: Node registry updated on dispatch and completion
        cluster_type: Selected cluster type (answers, identities, run_env)
        spawner: Job process boundary
        guard: Busy-node guard (defaults to one over registry)
        hunter: Hunter client (defaults to one when hunter is in use)
    """
    config: ProfileConfig
    registry: NodeRegistry
    cluster_type: ClusterType
    spawner: ProcessSpawner = field(default_factory=ProcessSpawner)
    guard: Optional[RecoveryGuard] = None
    hunter: Optional[HunterClient] = None

    def __post_init__(self) -> None:
        if self.guard is None:
            self.guard = RecoveryGuard(self.registry)
        if self.hunter is None and self.config.use_hunter:
            self.hunter = HunterClient(self.config)

    # Actions

    def remove(
        self,
        targets: Union[str, list[str]],
        force: bool = False,
        wait: bool = False,
        remove_hunter_entry: Optional[bool] = None,
    ) -> list[Job]:
        """Run each node's identity remove command; delete nodes on success."""
        names = self.expand(targets)
        self._check_prepared()
        nodes = self._nodes_with_identity(names)
        identities = self._identities_supporting(nodes, 'remove')
        self.guard.check(nodes, force=force)
        answers = self._required_answers()

        if remove_hunter_entry is None:
            remove_hunter_entry = self.config.remove_hunter_entry
        notify_hunter = self.config.use_hunter and remove_hunter_entry and self.hunter is not None

        def on_success(removed: list[Node]) -> None:
            if not notify_hunter or not removed:
                return
            try:
                self.hunter.remove_node(','.join(n.name for n in removed))
            except HunterError as e:
                logger.error(e.message)

        logger.info(f"Removing {'hosts' if len(names) > 1 else 'host'} {', '.join(repr(n) for n in names)}")
        return self._dispatch('remove', nodes, identities, answers, wait,
                              delete_on_success=True, on_success=on_success)

    def apply(
        self,
        targets: Union[str, list[str]],
        identity_name: str,
        force: bool = False,
        wait: bool = False,
    ) -> list[Job]:
        """Assign an identity to nodes (creating them) and run its apply command."""
        names = self.expand(targets)
        self._check_prepared()

        identity = self.cluster_type.find_identity(identity_name)
        if identity is None:
            available = [i.name for i in self.cluster_type.identities()]
            raise PreconditionError(
                f"Identity '{identity_name}' not found in cluster type '{self.cluster_type.id}'. Available:",
                available,
            )
        if not identity.supports('apply'):
            raise PreconditionError(f"Identity '{identity.name}' has no apply command", [identity.name])

        existing = [n for n in (self.registry.find(name) for name in names) if n is not None]
        self.guard.check(existing, force=force)
        answers = self._required_answers()

        with self.registry.transaction() as store:
            for name in names:
                node = store.get(name) or Node(name=name)
                node.identity = identity.name
                store[name] = node
        nodes = [self.registry.find(name) for name in names]

        logger.info(f"Applying identity '{identity.name}' to {', '.join(names)}")
        return self._dispatch('apply', nodes, {identity.name: identity}, answers, wait)

    # Preconditions

    @staticmethod
    def expand(targets: Union[str, list[str]]) -> list[str]:
        if isinstance(targets, str):
            targets = [targets]
        names: list[str] = []
        for target in targets:
            names.extend(hostrange.expand(target))
        return list(dict.fromkeys(names))

    def _check_prepared(self) -> None:
        if not self.cluster_type.prepared:
            raise PreconditionError(
                "Cluster type has not been prepared yet. "
                f"Please run `nodeprofile prepare {self.cluster_type.id}`."
            )

    def _nodes_with_identity(self, names: list[str]) -> list[Node]:
        nodes = {name: self.registry.find(name) for name in names}
        not_found = [name for name, node in nodes.items() if node is None or not node.identity]
        if not_found:
            raise PreconditionError(
                "The following nodes either do not exist or do not have an identity applied to them:",
                not_found,
            )
        return [nodes[name] for name in names]

    def _identities_supporting(self, nodes: list[Node], action: str) -> dict[str, Identity]:
        identities: dict[str, Identity] = {}
        unsupported = []
        for node in nodes:
            if node.identity not in identities:
                identity = self.cluster_type.find_identity(node.identity)
                if identity is not None:
                    identities[node.identity] = identity
            identity = identities.get(node.identity)
            if identity is None or not identity.supports(action):
                unsupported.append(node.name)
        if unsupported:
            raise PreconditionError(
                f"The following nodes have an identity that doesn't currently support the `{action}` command:",
                unsupported,
            )
        return identities

    def _required_answers(self) -> dict:
        tree = AnswerTree(self.cluster_type.questions)
        answers, missing = tree.env_answers(self.cluster_type.answers)
        if missing:
            raise ValidationError(
                missing=missing,
                message=(
                    "The following config keys have not been set:\n"
                    + '\n'.join(missing)
                    + "\nPlease run `nodeprofile configure`"
                ),
            )
        return answers

    # Dispatch

    def _base_env(self, action: str) -> dict:
        cluster_name = self.cluster_type.fetch_answer('cluster_name')
        inventory = Inventory.load(_stringify(cluster_name), self.config)
        return {
            'ANSIBLE_CALLBACK_PLUGINS': self.config.ansible_callback_dir,
            'ANSIBLE_STDOUT_CALLBACK': 'log_plays_v2',
            'ANSIBLE_DISPLAY_SKIPPED_HOSTS': 'false',
            'ANSIBLE_HOST_KEY_CHECKING': 'false',
            'INVFILE': inventory.filepath,
            'RUN_ENV': self.cluster_type.run_env,
            'HUNTER_HOSTS': self.config.use_hunter,
            'ANSIBLE_LOG_FOLDER': self.action_log_dir(action),
        }

    def action_log_dir(self, action: str) -> Path:
        return self.config.log_dir / action

    def _prepare_logs(self, action: str, nodes: list[Node]) -> dict[str, Path]:
        """Create empty per-node logs with timestamped symlinks before dispatch."""
        log_dir = self.action_log_dir(action)
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = int(time.time())

        paths: dict[str, Path] = {}
        for node in nodes:
            log_path = log_dir / node.hostname
            log_path.write_text('')
            symlink = self.config.log_dir / f'{node.name}-{action}-{timestamp}.log'
            if symlink.is_symlink() or symlink.exists():
                symlink.unlink()
            os.symlink(log_path, symlink)
            paths[node.name] = log_path

        with self.registry.transaction() as store:
            for name, path in paths.items():
                if name in store:
                    store[name].log_file = str(path)
        return paths

    @staticmethod
    def partition(nodes: list[Node]) -> dict[str, list[Node]]:
        """Group nodes by identity, keeping first-seen order."""
        partitions: dict[str, list[Node]] = {}
        for node in nodes:
            partitions.setdefault(node.identity, []).append(node)
        return partitions

    def _dispatch(
        self,
        action: str,
        nodes: list[Node],
        identities: dict[str, Identity],
        answers: dict,
        wait: bool,
        delete_on_success: bool = False,
        on_success: Optional[SuccessHook] = None,
    ) -> list[Job]:
        base_env = self._base_env(action)
        log_paths = self._prepare_logs(action, nodes)

        jobs = []
        for identity_name, members in self.partition(nodes).items():
            identity = identities[identity_name]
            env = {
                **base_env,
                'NODE': ','.join(n.hostname for n in members),
                **answers,
                **identity.env,
            }
            env = {key: _stringify(value) for key, value in env.items()}
            group = self.registry.group(members)

            def on_start(pid, group=group):
                group.update_all(deployment_pid=pid, status=IN_PROGRESS, last_action=action)

            def on_exit(pid, rc, group=group):
                self._complete(action, group, pid, rc, delete_on_success, on_success)

            job = self.spawner.run(
                identity.command(action),
                env=env,
                log_files=[log_paths[n.name] for n in members],
                wait=wait,
                on_start=on_start,
                on_exit=on_exit,
                action=action,
                nodes=[n.name for n in members],
            )
            jobs.append(job)

        if wait:
            for job in jobs:
                job.wait()
        return jobs

    def _complete(
        self,
        action: str,
        group: NodeGroup,
        pid: Optional[int],
        rc: int,
        delete_on_success: bool,
        on_success: Optional[SuccessHook],
    ) -> None:
        """Record the exit on the nodes the job still owns, then follow up."""
        owned = group.complete(pid, rc, delete_on_success=delete_on_success)
        owned_names = {n.name for n in owned}
        lost = [name for name in group.names if name not in owned_names]
        if lost:
            logger.warning(f"{action} job {pid} no longer owns {', '.join(lost)}; leaving them untouched")
        if rc != 0:
            logger.error(JobFailure(action, group.names, rc).message)
            return
        if on_success is not None:
            on_success(owned)
