"""Recovery of nodes stuck mid-operation."""

import logging
import os
import signal
from typing import Callable

from errors import BusyConflict
from nodes.models import FAILED, IN_PROGRESS, Node
from nodes.registry import NodeRegistry

logger = logging.getLogger(__name__)

# Sent to the owning process of a busy node when forcing through
ABORT_SIGNAL = signal.SIGHUP


def _process_alive(pid: int) -> bool:
    """Check if process with given PID exists."""
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # Process exists but we can't signal it


class RecoveryGuard:
    """Rejects or forces through operations against busy nodes."""

    def __init__(
        self,
        registry: NodeRegistry,
        kill: Callable[[int, int], None] = os.kill,
        sig: int = ABORT_SIGNAL,
    ):
        self.registry = registry
        self._kill = kill
        self.sig = sig

    def busy(self, nodes: list[Node]) -> list[Node]:
        return [n for n in nodes if self.registry.is_busy(n)]

    def check(self, nodes: list[Node], force: bool = False) -> list[Node]:
        """Guard an operation against busy nodes.

        Without force, busy nodes abort the operation. With force, each
        distinct owning process is signalled once and the operation goes
        ahead whether or not those processes have exited.

        Returns:
            The busy nodes (empty if none)

        Raises:
            BusyConflict: If nodes are busy and force is not set
        """
        busy = self.busy(nodes)
        if not busy:
            return []

        names = [n.name for n in busy]
        if not force:
            raise BusyConflict(names)

        logger.warning(
            "The following nodes are either in a failed process state "
            f"or are currently undergoing a remove/apply process: {', '.join(names)}. Continuing..."
        )
        pids = list(dict.fromkeys(n.deployment_pid for n in busy if n.deployment_pid is not None))
        for pid in pids:
            self.signal(pid)
        return busy

    def signal(self, pid: int) -> bool:
        """Send the abort signal; False if the process is already gone."""
        try:
            self._kill(pid, self.sig)
            logger.info(f"Sent signal {self.sig} to process {pid}")
            return True
        except ProcessLookupError:
            logger.debug(f"Process {pid} already exited")
            return False
        except PermissionError:
            logger.warning(f"Not permitted to signal process {pid}")
            return False

    def find_stuck(self) -> list[Node]:
        """In-progress nodes whose owning process no longer exists."""
        return self.registry.all(
            lambda n: n.status == IN_PROGRESS
            and (n.deployment_pid is None or not _process_alive(n.deployment_pid))
        )

    def release(self, nodes: list[Node]) -> list[Node]:
        """Mark stuck nodes failed and clear their ownership."""
        if not nodes:
            return []
        logger.warning(f"Releasing stuck nodes: {', '.join(n.name for n in nodes)}")
        return self.registry.group(nodes).update_all(
            status=FAILED, deployment_pid=None, last_action=None,
        )
