"""Deployment job orchestration, process spawning and busy-node recovery."""

from jobs.orchestrator import JobOrchestrator
from jobs.recovery import RecoveryGuard
from jobs.spawner import Job, ProcessSpawner

__all__ = [
    "Job",
    "JobOrchestrator",
    "ProcessSpawner",
    "RecoveryGuard",
]
