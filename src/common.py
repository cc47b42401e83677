"""Common utilities for running external commands."""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Default bound for smart-default probes, in seconds
PROBE_TIMEOUT = 5.0


@dataclass
class ProbeResult:
    """Outcome of a probe command."""
    success: bool
    stdout: str = ''
    stderr: str = ''
    returncode: int = 0


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: float = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)


def run_probe(command: str, env: Optional[dict] = None, timeout: float = PROBE_TIMEOUT) -> ProbeResult:
    """Run a shell probe command under a timeout.

    The command string is handed to ``sh -c``. Extra environment entries
    are layered over the caller's environment.
    """
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update({k: str(v) for k, v in env.items()})

    rc, out, err = run_command(['sh', '-c', command], timeout=timeout, env=full_env)
    return ProbeResult(success=rc == 0, stdout=out, stderr=err, returncode=rc)
