"""External job processes.

One process per job, output appended line by line to every log file of
the job. Two modes:

- attached (wait=True): the process is a child of the caller; a watcher
  thread pumps its output, waits for exit and runs on_exit.
- detached (wait=False): double-fork into a supervisor in its own session,
  coordinated with the parent over pipes. The supervisor owns the job
  process, forwards SIGHUP/SIGTERM to it, and runs on_exit itself, so the
  caller may exit while the job continues.

In both modes on_start(pid) runs in the caller before the job can
complete, so ownership is recorded before completion can clear it.
on_exit(pid, rc) receives the pid given to on_start, or None if the
command could not be started attached.
"""

import logging
import os
import signal
import subprocess
import threading
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Exit status recorded when the command cannot be executed at all
EXIT_NOT_EXECUTABLE = 127

FORWARDED_SIGNALS = (signal.SIGHUP, signal.SIGTERM)


class JobSpawnError(Exception):
    """The detached supervisor could not be started."""


@dataclass
class Job:
    """One external deployment process.

    Attributes:
        action: Action name (e.g. 'remove')
        nodes: Names of the nodes the job owns
        command: Executable path
        log_files: Per-node log files receiving output
        detached: True if the job outlives the caller
        pid: Job process (attached) or supervisor process (detached)
        exit_status: Exit code once known in this process
    """
    action: str
    nodes: list[str]
    command: str
    log_files: list[Path] = field(default_factory=list)
    detached: bool = False
    pid: Optional[int] = None
    exit_status: Optional[int] = None
    _watcher: Optional[threading.Thread] = field(default=None, init=False, repr=False)

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for an attached job; detached jobs return immediately."""
        if self._watcher is not None:
            self._watcher.join(timeout)
        return self.exit_status


def _append(log_files: list[Path], text: str) -> None:
    for path in log_files:
        with open(path, 'a', encoding='utf-8') as f:
            f.write(text)


class ProcessSpawner:
    """Starts job processes and reports their completion."""

    def run(
        self,
        command: str,
        env: dict,
        log_files: list[Path],
        wait: bool = True,
        on_start: Optional[Callable[[int], None]] = None,
        on_exit: Optional[Callable[[Optional[int], int], None]] = None,
        action: str = '',
        nodes: Optional[list[str]] = None,
    ) -> Job:
        """Start command with env layered over the current environment.

        Returns:
            Job record; for attached jobs use job.wait() to block
        """
        job = Job(
            action=action,
            nodes=list(nodes or []),
            command=str(command),
            log_files=[Path(p) for p in log_files],
            detached=not wait,
        )
        full_env = dict(os.environ)
        full_env.update({k: str(v) for k, v in env.items()})

        if wait:
            self._start_attached(job, full_env, on_start, on_exit)
        else:
            self._start_detached(job, full_env, on_start, on_exit)
        return job

    # Shared process handling

    def _launch(self, job: Job, env: dict) -> Optional[subprocess.Popen]:
        logger.debug(f"Running: {job.command} for {', '.join(job.nodes)}")
        try:
            return subprocess.Popen(
                [job.command],
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,  # Line buffered
            )
        except OSError as e:
            logger.error(f"Failed to start {job.command}: {e}")
            _append(job.log_files, f"Failed to start {job.command}: {e}\n")
            return None

    def _finish(self, job: Job, process: subprocess.Popen) -> int:
        """Pump output into the log files until exit; return the exit code."""
        with ExitStack() as stack:
            logs = [stack.enter_context(open(p, 'a', encoding='utf-8')) for p in job.log_files]
            assert process.stdout is not None
            for line in process.stdout:
                for log in logs:
                    log.write(line)
                    log.flush()
        return process.wait()

    @staticmethod
    def _complete(job: Job, rc: int, on_exit: Optional[Callable[[Optional[int], int], None]]) -> None:
        job.exit_status = rc
        logger.info(f"{job.action or 'Job'} for {', '.join(job.nodes)} exited with status {rc}")
        if on_exit is not None:
            on_exit(job.pid, rc)

    # Attached mode

    def _start_attached(self, job, env, on_start, on_exit) -> None:
        process = self._launch(job, env)
        if process is None:
            self._complete(job, EXIT_NOT_EXECUTABLE, on_exit)
            return

        job.pid = process.pid
        if on_start is not None:
            on_start(process.pid)

        def watch():
            try:
                rc = self._finish(job, process)
                self._complete(job, rc, on_exit)
            except Exception:
                logger.exception(f"Completion handling failed for pid {process.pid}")

        job._watcher = threading.Thread(target=watch, name=f'job-{process.pid}')
        job._watcher.start()

    # Detached mode

    def _start_detached(self, job, env, on_start, on_exit) -> None:
        pid_r, pid_w = os.pipe()
        go_r, go_w = os.pipe()

        pid = os.fork()
        if pid > 0:
            os.close(pid_w)
            os.close(go_r)
            # Reap the intermediate child
            os.waitpid(pid, 0)
            data = os.read(pid_r, 64).decode().strip()
            os.close(pid_r)
            try:
                if not data:
                    raise JobSpawnError(f"Supervisor for {job.command} did not start")
                job.pid = int(data)
                if on_start is not None:
                    on_start(job.pid)
            finally:
                os.write(go_w, b"go\n")
                os.close(go_w)
            return

        # Intermediate child: new session leader, then fork the supervisor
        try:
            os.close(pid_r)
            os.close(go_w)
            os.setsid()
            if os.fork() > 0:
                os._exit(0)
        except BaseException:
            os._exit(1)

        # Supervisor
        rc = 1
        job.pid = os.getpid()
        try:
            os.write(pid_w, f"{job.pid}\n".encode())
            os.close(pid_w)
            os.read(go_r, 64)
            os.close(go_r)
            self._supervise(job, env, on_exit)
            rc = 0
        except BaseException:
            logger.exception(f"Supervisor for {job.command} failed")
        finally:
            logging.shutdown()
            os._exit(rc)

    def _supervise(self, job: Job, env: dict, on_exit) -> None:
        """Run the job to completion inside the detached supervisor."""
        self._redirect_io(job)

        process = self._launch(job, env)
        if process is None:
            self._complete(job, EXIT_NOT_EXECUTABLE, on_exit)
            return

        def forward(signum, frame):
            logger.warning(f"Forwarding signal {signum} to job process {process.pid}")
            process.send_signal(signum)

        for sig in FORWARDED_SIGNALS:
            signal.signal(sig, forward)

        rc = self._finish(job, process)
        self._complete(job, rc, on_exit)

    @staticmethod
    def _redirect_io(job: Job) -> None:
        """Detach stdio; supervisor diagnostics go to the job's first log."""
        devnull = os.open(os.devnull, os.O_RDWR)
        os.dup2(devnull, 0)
        os.dup2(devnull, 1)
        os.dup2(devnull, 2)
        os.close(devnull)

        # Reconfigure logging to write to the job log
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        if job.log_files:
            handler = logging.FileHandler(job.log_files[0], encoding='utf-8')
            handler.setFormatter(logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))
            root_logger.addHandler(handler)
