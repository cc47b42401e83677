"""Smart-default computation for question trees.

Every question in a tree gets a prefill, whether or not it will end up
visible. Probes run concurrently, each under its own timeout, and publish
into a PrefillStore that the interactive resolver waits on.

Fallback order for one question:
    saved answer > probe output (zero exit, passes format) > static default > ''
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from cluster_type import Question, Validation, walk_questions
from common import PROBE_TIMEOUT, ProbeResult, run_probe
from errors import ProbeFailure

logger = logging.getLogger(__name__)

ProbeRunner = Callable[..., ProbeResult]

# The default_password prefill comes from this saved answer when present
SAVED_PASSWORD_KEY = 'default_password_abbr'


class PrefillStore:
    """Thread-safe question id -> prefill mapping with per-key waits."""

    def __init__(self):
        self._values: dict[str, Any] = {}
        self._cond = threading.Condition()

    def publish(self, question_id: str, value: Any) -> None:
        with self._cond:
            self._values[question_id] = value
            self._cond.notify_all()

    def wait(self, question_id: str, timeout: Optional[float] = None) -> Any:
        """Block until the question has a prefill and return it.

        Raises:
            TimeoutError: If timeout elapses first
        """
        with self._cond:
            if not self._cond.wait_for(lambda: question_id in self._values, timeout=timeout):
                raise TimeoutError(f"No prefill for '{question_id}' after {timeout}s")
            return self._values[question_id]

    def get(self, question_id: str, default: Any = None) -> Any:
        with self._cond:
            return self._values.get(question_id, default)

    def snapshot(self) -> dict[str, Any]:
        with self._cond:
            return dict(self._values)

    def __contains__(self, question_id: str) -> bool:
        with self._cond:
            return question_id in self._values


def _probe_output(
    command: str,
    validation: Validation,
    runner: ProbeRunner,
    timeout: float,
) -> Optional[str]:
    """Run one probe; return its output if usable, else None (logged)."""
    try:
        result = runner(command, timeout=timeout)
    except Exception as e:
        logger.debug(ProbeFailure(command, f"could not be run: {e}").message)
        return None

    output = result.stdout.rstrip('\n')
    if not result.success:
        logger.debug(ProbeFailure(command, f"failed to run: {result.stderr!r}").message)
        return None
    if not validation.matches(output):
        logger.debug(ProbeFailure(command, f"result '{output}' did not pass validation check").message)
        return None
    return output


class PrefillResolver:
    """Computes prefills for a question tree on a thread pool."""

    def __init__(
        self,
        questions: list[Question],
        saved_answers: Optional[dict] = None,
        store: Optional[PrefillStore] = None,
        timeout: float = PROBE_TIMEOUT,
        runner: ProbeRunner = run_probe,
    ):
        self.questions = questions
        self.saved_answers = saved_answers or {}
        self.store = store if store is not None else PrefillStore()
        self.timeout = timeout
        self.runner = runner
        self._thread: Optional[threading.Thread] = None

    def compute(self, question: Question) -> Any:
        """Best available default for a single question."""
        saved = None
        if question.id == 'default_password':
            saved = self.saved_answers.get(SAVED_PASSWORD_KEY)
        if saved is None:
            saved = self.saved_answers.get(question.id)
        if saved is not None:
            return saved

        if question.default_smart:
            output = _probe_output(question.default_smart, question.validation, self.runner, self.timeout)
            if output is not None:
                return output

        if question.default is not None:
            return question.default
        return ''

    def _resolve_one(self, question: Question) -> None:
        value: Any = ''
        try:
            value = self.compute(question)
        except Exception as e:
            logger.debug(f"Prefill for '{question.id}' failed: {e}")
        finally:
            self.store.publish(question.id, value)

    def run(self) -> dict[str, Any]:
        """Compute every prefill concurrently and return the store contents."""
        questions = list(walk_questions(self.questions))
        if questions:
            with ThreadPoolExecutor(max_workers=len(questions), thread_name_prefix='prefill') as pool:
                # _resolve_one never raises; results land in the store
                list(pool.map(self._resolve_one, questions))
        return self.store.snapshot()

    def start(self) -> threading.Thread:
        """Compute prefills in the background and return immediately."""
        self._thread = threading.Thread(target=self.run, name='prefill-resolver', daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


def best_command_output(
    commands: list[str],
    regex: Optional[str] = None,
    timeout: float = PROBE_TIMEOUT,
    runner: ProbeRunner = run_probe,
) -> Optional[str]:
    """Pick one default from several candidate probe commands.

    All candidates run concurrently. The first command in declared order
    that succeeded and whose output matches regex wins, regardless of
    which finished first.
    """
    if not commands:
        return None

    validation = Validation(format=regex)
    with ThreadPoolExecutor(max_workers=len(commands), thread_name_prefix='probe') as pool:
        futures = [pool.submit(_probe_output, cmd, validation, runner, timeout) for cmd in commands]
        for future in futures:
            output = future.result()
            if output is not None:
                return output
    return None
