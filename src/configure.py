"""Configure workflow: resolve, validate and save a cluster type's answers."""

import json
import logging
from typing import Optional

from answers.prefill import PrefillResolver, PrefillStore
from answers.prompt import ConsolePrompter, Prompter
from answers.tree import AnswerTree
from cluster_type import ClusterType
from config import ProfileConfig
from errors import ValidationError

logger = logging.getLogger(__name__)


def parse_answers(answers_json: str) -> dict:
    """Parse answers given as a JSON object.

    Raises:
        ValidationError: If the JSON is malformed or not an object
    """
    try:
        data = json.loads(answers_json)
    except json.JSONDecodeError as e:
        raise ValidationError(message=f"Error parsing answers JSON:\n{e}") from e
    if not isinstance(data, dict):
        raise ValidationError(message="Answers JSON must be an object")
    return data


def _attach_log(config: ProfileConfig) -> logging.Handler:
    """Send answer-engine diagnostics to <log_dir>/configure.log."""
    config.log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(config.log_dir / 'configure.log', encoding='utf-8')
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    ))
    answers_logger = logging.getLogger('answers')
    answers_logger.addHandler(handler)
    answers_logger.setLevel(logging.DEBUG)
    return handler


def configure(
    config: ProfileConfig,
    cluster_type: ClusterType,
    supplied: Optional[dict] = None,
    accept_defaults: bool = False,
    prompter: Optional[Prompter] = None,
) -> dict:
    """Resolve answers for a cluster type, save them and select the type.

    With supplied answers the key set must match the reachable questions
    exactly (accept_defaults fills gaps from prefills). Without, every
    visible question is asked interactively while prefills are computed in
    the background.

    Returns:
        The resolved answers
    """
    handler = _attach_log(config)
    try:
        tree = AnswerTree(cluster_type.questions)
        store = PrefillStore()
        resolver = PrefillResolver(
            cluster_type.questions,
            saved_answers=cluster_type.answers,
            store=store,
            timeout=config.probe_timeout,
        )

        if supplied is not None:
            prefills = resolver.run() if accept_defaults else None
            answers = tree.resolve_supplied(supplied, prefills=prefills)
        else:
            resolver.start()
            answers = tree.resolve_interactive(prompter or ConsolePrompter(), store)

        tree.validate(answers)
        cluster_type.save_answers(answers)
        config.select_cluster_type(cluster_type.id)
        return answers
    finally:
        logging.getLogger('answers').removeHandler(handler)
        handler.close()


def describe(cluster_type: ClusterType) -> list[str]:
    """Lines describing a configured cluster type and its saved answers."""
    lines = [f"Cluster type: {cluster_type.name}"]
    tree = AnswerTree(cluster_type.questions)
    for question in tree.reachable(cluster_type.answers):
        value = cluster_type.fetch_answer(question.id)
        if question.masked and value:
            value = '********'
        lines.append(f"{question.text} {value if value is not None else 'none'}")
    return lines
