"""Conditional question tree resolution.

Questions are resolved in pre-order: a parent before any of its children,
because a child is only visible when the parent's resolved value matches
the child's trigger. Hidden branches never appear in a result and are
never reported as missing.
"""

import logging
from typing import Any, Optional

from answers.prefill import PrefillStore
from answers.prompt import Prompter
from cluster_type import Question
from errors import ValidationError

logger = logging.getLogger(__name__)

PASSWORD_FORMAT = r'\A.{4,}\Z'
PASSWORD_MESSAGE = 'Invalid Password: Minimum 4 Characters'

_TRUE = {'true', 'yes', 'y'}
_FALSE = {'false', 'no', 'n'}


def _normalize(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    text = str(value).strip().lower()
    if text in _TRUE:
        return 'true'
    if text in _FALSE:
        return 'false'
    return str(value)


def trigger_matches(parent_value: Any, trigger: Any) -> bool:
    """True if a child with this trigger is visible under parent_value."""
    if parent_value is None:
        return False
    return parent_value == trigger or _normalize(parent_value) == _normalize(trigger)


def smart_downcase(text: str) -> str:
    """Lower-case the first word unless it is an acronym."""
    first, sep, rest = text.partition(' ')
    if len(first) > 1 and first.isupper():
        return text
    return first[:1].lower() + first[1:] + sep + rest


class AnswerTree:
    """Resolves answers over a question tree."""

    def __init__(self, questions: list[Question]):
        self.questions = questions

    def _visible(self, questions: list[Question], parent_value: Any, is_root: bool):
        for question in questions:
            if is_root or trigger_matches(parent_value, question.on):
                yield question

    def reachable(self, answers: dict) -> list[Question]:
        """Questions reachable by following answered parents from the roots."""
        found: list[Question] = []

        def walk(questions, parent_value, is_root):
            for question in self._visible(questions, parent_value, is_root):
                found.append(question)
                if question.children:
                    walk(question.children, answers.get(question.id), False)

        walk(self.questions, None, True)
        return found

    def reachable_ids(self, answers: dict) -> list[str]:
        return [q.id for q in self.reachable(answers)]

    def resolve_supplied(self, supplied: dict, prefills: Optional[dict] = None) -> dict:
        """Resolve answers from a flat id -> value mapping.

        With prefills (accept-defaults mode) a reachable question without a
        supplied value takes its non-empty prefill.

        Raises:
            ValidationError: Missing, unrecognised and invalid ids, together
        """
        answers: dict = {}

        def walk(questions, parent_value, is_root):
            for question in self._visible(questions, parent_value, is_root):
                if question.id in supplied:
                    answers[question.id] = supplied[question.id]
                elif prefills and prefills.get(question.id) not in (None, ''):
                    answers[question.id] = prefills[question.id]
                if question.children:
                    walk(question.children, answers.get(question.id), False)

        walk(self.questions, None, True)

        reachable = self.reachable_ids(answers)
        missing = [qid for qid in reachable if qid not in answers]
        extra = [key for key in supplied if key not in reachable]
        invalid = self._invalid(answers)

        if missing or extra or invalid:
            raise ValidationError(missing=missing, extra=extra, invalid=invalid)
        return answers

    def resolve_interactive(self, prompter: Prompter, prefills: PrefillStore) -> dict:
        """Ask every visible question, waiting for its prefill first."""
        answers: dict = {}

        def walk(questions, parent_value, is_root):
            for question in self._visible(questions, parent_value, is_root):
                default = prefills.wait(question.id)
                answers[question.id] = self._ask(prompter, question, default)
                if question.children:
                    walk(question.children, answers[question.id], False)

        walk(self.questions, None, True)
        return answers

    @staticmethod
    def _ask(prompter: Prompter, question: Question, default: Any) -> Any:
        required = question.validation.required
        if question.type == 'conditional':
            if default in (None, ''):
                default = None
            else:
                default = _normalize(default) == 'true'
            return prompter.yes(question.text, default=default)
        if question.masked:
            return prompter.mask(
                question.text,
                default=default,
                required=required,
                pattern=PASSWORD_FORMAT,
                message=PASSWORD_MESSAGE,
            )
        return prompter.ask(
            question.text,
            default=default,
            required=required,
            pattern=question.validation.format,
            message=question.validation.message,
        )

    def _invalid(self, answers: dict) -> list[str]:
        return [
            q.id for q in self.reachable(answers)
            if q.id in answers and not q.validation.matches(answers[q.id])
        ]

    def validate(self, answers: dict) -> None:
        """Re-check format rules of every reachable answer.

        Raises:
            ValidationError: Naming every invalid id
        """
        invalid = self._invalid(answers)
        if invalid:
            raise ValidationError(invalid=invalid)

    def env_answers(self, answers: dict) -> tuple[dict, list[str]]:
        """Map reachable saved answers to their environment names.

        Returns:
            (env mapping, texts of reachable questions with no saved answer)
        """
        env: dict = {}
        missing: list[str] = []

        def walk(questions, parent_value, is_root):
            for question in self._visible(questions, parent_value, is_root):
                value = answers.get(question.id)
                if value is None:
                    missing.append(smart_downcase(question.text.replace(':', '').strip()))
                    continue
                env[question.env] = value
                if question.children:
                    walk(question.children, value, False)

        walk(self.questions, None, True)
        return env, missing
