"""Question/answer engine: conditional tree resolution and smart defaults."""

from answers.prefill import PrefillResolver, PrefillStore, best_command_output
from answers.prompt import ConsolePrompter, Prompter
from answers.tree import AnswerTree

__all__ = [
    "AnswerTree",
    "ConsolePrompter",
    "PrefillResolver",
    "PrefillStore",
    "Prompter",
    "best_command_output",
]
