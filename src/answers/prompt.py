"""Interactive input for question resolution."""

import getpass
import re
from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class Prompter(Protocol):
    """Protocol for interactive answer sources."""

    def ask(self, text: str, default: Any = None, required: bool = False,
            pattern: Optional[str] = None, message: Optional[str] = None) -> str:
        """Free-text input."""

    def yes(self, text: str, default: Optional[bool] = None) -> bool:
        """Yes/no input."""

    def mask(self, text: str, default: Any = None, required: bool = False,
             pattern: Optional[str] = None, message: Optional[str] = None) -> str:
        """Masked input."""


class ConsolePrompter:
    """Prompter reading from the terminal.

    Re-asks until the value satisfies required/pattern.
    """

    def __init__(self, input_fn=input, secret_fn=getpass.getpass, output=print):
        self._input = input_fn
        self._secret = secret_fn
        self._output = output

    def _loop(self, read, text, default, required, pattern, message) -> str:
        while True:
            value = read(text).strip()
            if not value and default not in (None, ''):
                value = str(default)
            if not value and required:
                self._output("Value must be provided")
                continue
            if value and pattern and not re.search(pattern, value):
                self._output(message or "Invalid value")
                continue
            return value

    def ask(self, text, default=None, required=False, pattern=None, message=None) -> str:
        suffix = f" ({default})" if default not in (None, '') else ''
        return self._loop(self._input, f"{text}{suffix} ", default, required, pattern, message)

    def mask(self, text, default=None, required=False, pattern=None, message=None) -> str:
        return self._loop(self._secret, f"{text} ", default, required, pattern, message)

    def yes(self, text, default=None) -> bool:
        hint = {True: 'Y/n', False: 'y/N', None: 'y/n'}[default]
        while True:
            value = self._input(f"{text} [{hint}] ").strip().lower()
            if not value and default is not None:
                return default
            if value in ('y', 'yes'):
                return True
            if value in ('n', 'no'):
                return False
            self._output("Please answer y or n")
