"""Error taxonomy for node profile operations.

Every error carries the complete list of offending identifiers so the
caller sees all problems at once rather than the first one found.
"""

from typing import Optional


class ProfileError(Exception):
    """Base exception for profile errors."""

    def __init__(self, code: str, message: str, items: Optional[list] = None):
        self.code = code
        self.message = message
        self.items = list(items or [])
        super().__init__(f"{code}: {message}")


class ValidationError(ProfileError):
    """Answers are missing, unrecognised, or fail their format check."""

    def __init__(
        self,
        missing: Optional[list[str]] = None,
        extra: Optional[list[str]] = None,
        invalid: Optional[list[str]] = None,
        message: Optional[str] = None,
    ):
        self.missing = list(missing or [])
        self.extra = list(extra or [])
        self.invalid = list(invalid or [])

        if message is None:
            lines = []
            if self.missing:
                lines.append(f"The following questions were not answered: {', '.join(self.missing)}")
            if self.extra:
                lines.append(f"The following given answers are not recognised: {', '.join(self.extra)}")
            if self.invalid:
                lines.append(f"The following answers did not pass validation: {', '.join(self.invalid)}")
            message = '\n'.join(lines)

        super().__init__("E100", message, self.missing + self.extra + self.invalid)


class PreconditionError(ProfileError):
    """The requested operation cannot start against the given targets."""

    def __init__(self, message: str, items: Optional[list[str]] = None, code: str = "E200"):
        items = list(items or [])
        if items:
            message = message + '\n' + '\n'.join(items)
        super().__init__(code, message, items)


class DuplicateDefinitionError(PreconditionError):
    """Two discovered cluster types share an id."""

    def __init__(self, ids: list[str]):
        super().__init__(
            "Duplicate types exist across type paths; please remove all duplicate instances of:",
            ids,
            code="E201",
        )


class BusyConflict(ProfileError):
    """Target nodes are not in a terminal state."""

    def __init__(self, names: list[str]):
        message = (
            "The following nodes are either in a failed process state\n"
            "or are currently undergoing a remove/apply process:\n"
            + '\n'.join(names)
        )
        super().__init__("E300", message, names)


class ProbeFailure(ProfileError):
    """A smart-default probe did not produce a usable value.

    Only ever logged; never propagates to callers.
    """

    def __init__(self, command: str, reason: str):
        self.command = command
        super().__init__("E400", f"Command '{command}' {reason}", [command])


class JobFailure(ProfileError):
    """An external deployment process exited non-zero."""

    def __init__(self, action: str, names: list[str], exit_status: int):
        self.exit_status = exit_status
        super().__init__(
            "E500",
            f"{action} exited with status {exit_status} for: {', '.join(names)}",
            names,
        )
