"""Exception taxonomy for auto-task."""

from typing import Optional


class AutoTaskError(Exception):
    """Base class for every error raised by auto-task."""


class MalformedStep(AutoTaskError):
    """The model reply could not be turned into a valid step. Retryable."""

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw


class ShellError(AutoTaskError):
    """The persistent shell cannot be spawned, written to, or read from."""


class ActionError(AutoTaskError):
    """An action failed for reasons unrelated to the program it ran."""


class RetryLimitExceeded(AutoTaskError):
    """Too many consecutive unusable replies in a single turn."""


class ScriptSyntaxError(AutoTaskError):
    """A shell script was rejected by the shell's parser before it ran."""

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.source = source
