"""auto-task: let a language model complete a task one action at a time."""

from .actions import ActionDispatcher, DispatchResult, Outcome
from .errors import ActionError, AutoTaskError, MalformedStep, RetryLimitExceeded, ShellError
from .runner import RunOutcome, RunResult, Runner
from .shell import CommandResult, ShellEngine
from .step import ACTIONS, TERMINAL_ACTION, Proposal, Result, decode_step, encode_step

__version__ = "0.1.0"

__all__ = [
    "ACTIONS",
    "ActionDispatcher",
    "ActionError",
    "AutoTaskError",
    "CommandResult",
    "DispatchResult",
    "MalformedStep",
    "Outcome",
    "Proposal",
    "Result",
    "RetryLimitExceeded",
    "RunOutcome",
    "RunResult",
    "Runner",
    "ShellEngine",
    "ShellError",
    "TERMINAL_ACTION",
    "decode_step",
    "encode_step",
]
