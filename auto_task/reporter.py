"""Observability sinks for a task run."""

import logging
from typing import TYPE_CHECKING, Optional, Protocol

if TYPE_CHECKING:
    from .runner import RunResult
    from .step import Proposal

LOGGER = logging.getLogger("auto_task")


class Reporter(Protocol):
    """Receives step, command and line level notifications."""

    def step(self, number: int, proposal: "Proposal") -> None: ...

    def observation(self, text: str) -> None: ...

    def command(self, statement: str) -> None: ...

    def stdout(self, line: str) -> None: ...

    def stderr(self, line: str) -> None: ...

    def retry(self, reason: str, raw: Optional[str]) -> None: ...

    def debug(self, label: str, data: str = "") -> None: ...

    def finished(self, result: "RunResult") -> None: ...


class NullReporter:
    """Discards every notification."""

    def step(self, number: int, proposal: "Proposal") -> None:
        pass

    def observation(self, text: str) -> None:
        pass

    def command(self, statement: str) -> None:
        pass

    def stdout(self, line: str) -> None:
        pass

    def stderr(self, line: str) -> None:
        pass

    def retry(self, reason: str, raw: Optional[str]) -> None:
        pass

    def debug(self, label: str, data: str = "") -> None:
        pass

    def finished(self, result: "RunResult") -> None:
        pass


class ConsoleReporter:
    """
    Prints the run as it happens.

    Shell output is echoed line by line while the command is still running.
    Debug notifications go to the `auto_task` logger; `verbose` additionally
    prints the raw reply of every rejected turn.
    """

    def __init__(self, verbose: bool = False, logger: logging.Logger = LOGGER) -> None:
        self.verbose = verbose
        self.logger = logger

    def step(self, number: int, proposal: "Proposal") -> None:
        print(f"\n**********\nSTEP {number}: {proposal.thought}")
        print(f"Action: {proposal.action}")
        if proposal.input and proposal.action != "shell":
            print(f"```\n{proposal.input}\n```")

    def observation(self, text: str) -> None:
        print(f"\n[RESULT]\n{text}" if text else "\n[RESULT]\n(empty)")

    def command(self, statement: str) -> None:
        print(f"$ {statement}")

    def stdout(self, line: str) -> None:
        print(line)

    def stderr(self, line: str) -> None:
        print(line)

    def retry(self, reason: str, raw: Optional[str]) -> None:
        self.logger.debug("retry: %s", reason)
        if self.verbose:
            print(f"\n[RETRY] {reason}")
            if raw:
                print(raw)

    def debug(self, label: str, data: str = "") -> None:
        if data:
            self.logger.debug("%s\n%s", label, data)
        else:
            self.logger.debug("%s", label)

    def finished(self, result: "RunResult") -> None:
        if result.succeeded:
            print(f"\nDONE after {result.steps} step(s)\n**********")
        else:
            print("\nThe maximum number of steps has been reached")
