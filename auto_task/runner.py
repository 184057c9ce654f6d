"""
The turn loop.

Each turn sends the whole conversation to the model, decodes the reply into a
proposal, executes it and appends the proposal plus its observation to the
conversation. Unusable replies are retried without counting as a step; the
retried exchange is rolled back once a usable reply arrives.
"""
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .actions import ActionDispatcher, Searcher
from .config import AppConfig
from .errors import MalformedStep, RetryLimitExceeded
from .prompts import build_retry_message, build_system_instructions
from .reporter import NullReporter, Reporter
from .session import ChatModel, Conversation, OpenAIChatModel
from .shell import ShellEngine
from .step import Proposal, decode_proposal, encode_step


class RunOutcome(Enum):
    SUCCESS = "success"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass
class RunResult:
    outcome: RunOutcome
    steps: int
    final: Optional[Proposal] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is RunOutcome.SUCCESS


class Runner:
    def __init__(
            self,
            model: ChatModel,
            dispatcher: ActionDispatcher,
            conversation: Optional[Conversation] = None,
            *,
            max_steps: int = 10,
            max_retries: int = 3,
            reporter: Optional[Reporter] = None,
    ) -> None:
        self.model = model
        self.dispatcher = dispatcher
        self.conversation = conversation or Conversation()
        self.max_steps = max_steps
        self.max_retries = max_retries
        self.reporter: Reporter = reporter or NullReporter()

    @classmethod
    def from_config(
            cls,
            cfg: AppConfig,
            model: Optional[ChatModel] = None,
            reporter: Optional[Reporter] = None,
            searcher: Optional[Searcher] = None,
    ) -> "Runner":
        root = os.path.realpath(os.path.expanduser(cfg.workdir))
        if not os.path.isdir(root):
            raise ValueError(f"Invalid working directory: {cfg.workdir}")

        reporter = reporter or NullReporter()
        shell = ShellEngine(root, executable=cfg.shell, env=cfg.env, reporter=reporter)
        dispatcher = ActionDispatcher(
            root,
            shell,
            python=cfg.python,
            searcher=searcher,
            max_output_lines=cfg.max_output_lines,
            output_log=cfg.output_log,
            confine_to_root=cfg.confine_to_root,
            timeout=cfg.timeout_seconds,
            env=cfg.env,
            denylist_regex=cfg.denylist_regex,
            compress=cfg.compress_for_llm,
            reporter=reporter,
        )
        return cls(
            model or OpenAIChatModel.from_config(cfg),
            dispatcher,
            Conversation(build_system_instructions(root, os.path.basename(cfg.shell))),
            max_steps=cfg.max_steps,
            max_retries=cfg.max_retries,
            reporter=reporter,
        )

    def run(self, task: str) -> RunResult:
        """
        Work on task until the model says done or the step budget runs out.

        The persistent shell is started here and always stopped on the way
        out, whatever ends the run.
        """
        shell = self.dispatcher.shell
        try:
            if shell is not None and not shell.started:
                shell.start()
            self.conversation.add_user_message(task)
            result = self._loop()
        finally:
            if shell is not None:
                shell.stop()

        self.reporter.finished(result)
        return result

    def _loop(self) -> RunResult:
        step = 1
        while step <= self.max_steps:
            checkpoint = self.conversation.checkpoint()
            retries = 0
            while True:
                try:
                    proposal = self._request_proposal()
                except MalformedStep as exc:
                    retries += 1
                    self._retry(exc, retries)
                    continue

                self.reporter.step(step, proposal)
                if proposal.is_terminal:
                    self.conversation.truncate(checkpoint)
                    self.conversation.add_assistant_message(encode_step(proposal))
                    return RunResult(RunOutcome.SUCCESS, step, proposal)

                result = self.dispatcher.dispatch(proposal)
                if result.invalid:
                    retries += 1
                    self._retry(MalformedStep(result.observation, raw=encode_step(proposal)), retries)
                    continue
                break

            self.conversation.truncate(checkpoint)
            self.conversation.add_assistant_message(encode_step(proposal))
            self.conversation.add_user_message(encode_step(result.as_step()))
            self.reporter.observation(result.observation)
            step += 1

        return RunResult(RunOutcome.BUDGET_EXHAUSTED, self.max_steps)

    def _request_proposal(self) -> Proposal:
        reply = self.model.complete(self.conversation.messages)
        self.reporter.debug("reply", reply)
        if not reply.strip():
            raise MalformedStep("empty reply", raw=reply)
        return decode_proposal(reply)

    def _retry(self, exc: MalformedStep, retries: int) -> None:
        if retries > self.max_retries:
            raise RetryLimitExceeded(f"giving up after {retries} unusable replies: {exc}") from exc

        self.reporter.retry(str(exc), exc.raw)
        if exc.raw:
            self.conversation.add_assistant_message(exc.raw)
        self.conversation.add_user_message(build_retry_message(str(exc)))
