import os

import pytest

from auto_task.actions import DispatchResult, Outcome
from auto_task.config import AppConfig
from auto_task.errors import RetryLimitExceeded, ShellError
from auto_task.runner import RunOutcome, Runner
from auto_task.session import Conversation

from .conftest import requires_bash

DONE = "thought: The task is complete\naction: done"


def shell_reply(command: str, thought: str = "run it") -> str:
    return f"thought: {thought}\naction: shell\ninput:\n```\n{command}\n```"


class ScriptedModel:
    """Replies from a fixed script; the last reply repeats forever."""

    def __init__(self, *replies: str) -> None:
        self.replies = list(replies)
        self.calls = []

    def complete(self, messages):
        self.calls.append(list(messages))
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


class FailingModel:
    def complete(self, messages):
        raise ConnectionError("service unavailable")


class FakeShell:
    def __init__(self) -> None:
        self.started = False
        self.stops = 0

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stops += 1


class FakeDispatcher:
    def __init__(self, results=None) -> None:
        self.shell = FakeShell()
        self.results = list(results or [])
        self.proposals = []

    def dispatch(self, proposal):
        self.proposals.append(proposal)
        if self.results:
            return self.results.pop(0)
        return DispatchResult(f"ran {proposal.input}")


def make_runner(model, dispatcher=None, **kwargs) -> Runner:
    return Runner(model, dispatcher or FakeDispatcher(), Conversation("system"), **kwargs)


def test_done_terminates_after_one_turn() -> None:
    model = ScriptedModel(DONE)
    runner = make_runner(model)

    result = runner.run("say hi")

    assert result.outcome is RunOutcome.SUCCESS
    assert result.succeeded
    assert result.steps == 1
    assert result.final.thought == "The task is complete"
    assert len(model.calls) == 1
    assert runner.dispatcher.proposals == []
    assert runner.dispatcher.shell.started
    assert runner.dispatcher.shell.stops == 1


def test_budget_exhaustion_never_exceeds_max_steps() -> None:
    model = ScriptedModel(shell_reply("echo again"))
    runner = make_runner(model, max_steps=3)

    result = runner.run("loop forever")

    assert result.outcome is RunOutcome.BUDGET_EXHAUSTED
    assert not result.succeeded
    assert result.steps == 3
    assert len(runner.dispatcher.proposals) == 3
    assert len(model.calls) == 3
    assert runner.dispatcher.shell.stops == 1


def test_history_alternates_proposals_and_observations() -> None:
    model = ScriptedModel(shell_reply("echo hi"), DONE)
    runner = make_runner(model)

    runner.run("greet")

    messages = runner.conversation.messages
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user", "assistant"]
    assert messages[1]["content"] == "greet"
    assert messages[2]["content"] == "thought: run it\naction: shell\ninput:\n```\necho hi\n```\n"
    assert messages[3]["content"] == "observation:\n```\nran echo hi\n```\n"
    assert messages[4]["content"] == DONE
    assert model.calls[1] == messages[:4]


def test_malformed_reply_is_retried_and_rolled_back() -> None:
    bad = "thought: oops\naction: bogus\ninput:\n```\nx\n```"
    model = ScriptedModel(bad, shell_reply("ls"), DONE)
    runner = make_runner(model)

    result = runner.run("list")

    assert result.succeeded
    assert result.steps == 2
    retry_context = model.calls[1]
    assert retry_context[-2] == {"role": "assistant", "content": bad}
    assert "invalid action" in retry_context[-1]["content"]
    contents = [m["content"] for m in runner.conversation.messages]
    assert bad not in contents
    assert not any("could not be used" in c for c in contents)


def test_empty_reply_is_retried_without_counting_a_step() -> None:
    model = ScriptedModel("", "   ", shell_reply("ls"), DONE)
    runner = make_runner(model, max_steps=2)

    result = runner.run("list")

    assert result.succeeded
    assert result.steps == 2
    assert len(runner.dispatcher.proposals) == 1


def test_invalid_action_from_dispatcher_is_retried() -> None:
    dispatcher = FakeDispatcher([DispatchResult("invalid action: 'shell'", Outcome.INVALID_ACTION)])
    model = ScriptedModel(shell_reply("ls"), shell_reply("ls"), DONE)
    runner = make_runner(model, dispatcher)

    result = runner.run("list")

    assert result.succeeded
    assert result.steps == 2
    assert len(dispatcher.proposals) == 2
    roles = [m["role"] for m in runner.conversation.messages]
    assert roles == ["system", "user", "assistant", "user", "assistant"]


def test_failed_actions_are_observations_not_errors() -> None:
    dispatcher = FakeDispatcher([DispatchResult("failed (exit code 2)", Outcome.FAILURE)])
    runner = make_runner(ScriptedModel(shell_reply("false"), DONE), dispatcher)

    result = runner.run("fail once")

    assert result.succeeded
    assert "failed (exit code 2)" in runner.conversation.messages[3]["content"]


def test_retry_limit() -> None:
    runner = make_runner(ScriptedModel("no idea"), max_retries=2)

    with pytest.raises(RetryLimitExceeded):
        runner.run("confuse")

    assert runner.dispatcher.shell.stops == 1


def test_transport_error_is_fatal_and_shell_is_stopped() -> None:
    runner = make_runner(FailingModel())

    with pytest.raises(ConnectionError):
        runner.run("anything")

    assert runner.dispatcher.shell.stops == 1


def test_dispatch_error_is_fatal() -> None:
    class BrokenDispatcher(FakeDispatcher):
        def dispatch(self, proposal):
            raise ShellError("failed to write to shell")

    dispatcher = BrokenDispatcher()
    runner = make_runner(ScriptedModel(shell_reply("ls")), dispatcher)

    with pytest.raises(ShellError):
        runner.run("anything")

    assert dispatcher.shell.stops == 1


def test_from_config_requires_existing_workdir(tmp_path) -> None:
    with pytest.raises(ValueError, match="working directory"):
        Runner.from_config(AppConfig(workdir=str(tmp_path / "missing")), model=ScriptedModel(DONE))


@requires_bash
def test_end_to_end_with_persistent_shell(tmp_path) -> None:
    model = ScriptedModel(
        shell_reply("mkdir -p out && cd out\nexport NAME=world"),
        "thought: write it\naction: file\ninput:\n```\npath: hello.txt\ncontent: hello\n```",
        shell_reply('echo "$NAME from $(pwd)"; cat hello.txt'),
        DONE,
    )
    runner = Runner.from_config(AppConfig(workdir=str(tmp_path)), model=model)

    result = runner.run("write a greeting")

    assert result.succeeded
    assert result.steps == 4
    out_dir = os.path.join(os.path.realpath(tmp_path), "out")
    assert (tmp_path / "out" / "hello.txt").read_text(encoding="utf-8") == "hello"
    observation = runner.conversation.messages[7]["content"]
    assert observation == f"observation:\n```\nworld from {out_dir}\nhello\n```\n"
    assert not runner.dispatcher.shell.started
