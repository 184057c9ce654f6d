import pytest

from auto_task.errors import MalformedStep
from auto_task.step import Proposal, Result, decode_proposal, decode_step, encode_step

POEM_REPLY = """Sure, here is the next step.
thought: Write a poem
action: file
input:
```
path: poems/rose.txt
content: |
  Roses are red,
    violets are blue.

  Trailing  spaces   stay.
```
"""


def test_decode_file_step_keeps_payload_verbatim() -> None:
    step = decode_step(POEM_REPLY)

    assert step == Proposal(
        thought="Write a poem",
        action="file",
        input=(
            "path: poems/rose.txt\n"
            "content: |\n"
            "  Roses are red,\n"
            "    violets are blue.\n"
            "\n"
            "  Trailing  spaces   stay."
        ),
    )


@pytest.mark.parametrize(
    "proposal",
    [
        Proposal(thought="List files", action="shell", input="ls -la\npwd"),
        Proposal(thought="Write a poem", action="file", input=POEM_REPLY.split("```\n")[1].rstrip("\n")),
        Proposal(thought="Compute", action="python", input="for i in range(3):\n    print(i)\n\n\nprint('end')"),
        Proposal(thought="All done", action="done"),
    ],
)
def test_round_trip(proposal: Proposal) -> None:
    assert decode_step(encode_step(proposal)) == proposal


def test_round_trip_trims_one_outer_blank_line() -> None:
    encoded = encode_step(Proposal(thought="t", action="shell", input="\necho hi\n"))

    assert "input:\n```\necho hi\n```\n" in encoded
    assert decode_step(encoded).input == "echo hi"


def test_encode_result() -> None:
    assert encode_step(Result(observation="hello\nworld\n")) == "observation:\n```\nhello\nworld\n```\n"


def test_decode_observation() -> None:
    step = decode_step("observation:\n```\nSuccess\n```\n")

    assert step == Result(observation="Success")
    with pytest.raises(MalformedStep):
        decode_proposal("observation:\n```\nSuccess\n```\n")


def test_last_marker_wins() -> None:
    reply = "thought: first\naction: python\nthought: second\naction: shell\ninput:\n```\nls\n```"

    step = decode_step(reply)

    assert step.thought == "second"
    assert step.action == "shell"


def test_marker_text_is_trimmed() -> None:
    step = decode_step("thought:    spaced out   \naction:  shell \ninput:\n```\nls\n```")

    assert step.thought == "spaced out"
    assert step.action == "shell"


def test_unclosed_fence_runs_to_end() -> None:
    step = decode_step("thought: t\naction: shell\ninput:\n```\necho a\necho b")

    assert step.input == "echo a\necho b"


def test_markers_are_case_sensitive() -> None:
    with pytest.raises(MalformedStep):
        decode_step("Thought: t\nAction: shell\nInput:\n```\nls\n```")


def test_done_needs_no_input() -> None:
    step = decode_step("thought: The task is complete\naction: done")

    assert isinstance(step, Proposal)
    assert step.is_terminal
    assert step.input == ""
    assert encode_step(step) == "thought: The task is complete\naction: done"


@pytest.mark.parametrize(
    ("reply", "message"),
    [
        ("thought: t\naction: bogus\ninput:\n```\nx\n```", "invalid action"),
        ("action: shell\ninput:\n```\nls\n```", "thought must be specified"),
        ("thought: t\naction: shell\n", "input must be specified"),
        ("thought: t\ninput:\n```\nls\n```", "action must be specified"),
        ("I am not sure what to do.", "no thought/action/input"),
    ],
)
def test_malformed_replies(reply: str, message: str) -> None:
    with pytest.raises(MalformedStep, match=message) as excinfo:
        decode_step(reply)

    assert excinfo.value.raw == reply
