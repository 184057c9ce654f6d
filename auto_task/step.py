"""
Step codec: turns a model reply into a validated step and back.

Wire format of a proposal:

    thought: <rationale>
    action: <file|shell|python|search|cd|done>
    input:
    ```
    <payload>
    ```

and of a result:

    observation:
    ```
    <payload>
    ```
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from .errors import MalformedStep

TERMINAL_ACTION = "done"
ACTIONS = ("file", "shell", "python", "search", "cd", TERMINAL_ACTION)

FENCE = "```"
OBSERVATION_LABEL = "observation"

_THOUGHT = "thought:"
_ACTION = "action:"
_INPUT = "input:"
_RESULT_MARKERS = ("observation:", "feedback:")


@dataclass(frozen=True)
class Proposal:
    """What the model wants to do next."""

    thought: str
    action: str
    input: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.action == TERMINAL_ACTION


@dataclass(frozen=True)
class Result:
    """What happened when a proposal was executed."""

    observation: str
    label: str = OBSERVATION_LABEL


Step = Union[Proposal, Result]


def validate(proposal: Proposal) -> Proposal:
    if proposal.action == TERMINAL_ACTION:
        return proposal

    if not proposal.thought:
        raise MalformedStep("thought must be specified")
    if not proposal.action:
        raise MalformedStep("action must be specified")
    if not proposal.input:
        raise MalformedStep("input must be specified")
    if proposal.action not in ACTIONS:
        raise MalformedStep(f"invalid action value: {proposal.action!r}")

    return proposal


def _marker_value(line: str) -> str:
    return line.split(":", 1)[1].strip()


def _read_block(lines: List[str], start: int) -> Tuple[str, int]:
    """
    Collect the fenced payload that follows a marker line.

    Returns the payload and the index of the closing fence (or len(lines)
    when the block is never closed, in which case it runs to the end).
    """
    i = start
    opened = False
    body: List[str] = []

    while i < len(lines):
        line = lines[i]
        if line.startswith(FENCE):
            if opened:
                break
            opened = True
        elif opened:
            body.append(line)
        i += 1

    return "\n".join(body), i


def decode_step(text: str) -> Step:
    """
    Decode one model reply.

    Chatter around the markers is ignored. When a marker repeats, the last one
    wins. Raises MalformedStep when the reply holds neither a valid proposal
    nor an observation.
    """
    thought = ""
    action = ""
    payload = ""
    observation: Optional[str] = None
    label = OBSERVATION_LABEL

    lines = text.split("\n")
    i = 0
    while i < len(lines):
        line = lines[i]
        if line.startswith(_THOUGHT):
            thought = _marker_value(line)
        elif line.startswith(_ACTION):
            action = _marker_value(line)
        elif line.startswith(_INPUT):
            payload, i = _read_block(lines, i + 1)
        elif line.startswith(_RESULT_MARKERS):
            label = line.split(":", 1)[0]
            observation, i = _read_block(lines, i + 1)
        i += 1

    if observation is not None and not (thought or action):
        return Result(observation=observation, label=label)

    if not (thought or action or payload):
        raise MalformedStep("no thought/action/input found in reply", raw=text)

    try:
        return validate(Proposal(thought=thought, action=action, input=payload))
    except MalformedStep as exc:
        exc.raw = text
        raise


def decode_proposal(text: str) -> Proposal:
    """Like decode_step, but a bare observation is also a protocol error."""
    step = decode_step(text)
    if not isinstance(step, Proposal):
        raise MalformedStep("reply contains an observation instead of an action", raw=text)
    return step


def _trim_outer_newline(payload: str) -> str:
    if payload.startswith("\n"):
        payload = payload[1:]
    if payload.endswith("\n"):
        payload = payload[:-1]
    return payload


def _fenced(label: str, payload: str) -> str:
    return f"{label}:\n{FENCE}\n{_trim_outer_newline(payload)}\n{FENCE}\n"


def encode_step(step: Step) -> str:
    if isinstance(step, Result):
        return _fenced(step.label, step.observation)

    lines = [f"thought: {step.thought}", f"action: {step.action}"]
    if step.input or not step.is_terminal:
        lines.append(_fenced("input", step.input))
    return "\n".join(lines)
