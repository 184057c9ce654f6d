"""Conversation history and the language-model collaborator."""

from typing import Any, Dict, List, Optional, Protocol, Sequence

from openai import OpenAI

from .config import AppConfig

Message = Dict[str, str]

STOP_SEQUENCES = ["observation:", "feedback:"]


class Conversation:
    """
    Ordered, append-only list of role-tagged messages.

    The only way to remove messages is truncate(), which rolls the history
    back to an earlier checkpoint.
    """

    def __init__(self, system_prompt: Optional[str] = None) -> None:
        self._messages: List[Message] = []
        if system_prompt:
            self._append("system", system_prompt)

    def _append(self, role: str, content: str) -> None:
        self._messages.append({"role": role, "content": content})

    def add_user_message(self, content: str) -> None:
        self._append("user", content)

    def add_assistant_message(self, content: str) -> None:
        self._append("assistant", content)

    @property
    def messages(self) -> List[Message]:
        return [dict(m) for m in self._messages]

    def checkpoint(self) -> int:
        return len(self._messages)

    def truncate(self, checkpoint: int) -> None:
        if not 0 <= checkpoint <= len(self._messages):
            raise ValueError(f"invalid checkpoint {checkpoint} for {len(self._messages)} messages")
        del self._messages[checkpoint:]

    def __len__(self) -> int:
        return len(self._messages)


class ChatModel(Protocol):
    """Given the full history, returns the next reply text."""

    def complete(self, messages: Sequence[Message]) -> str: ...


class OpenAIChatModel:
    """Chat completion client with deterministic decoding and stop sequences."""

    def __init__(
            self,
            client: OpenAI,
            model: str,
            stop: Optional[List[str]] = None,
            timeout: Optional[float] = None,
    ) -> None:
        self.client = client
        self.model = model
        self.stop = list(STOP_SEQUENCES if stop is None else stop)
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "OpenAIChatModel":
        client_kwargs: Dict[str, Any] = {"api_key": cfg.require_api_key()}
        if cfg.base_url:
            client_kwargs["base_url"] = cfg.base_url
        return cls(OpenAI(**client_kwargs), cfg.model, timeout=cfg.timeout_seconds)

    def complete(self, messages: Sequence[Message]) -> str:
        kwargs: Dict[str, Any] = {}
        if self.timeout:
            kwargs["timeout"] = self.timeout
        resp = self.client.chat.completions.create(
            model=self.model,
            messages=list(messages),
            temperature=0.0,
            stop=self.stop,
            **kwargs,
        )
        reply = resp.choices[0].message.content or ""
        return reply.rstrip("\n")
