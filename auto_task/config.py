import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

DEFAULT_MODEL = "gpt-4o-mini"


# -----------------------------
# Config
# -----------------------------

@dataclass
class AppConfig:
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str = DEFAULT_MODEL
    workdir: str = field(default_factory=os.getcwd)
    max_steps: int = 10
    max_retries: int = 3
    max_output_lines: int = 5
    output_log: Optional[str] = None
    python: str = "python3"
    shell: str = "bash"
    compress_for_llm: bool = True
    confine_to_root: bool = True
    timeout_seconds: Optional[float] = None
    env: Dict[str, str] = field(default_factory=dict)
    denylist_regex: List[str] = field(default_factory=list)
    verbose: bool = False

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ValueError("Missing OpenAI API key (set openai.api_key or OPENAI_API_KEY).")
        return self.api_key


def _positive_int(value: Any, name: str, allow_zero: bool = False) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if number < 0 or (number == 0 and not allow_zero):
        raise ValueError(f"{name} must be positive, got {number}")
    return number


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Build the configuration from an optional YAML file.

    The file has the sections `openai`, `agent` and `safety`; anything left
    out keeps its default. The API key falls back to OPENAI_API_KEY.
    """
    data: Dict[str, Any] = {}
    if path:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at the top level")

    openai_cfg = data.get("openai", {}) or {}
    agent_cfg = data.get("agent", {}) or {}
    safety_cfg = data.get("safety", {}) or {}
    defaults = AppConfig()

    timeout = agent_cfg.get("timeout_seconds")
    return AppConfig(
        api_key=openai_cfg.get("api_key") or os.environ.get("OPENAI_API_KEY"),
        base_url=openai_cfg.get("base_url"),
        model=openai_cfg.get("model", defaults.model),
        workdir=str(agent_cfg.get("workdir") or defaults.workdir),
        max_steps=_positive_int(agent_cfg.get("max_steps", defaults.max_steps), "max_steps"),
        max_retries=_positive_int(
            agent_cfg.get("max_retries", defaults.max_retries), "max_retries", allow_zero=True),
        max_output_lines=_positive_int(
            agent_cfg.get("max_output_lines", defaults.max_output_lines), "max_output_lines", allow_zero=True),
        output_log=agent_cfg.get("output_log"),
        python=agent_cfg.get("python", defaults.python),
        shell=agent_cfg.get("shell", defaults.shell),
        compress_for_llm=bool(agent_cfg.get("compress_for_llm", defaults.compress_for_llm)),
        confine_to_root=bool(agent_cfg.get("confine_to_root", defaults.confine_to_root)),
        timeout_seconds=float(timeout) if timeout else None,
        env={str(k): str(v) for k, v in (agent_cfg.get("env", {}) or {}).items()},
        denylist_regex=list(safety_cfg.get("denylist_regex", []) or []),
        verbose=bool(agent_cfg.get("verbose", False)),
    )


def apply_overrides(cfg: AppConfig, **overrides: Any) -> AppConfig:
    """Return a copy of cfg with every override that is not None applied."""
    changes = {k: v for k, v in overrides.items() if v is not None}
    if "max_steps" in changes:
        changes["max_steps"] = _positive_int(changes["max_steps"], "max_steps")
    return replace(cfg, **changes)
