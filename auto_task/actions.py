"""
Action dispatcher.

Executes one validated proposal and turns whatever happened into an
observation for the model. Ordinary failures (non-zero exit codes, bad paths,
unreadable payloads) are observations too; only infrastructure problems raise.
"""
import os
import re
import shlex
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import requests
import yaml

from .errors import ActionError, ScriptSyntaxError
from .reporter import NullReporter, Reporter
from .search import DuckDuckGoSearcher, SearchResult, format_results
from .shell import CommandResult, ShellEngine
from .step import Proposal, Result
from .text import compress_for_llm, tail_lines

FEEDBACK_SUCCESS = "Success"
FEEDBACK_NO_OUTPUT = f"{FEEDBACK_SUCCESS} (no output)"


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    INVALID_ACTION = "invalid_action"


@dataclass(frozen=True)
class DispatchResult:
    observation: str
    outcome: Outcome = Outcome.SUCCESS

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def invalid(self) -> bool:
        return self.outcome is Outcome.INVALID_ACTION

    def as_step(self) -> Result:
        return Result(observation=self.observation)


def _success(observation: str = FEEDBACK_SUCCESS) -> DispatchResult:
    return DispatchResult(observation, Outcome.SUCCESS)


def _failure(observation: str) -> DispatchResult:
    return DispatchResult(observation, Outcome.FAILURE)


class Searcher(Protocol):
    def search(self, query: str) -> List[SearchResult]: ...


# -----------------------------
# Safety checks
# -----------------------------

def is_denied(command: str, denylist_regex: List[str]) -> Optional[str]:
    for pattern in denylist_regex:
        if re.search(pattern, command, flags=re.IGNORECASE):
            return pattern
    return None


# -----------------------------
# Payloads
# -----------------------------

def load_payload(payload: str) -> Tuple[Any, Optional[str]]:
    """Parse a YAML payload, returning (value, error message)."""
    try:
        return yaml.safe_load(payload), None
    except yaml.YAMLError as exc:
        return None, f"input is not valid YAML: {exc}"


def load_mapping(payload: str, *keys: str) -> Tuple[Dict[str, Any], Optional[str]]:
    data, error = load_payload(payload)
    if error:
        return {}, error
    if not isinstance(data, dict):
        return {}, f"input must be a YAML mapping with {', '.join(keys)}"
    return data, None


class ActionDispatcher:
    """
    Runs file, shell, python, search and cd actions.

    Owns the working directory seen by those actions. Shell actions update it
    from the directory the persistent shell reports, and cd moves the shell
    along with it, so both normally agree.
    """

    def __init__(
            self,
            root: str,
            shell: Optional[ShellEngine] = None,
            *,
            python: str = "python3",
            searcher: Optional[Searcher] = None,
            max_output_lines: int = 5,
            output_log: Optional[str] = None,
            confine_to_root: bool = True,
            timeout: Optional[float] = None,
            env: Optional[Dict[str, str]] = None,
            denylist_regex: Optional[List[str]] = None,
            compress: bool = True,
            reporter: Optional[Reporter] = None,
    ) -> None:
        self.root = os.path.realpath(os.path.expanduser(root))
        self.shell = shell
        self.python = python
        self.searcher: Searcher = searcher or DuckDuckGoSearcher()
        self.max_output_lines = max_output_lines
        self.output_log = output_log
        self.confine_to_root = confine_to_root
        self.timeout = timeout
        self.env = dict(env or {})
        self.denylist_regex = list(denylist_regex or [])
        self.compress = compress
        self.reporter: Reporter = reporter or NullReporter()
        self._workdir = self.root
        self._handlers: Dict[str, Callable[[str], DispatchResult]] = {
            "file": self.run_file,
            "shell": self.run_shell,
            "python": self.run_python,
            "search": self.run_search,
            "cd": self.run_cd,
        }

    @property
    def workdir(self) -> str:
        return self._workdir

    @property
    def actions(self) -> Tuple[str, ...]:
        return tuple(self._handlers)

    def dispatch(self, proposal: Proposal) -> DispatchResult:
        handler = self._handlers.get(proposal.action)
        if handler is None:
            return DispatchResult(f"invalid action: {proposal.action!r}", Outcome.INVALID_ACTION)

        result = handler(proposal.input)
        self.reporter.debug("dispatch", f"{proposal.action} -> {result.outcome.value}")
        if self.compress:
            return DispatchResult(compress_for_llm(result.observation), result.outcome)
        return DispatchResult(result.observation.rstrip("\n"), result.outcome)

    # -----------------------------
    # Paths
    # -----------------------------

    def resolve(self, path: str) -> str:
        path = os.path.expanduser(path)
        if not os.path.isabs(path):
            path = os.path.join(self._workdir, path)
        return os.path.normpath(path)

    def is_confined(self, path: str) -> bool:
        if not self.confine_to_root:
            return True
        real = os.path.realpath(path)
        return os.path.commonpath([self.root, real]) == self.root

    # -----------------------------
    # Actions
    # -----------------------------

    def run_file(self, payload: str) -> DispatchResult:
        data, error = load_mapping(payload, "path", "content")
        if error:
            return _failure(error)

        if not data.get("path"):
            return _failure("file path must be specified")

        target = self.resolve(str(data["path"]))
        if not self.is_confined(target):
            return _failure(f"path is outside of {self.root}: {target}")

        content = data.get("content")
        content = "" if content is None else str(content)
        try:
            Path(target).parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8", newline="") as fh:
                fh.write(content)
        except OSError as exc:
            return _failure(str(exc))

        return _success()

    def _require_shell(self) -> ShellEngine:
        if self.shell is None:
            raise ActionError("no shell is attached to the dispatcher")
        return self.shell

    def run_shell(self, script: str) -> DispatchResult:
        shell = self._require_shell()

        denied_by = is_denied(script, self.denylist_regex)
        if denied_by:
            return _failure(f"command blocked by safety policy (matched denylist regex: {denied_by})")

        try:
            statements, leftover = shell.split_statements(script)
        except ScriptSyntaxError as exc:
            return _failure(f"syntax error, nothing was run:\n{exc}")
        if leftover.strip():
            return _failure(f"incomplete shell input, nothing was run:\n{leftover}")
        if not statements:
            return _failure("command must be specified")

        outputs = []
        for statement in statements:
            result = shell.run(statement)
            self._workdir = shell.workdir
            if result.stdout:
                outputs.append(result.stdout)
            if result.shell_exited:
                return self._shell_restarted(result, outputs)
            if not result.ok:
                return _failure(result.stderr or f"failed (exit code {result.returncode})")

        output = "\n".join(outputs)
        if not output.strip():
            return _success(FEEDBACK_NO_OUTPUT)

        text, dropped = tail_lines(output, self.max_output_lines)
        if self.output_log:
            log_path = self._write_output_log(output)
            if dropped and log_path:
                text = f"{text}\n(full output written to {log_path})"
        return _success(text)

    def _shell_restarted(self, result: CommandResult, outputs: List[str]) -> DispatchResult:
        notice = (
            f"the shell exited with status {result.returncode} and was restarted in {result.workdir}; "
            "exported variables, functions and background jobs were reset"
        )
        if not result.ok:
            return _failure("\n".join(filter(None, [result.stderr, notice])))
        text, _ = tail_lines("\n".join(outputs), self.max_output_lines)
        return _success("\n".join(filter(None, [text, notice])))

    def _write_output_log(self, output: str) -> Optional[str]:
        log_path = self.resolve(self.output_log or "")
        try:
            with open(log_path, "w", encoding="utf-8") as fh:
                fh.write(output + "\n")
        except OSError as exc:
            self.reporter.debug("output-log", f"cannot write {log_path}: {exc}")
            return None
        return log_path

    def run_python(self, code: str) -> DispatchResult:
        if not os.path.isdir(self._workdir):
            return _failure(f"working directory does not exist: {self._workdir}")

        env = os.environ.copy()
        env.update(self.env)
        try:
            proc = subprocess.run(
                [self.python, "-c", code],
                cwd=self._workdir,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            partial = exc.stdout if isinstance(exc.stdout, str) else ""
            return _failure(f"{partial}\ntimed out after {self.timeout} seconds".lstrip("\n"))
        except OSError as exc:
            raise ActionError(f"failed to run {self.python}: {exc}") from exc

        output = proc.stdout or ""
        if proc.returncode != 0:
            return _failure(output or f"failed (exit code {proc.returncode})")
        if not output:
            return _success(FEEDBACK_NO_OUTPUT)
        return _success(output)

    def run_search(self, payload: str) -> DispatchResult:
        data, error = load_mapping(payload, "query")
        if error:
            return _failure(error)

        query = str(data.get("query") or "").strip()
        if not query:
            return _failure("query must be specified")

        try:
            results = self.searcher.search(query)
        except requests.RequestException as exc:
            return _failure(f"search failed: {exc}")

        if not results:
            return _success("no results found")
        return _success(format_results(results))

    def run_cd(self, payload: str) -> DispatchResult:
        data, error = load_payload(payload)
        if error:
            return _failure(error)

        create = False
        if isinstance(data, dict):
            directory = data.get("dir")
            create = bool(data.get("create", False))
        else:
            directory = data

        if not directory:
            return _failure("directory path must be specified")

        target = self.resolve(str(directory))
        if not self.is_confined(target):
            return _failure(f"directory is outside of {self.root}: {target}")

        if not os.path.isdir(target):
            if os.path.exists(target):
                return _failure(f"not a directory: {target}")
            if not create:
                return _failure(f"directory does not exist: {target}")
            try:
                os.makedirs(target, exist_ok=True)
            except OSError as exc:
                return _failure(str(exc))

        self._workdir = target
        if self.shell is not None and self.shell.running:
            result = self.shell.run(f"cd -- {shlex.quote(target)}")
            if not result.ok:
                return _failure(result.stderr or f"failed (exit code {result.returncode})")

        return _success()
