"""
Persistent shell engine.

One shell process lives for the whole task so that `cd`, exported variables
and background jobs carry over from one command to the next. Every command is
followed by a trailer that echoes SENTINEL-<n>,<exit code>,<cwd>, where n counts
commands; seeing that line on stdout ends the exchange.
"""
import os
import queue
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Dict, List, Optional, Set, Tuple

from .errors import ScriptSyntaxError, ShellError
from .reporter import NullReporter, Reporter

SENTINEL = "AUTO-TASK-COMMAND-END"
TRAILER = 'echo "{tag},$?,$PWD"; echo "{tag}" >&2\n'

STDOUT = "stdout"
STDERR = "stderr"

# Seconds to wait for the shell to exit on its own before killing it.
STOP_GRACE_SECONDS = 2.0
# Seconds to wait for an exit status once stdout has closed.
EXIT_WAIT_SECONDS = 5.0
# Seconds to wait for the stderr marker that follows the sentinel.
MARKER_WAIT_SECONDS = 2.0
# Seconds between SIGTERM and SIGKILL for jobs left in the process group.
GROUP_TERM_SECONDS = 0.5

_INCOMPLETE_MARKERS = ("unexpected end of file", "unexpected EOF", "here-document")
_SYNTAX_ERROR_MARKER = "syntax error"


@dataclass
class CommandResult:
    """Outcome of a single statement run in the persistent shell."""

    command: str
    returncode: int
    stdout: str
    stderr: str
    workdir: str
    shell_exited: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _pump(stream: IO[str], name: str, inbox: "queue.Queue[Tuple[str, Optional[str]]]") -> None:
    for line in iter(stream.readline, ""):
        inbox.put((name, line.rstrip("\n")))
    inbox.put((name, None))


class ShellEngine:
    """Runs statements one at a time inside a long-lived shell process."""

    def __init__(
            self,
            workdir: str,
            executable: str = "bash",
            env: Optional[Dict[str, str]] = None,
            reporter: Optional[Reporter] = None,
    ) -> None:
        self.executable = executable
        self.env = dict(env or {})
        self.reporter: Reporter = reporter or NullReporter()
        self._workdir = str(workdir)
        self._proc: Optional[subprocess.Popen] = None
        self._inbox: "queue.Queue[Tuple[str, Optional[str]]]" = queue.Queue()
        self._closed: Set[str] = set()
        self._commands = 0

    # -----------------------------
    # Lifecycle
    # -----------------------------

    @property
    def workdir(self) -> str:
        """Working directory as last reported by the shell itself."""
        return self._workdir

    @property
    def started(self) -> bool:
        return self._proc is not None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def _command_line(self) -> List[str]:
        if Path(self.executable).name == "bash":
            return [self.executable, "-o", "pipefail", "-s"]
        return [self.executable, "-s"]

    def start(self) -> None:
        if self._proc is not None:
            raise ShellError("shell is already running")

        env = os.environ.copy()
        env.update(self.env)
        try:
            proc = subprocess.Popen(
                self._command_line(),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self._workdir,
                env=env,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except OSError as exc:
            raise ShellError(f"failed to start {self.executable}: {exc}") from exc

        self._proc = proc
        self._inbox = queue.Queue()
        self._closed = set()
        for name, stream in ((STDOUT, proc.stdout), (STDERR, proc.stderr)):
            threading.Thread(
                target=_pump,
                args=(stream, name, self._inbox),
                name=f"shell-{name}",
                daemon=True,
            ).start()

        self.reporter.debug("shell", f"start pid={proc.pid} cwd={self._workdir}")

    def stop(self) -> Optional[int]:
        """
        Close the shell's input and wait for it to exit.

        Safe to call more than once and after the shell died on its own. A
        shell that is still busy after the grace period is killed. Jobs it
        left running in the background are terminated with its process group
        either way.
        """
        proc = self._proc
        if proc is None:
            return None
        self._proc = None

        try:
            if proc.stdin is not None:
                proc.stdin.close()
        except OSError as exc:
            self.reporter.debug("shell", f"closing stdin failed: {exc}")

        try:
            returncode = proc.wait(timeout=STOP_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            self._signal_group(proc, signal.SIGKILL)
            returncode = proc.wait()

        self._reap_group(proc)
        self.reporter.debug("shell", f"stop exit-code={returncode}")
        return returncode

    def _signal_group(self, proc: subprocess.Popen, sig: int) -> bool:
        """Send sig to the shell's process group; False once the group is empty."""
        try:
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, sig)
            else:
                proc.send_signal(sig)
        except ProcessLookupError:
            return False
        self.reporter.debug("shell", f"signal {sig} to pgid={proc.pid}")
        return True

    def _reap_group(self, proc: subprocess.Popen) -> None:
        if not hasattr(os, "killpg"):
            return
        if not self._signal_group(proc, signal.SIGTERM):
            return
        deadline = time.monotonic() + GROUP_TERM_SECONDS
        while time.monotonic() < deadline:
            try:
                os.killpg(proc.pid, 0)
            except ProcessLookupError:
                return
            time.sleep(0.05)
        self._signal_group(proc, signal.SIGKILL)

    def restart(self) -> None:
        self.stop()
        self.start()

    def __enter__(self) -> "ShellEngine":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # -----------------------------
    # Exchange
    # -----------------------------

    def _next_line(self, timeout: Optional[float] = None) -> Tuple[str, Optional[str]]:
        name, line = self._inbox.get(timeout=timeout)
        if line is None:
            self._closed.add(name)
        return name, line

    def _collect(self, name: str, line: str, stdout: List[str], stderr: List[str]) -> None:
        if name == STDERR:
            self.reporter.stderr(line)
            stderr.append(line)
        else:
            self.reporter.stdout(line)
            stdout.append(line)

    def _take_stderr(self, line: str, tag: str, stdout: List[str], stderr: List[str]) -> bool:
        """
        Collect one stderr line, returning True when it carries the marker for tag.

        Markers left over from earlier commands are dropped.
        """
        index = line.find(SENTINEL)
        if index == -1:
            self._collect(STDERR, line, stdout, stderr)
            return False

        if index > 0:
            self._collect(STDERR, line[:index], stdout, stderr)
        marker = line[index:]
        if marker == tag:
            return True
        self.reporter.debug("shell", f"dropping stale marker {marker}")
        return False

    def _await_stderr_marker(self, tag: str, stdout: List[str], stderr: List[str]) -> None:
        """
        Pick up stderr written before the stdout sentinel.

        The trailer echoes the tag on stderr right after the stdout sentinel,
        so everything ahead of it on stderr belongs to this command.
        """
        while STDERR not in self._closed:
            try:
                name, line = self._next_line(timeout=MARKER_WAIT_SECONDS)
            except queue.Empty:
                self.reporter.debug("shell", f"stderr marker {tag} did not arrive")
                return
            if line is None:
                continue
            if name == STDOUT:
                self._collect(name, line, stdout, stderr)
            elif self._take_stderr(line, tag, stdout, stderr):
                return

    def _write(self, data: str) -> None:
        if self._proc is None or self._proc.stdin is None:
            raise ShellError("shell is not running")
        try:
            self._proc.stdin.write(data)
            self._proc.stdin.flush()
        except (OSError, ValueError) as exc:
            raise ShellError(f"failed to write to shell: {exc}") from exc

    def run(self, command: str) -> CommandResult:
        """
        Run one complete statement and wait for its sentinel.

        A non-zero exit status is data, not an error. ShellError is raised
        only when the shell cannot be written to or its output is lost while
        the process is still alive.
        """
        if self._proc is None:
            raise ShellError("shell is not running")
        if STDOUT in self._closed:
            self.reporter.debug("shell", "shell exited between commands, restarting")
            self.restart()

        self._commands += 1
        tag = f"{SENTINEL}-{self._commands}"
        self.reporter.command(command)
        self._write(f"{command}\n{TRAILER.format(tag=tag)}")

        stdout: List[str] = []
        stderr: List[str] = []
        marker_seen = False
        while True:
            name, line = self._next_line()
            if line is None:
                if name == STDOUT:
                    return self._shell_exited(command, stdout, stderr)
                continue

            if name == STDERR:
                # The stderr marker can overtake the stdout sentinel.
                if marker_seen:
                    self._collect(name, line, stdout, stderr)
                else:
                    marker_seen = self._take_stderr(line, tag, stdout, stderr)
                continue

            index = line.find(SENTINEL)
            trailer = _parse_trailer(line[index:], tag) if index != -1 else None
            if trailer is None:
                self._collect(name, line, stdout, stderr)
                continue

            if index > 0:
                self._collect(name, line[:index], stdout, stderr)

            returncode, self._workdir = trailer
            if not marker_seen:
                self._await_stderr_marker(tag, stdout, stderr)
            self.reporter.debug("exit-code", str(returncode))
            return CommandResult(
                command=command,
                returncode=returncode,
                stdout="\n".join(stdout),
                stderr="\n".join(stderr),
                workdir=self._workdir,
            )

    def _shell_exited(self, command: str, stdout: List[str], stderr: List[str]) -> CommandResult:
        proc = self._proc
        if proc is None:
            raise ShellError("shell was stopped while a command was running")
        try:
            returncode = proc.wait(timeout=EXIT_WAIT_SECONDS)
        except subprocess.TimeoutExpired:
            raise ShellError("lost the shell's output stream before the command finished") from None

        # stderr may still be in flight, or held open by a leftover background job.
        deadline = time.monotonic() + EXIT_WAIT_SECONDS
        while STDERR not in self._closed and time.monotonic() < deadline:
            try:
                name, line = self._inbox.get(timeout=0.1)
            except queue.Empty:
                continue
            if line is None:
                self._closed.add(name)
            elif name == STDERR:
                self.reporter.stderr(line)
                stderr.append(line)

        self.reporter.debug("shell", f"shell exited with {returncode}, restarting in {self._workdir}")
        self.restart()
        return CommandResult(
            command=command,
            returncode=returncode,
            stdout="\n".join(stdout),
            stderr="\n".join(stderr),
            workdir=self._workdir,
            shell_exited=True,
        )

    # -----------------------------
    # Statement splitting
    # -----------------------------

    def _parse_check(self, source: str) -> str:
        """Run the shell's parser over source and return what it reported."""
        try:
            proc = subprocess.run(
                [self.executable, "-n"],
                input=source,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as exc:
            raise ShellError(f"failed to run {self.executable}: {exc}") from exc
        return proc.stderr

    def split_statements(self, script: str) -> Tuple[List[str], str]:
        """
        Split a script into statements that can each be followed by a trailer.

        Lines are accumulated until the shell accepts them as complete, so
        loops, heredocs and quoted newlines stay together. Returns the
        statements and any trailing text that never became complete.

        Raises ScriptSyntaxError for a statement the parser rejects outright;
        a non-interactive shell would exit on it.
        """
        statements: List[str] = []
        pending: List[str] = []
        for line in script.split("\n"):
            if not pending and not line.strip():
                continue
            pending.append(line)
            source = "\n".join(pending)
            if source.rstrip("\n").endswith("\\"):
                continue
            report = self._parse_check(source)
            if any(marker in report for marker in _INCOMPLETE_MARKERS):
                continue
            if _SYNTAX_ERROR_MARKER in report:
                raise ScriptSyntaxError(report.strip(), source)
            statements.append(source)
            pending = []
        return statements, "\n".join(pending)


def _parse_trailer(text: str, tag: str) -> Optional[Tuple[int, str]]:
    parts = text.split(",", 2)
    if len(parts) != 3 or parts[0] != tag:
        return None
    try:
        return int(parts[1]), parts[2]
    except ValueError:
        return None
