import logging
import os
import subprocess
from dataclasses import dataclass, field

from patchpilot.models import CommandResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TerminalInfo:
    id: int
    cwd: str
    env: dict[str, str] = field(default_factory=lambda: {"PAGER": "cat"})
    busy: bool = False
    last_command: str = ""
    # None while the terminal is open
    exit_status: int | None = None

    @property
    def closed(self) -> bool:
        return self.exit_status is not None


class TerminalRegistry:
    """
    Tracks the terminals a host has opened, busy or idle, across tasks.
    Owned by the host process and passed to whatever runs commands.
    """

    def __init__(self) -> None:
        self._terminals: list[TerminalInfo] = []
        self._next_id = 1

    def create(self, cwd: str) -> TerminalInfo:
        terminal = TerminalInfo(id=self._next_id, cwd=cwd)
        self._next_id += 1
        self._terminals.append(terminal)
        return terminal

    def get(self, terminal_id: int) -> TerminalInfo | None:
        terminal = next((t for t in self._terminals if t.id == terminal_id), None)
        if terminal is not None and terminal.closed:
            self.remove(terminal_id)
            return None
        return terminal

    def update(self, terminal_id: int, *, busy: bool | None = None, last_command: str | None = None) -> None:
        terminal = self.get(terminal_id)
        if terminal is None:
            return
        if busy is not None:
            terminal.busy = busy
        if last_command is not None:
            terminal.last_command = last_command

    def remove(self, terminal_id: int) -> None:
        self._terminals = [t for t in self._terminals if t.id != terminal_id]

    def list_all(self) -> list[TerminalInfo]:
        self._terminals = [t for t in self._terminals if not t.closed]
        return list(self._terminals)


def _decode_partial(output: str | bytes | None) -> str:
    """Output captured before a timeout; may arrive as bytes even in text mode."""
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode(errors="replace")
    return output


class SubprocessCommandRunner:
    """Runs shell commands in an idle registered terminal for `cwd`, creating one if needed."""

    def __init__(self, registry: TerminalRegistry, cwd: str, timeout: float | None = 600.0):
        self.registry = registry
        self.cwd = cwd
        self.timeout = timeout

    def _acquire_terminal(self) -> TerminalInfo:
        for terminal in self.registry.list_all():
            if terminal.cwd == self.cwd and not terminal.busy:
                return terminal
        return self.registry.create(self.cwd)

    def run(self, command: str) -> CommandResult:
        terminal = self._acquire_terminal()
        self.registry.update(terminal.id, busy=True, last_command=command)
        logger.debug("Terminal %d: %s", terminal.id, command)
        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=terminal.cwd,
                env={**os.environ, **terminal.env},
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            output = _decode_partial(e.stdout) + _decode_partial(e.stderr)
            return CommandResult(output=output + f"\n(Command timed out after {self.timeout} seconds)", exit_code=None)
        finally:
            self.registry.update(terminal.id, busy=False)

        return CommandResult(output=completed.stdout + completed.stderr, exit_code=completed.returncode)
