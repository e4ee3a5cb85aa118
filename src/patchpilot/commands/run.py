import signal
from pathlib import Path
from types import FrameType

import typer

from patchpilot.agent.task import Task
from patchpilot.config import EnvSettingsProvider, get_model_name
from patchpilot.console import RichHostUI, configure_logging, format_usage_summary
from patchpilot.integrations.filesystem import LocalFileSystem, atomic_write_text
from patchpilot.integrations.mcp import McpHub
from patchpilot.integrations.terminal import SubprocessCommandRunner, TerminalRegistry
from patchpilot.llm.router import build_api_handler
from patchpilot.models import Message, TaskStatus, encode_message

ABORTED_EXIT_CODE = 130


def write_transcript(path: Path, messages: tuple[Message, ...]) -> None:
    atomic_write_text(path, "".join(encode_message(message).decode() + "\n" for message in messages))


def run_task(task_text: str, model: str | None, cwd: Path, transcript: Path | None, verbose: bool) -> None:
    configure_logging(verbose)
    workspace = cwd.resolve()

    api = build_api_handler(get_model_name(model))
    host = RichHostUI()
    hub = McpHub()
    task = Task(
        api,
        host,
        LocalFileSystem(workspace),
        EnvSettingsProvider(),
        cwd=workspace.as_posix(),
        command_runner=SubprocessCommandRunner(TerminalRegistry(), workspace.as_posix()),
        tool_hub=hub,
        mcp_server_names=[server.name for server in hub.get_servers()],
    )

    def _on_interrupt(signum: int, frame: FrameType | None) -> None:
        # A second Ctrl+C falls back to the default hard interrupt
        signal.signal(signal.SIGINT, signal.default_int_handler)
        host.say("error", "Aborting task...")
        task.abort()

    previous_handler = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        outcome = task.run(task_text)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    host.console.print(f"\n[dim]---[/dim]\n[dim]{format_usage_summary(outcome.usage)}[/dim]")
    if transcript is not None:
        write_transcript(transcript, task.state.conversation.messages)

    match outcome.status:
        case TaskStatus.COMPLETED:
            return
        case TaskStatus.ABORTED:
            raise typer.Exit(code=ABORTED_EXIT_CODE)
        case _:
            raise typer.Exit(code=1)
