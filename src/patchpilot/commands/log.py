from pathlib import Path

import msgspec
from rich.console import Console
from rich.table import Table
from rich.text import Text

from patchpilot.exceptions import InvalidRequestError
from patchpilot.models import ImageBlock, Message, TextBlock, ToolResultBlock, ToolUseBlock, decode_message


def _snippet(message: Message) -> str:
    parts: list[str] = []
    for block in message.content:
        match block:
            case TextBlock(text=text):
                lines = text.strip().splitlines()
                if lines:
                    parts.append(lines[0])
            case ToolUseBlock(name=name):
                parts.append(f"[{name}]")
            case ToolResultBlock(tool_use_id=tool_use_id, status=status):
                parts.append(f"[tool_result {tool_use_id} {status}]")
            case ImageBlock():
                parts.append("[image]")
    return " ".join(parts)


def load_transcript(path: Path) -> list[Message]:
    messages: list[Message] = []
    for number, line in enumerate(path.read_bytes().splitlines(), start=1):
        if not line.strip():
            continue
        try:
            messages.append(decode_message(line))
        except msgspec.DecodeError as e:
            raise InvalidRequestError(f"Invalid transcript line {number} in {path}: {e}") from e
    return messages


def show_transcript(path: Path) -> None:
    messages = load_transcript(path)
    console = Console()
    if not messages:
        console.print("No messages found in transcript.")
        return

    table = Table(title="Task Transcript", show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("ID", justify="right")
    table.add_column("Role")
    table.add_column("Time")
    table.add_column("Message Snippet", overflow="ellipsis", min_width=20)
    for index, message in enumerate(messages):
        role = "[blue]user[/blue]" if message.role == "user" else "[green]assistant[/green]"
        table.add_row(str(index), role, message.timestamp, Text(_snippet(message)))
    console.print(table)
