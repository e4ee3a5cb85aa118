"""
Splits an assistant response into prose and XML-style tool calls:

    <apply_diff>
    <path>src/app.py</path>
    <diff>...</diff>
    </apply_diff>

Only known tool names and their known parameters are recognized. Long-content
parameters (`content`, `diff`) run to the LAST matching closing tag inside the call,
so they may contain their own closing tag text.
"""

import uuid
from collections.abc import Callable

import regex as re

from patchpilot.models import TextBlock, ToolUseBlock

TOOL_PARAMS: dict[str, tuple[str, ...]] = {
    "read_file": ("path",),
    "write_to_file": ("path", "content", "line_count"),
    "apply_diff": ("path", "diff"),
    "execute_command": ("command",),
    "use_mcp_tool": ("server_name", "tool_name", "arguments"),
    "access_mcp_resource": ("server_name", "uri"),
    "attempt_completion": ("result", "command"),
}

LONG_CONTENT_PARAMS = frozenset({"content", "diff"})

_TOOL_OPEN_REGEX = re.compile(r"<(?P<name>" + "|".join(TOOL_PARAMS) + r")>")


def new_tool_use_id() -> str:
    return f"toolu_{uuid.uuid4().hex[:24]}"


def _param_value(body: str, param: str) -> str | None:
    open_tag, close_tag = f"<{param}>", f"</{param}>"
    start = body.find(open_tag)
    if start == -1:
        return None
    start += len(open_tag)

    end = body.rfind(close_tag) if param in LONG_CONTENT_PARAMS else body.find(close_tag, start)
    if end < start:
        # Unclosed parameter (truncated response): take the rest of the call
        end = len(body)
    value = body[start:end]

    if param == "content":
        return value.removeprefix("\n").removesuffix("\n")
    return value.strip()


def parse_assistant_message(
    text: str,
    id_factory: Callable[[], str] = new_tool_use_id,
) -> list[TextBlock | ToolUseBlock]:
    blocks: list[TextBlock | ToolUseBlock] = []
    position = 0

    while match := _TOOL_OPEN_REGEX.search(text, position):
        prose = text[position : match.start()].strip()
        if prose:
            blocks.append(TextBlock(text=prose))

        name = match.group("name")
        close_tag = f"</{name}>"
        close_at = text.find(close_tag, match.end())
        if close_at == -1:
            body = text[match.end() :]
            position = len(text)
        else:
            body = text[match.end() : close_at]
            position = close_at + len(close_tag)

        params = {
            param: value for param in TOOL_PARAMS[name] if (value := _param_value(body, param)) is not None
        }
        blocks.append(ToolUseBlock(id=id_factory(), name=name, input=params))

    trailing = text[position:].strip()
    if trailing:
        blocks.append(TextBlock(text=trailing))
    return blocks
