"""Collaborators the task loop talks to. Hosts provide the implementations."""

from collections.abc import Mapping, Sequence
from typing import Literal, Protocol

from patchpilot.models import CommandResult, ImageBlock, ToolResponse

type SayType = Literal[
    "text",
    "api_req_started",
    "api_req_finished",
    "api_req_failed",
    "api_req_retry_delayed",
    "tool",
    "diff_error",
    "command_output",
    "completion_result",
    "error",
]


class FileSystem(Protocol):
    def read_file(self, path: str) -> str: ...

    def write_file(self, path: str, content: str) -> None: ...

    def list_directory(self, path: str) -> list[str]:
        """Entry names of one directory, sorted; subdirectories end with '/'."""
        ...

    def list_files(self, limit: int) -> tuple[list[str], bool]:
        """Workspace-relative paths (directories end with '/') and whether the limit was hit."""
        ...


class CommandRunner(Protocol):
    def run(self, command: str) -> CommandResult: ...


class ToolHub(Protocol):
    def call_tool(self, server_name: str, tool_name: str, arguments: Mapping[str, object]) -> ToolResponse: ...

    def read_resource(self, server_name: str, uri: str) -> str: ...


class HostUI(Protocol):
    def say(
        self,
        type: SayType,
        text: str | None = None,
        images: Sequence[ImageBlock] | None = None,
        partial: bool = False,
    ) -> None: ...
