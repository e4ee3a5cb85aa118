import base64
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from patchpilot.exceptions import McpServerError
from patchpilot.models import ImageBlock, TextBlock, ToolResponse

logger = logging.getLogger(__name__)

type JsonObject = dict[str, Any]  # pyright: ignore[reportExplicitAny]


class McpClient(Protocol):
    """A connected MCP session. Transports (stdio, sse) live outside this package."""

    def request(self, method: str, params: JsonObject) -> JsonObject: ...


@dataclass(slots=True)
class McpServer:
    name: str
    client: McpClient
    disabled: bool = False
    always_allow: set[str] = field(default_factory=set)


def _to_tool_response(result: JsonObject) -> ToolResponse:
    blocks: list[TextBlock | ImageBlock] = []
    for item in result.get("content", []):  # pyright: ignore[reportAny]
        match item:
            case {"type": "text", "text": str(text)}:
                blocks.append(TextBlock(text=text))
            case {"type": "image", "data": str(data), "mimeType": str(mime_type)}:
                blocks.append(ImageBlock(mime_type=mime_type, data=base64.b64decode(data)))
            case {"type": "resource", "resource": {"text": str(text)}}:
                blocks.append(TextBlock(text=text))
            case _:
                logger.debug("Skipping unsupported MCP content item: %r", item)
    return ToolResponse(content=blocks, is_error=bool(result.get("isError", False)))


class McpHub:
    """Routes tool calls and resource reads to registered MCP servers."""

    def __init__(self) -> None:
        self._servers: dict[str, McpServer] = {}

    def register(self, server: McpServer) -> None:
        self._servers[server.name] = server

    def get_servers(self) -> list[McpServer]:
        """Enabled servers only."""
        return [server for server in self._servers.values() if not server.disabled]

    def _get_server(self, server_name: str) -> McpServer:
        server = self._servers.get(server_name)
        if server is None:
            raise McpServerError(f"No connection found for server: {server_name}")
        if server.disabled:
            raise McpServerError(f'Server "{server_name}" is disabled and cannot be used')
        return server

    def toggle_server_disabled(self, server_name: str, disabled: bool) -> None:
        server = self._servers.get(server_name)
        if server is None:
            raise McpServerError(f"No connection found for server: {server_name}")
        server.disabled = disabled

    def toggle_tool_always_allow(self, server_name: str, tool_name: str, should_allow: bool) -> None:
        server = self._get_server(server_name)
        if should_allow:
            server.always_allow.add(tool_name)
        else:
            server.always_allow.discard(tool_name)

    def call_tool(self, server_name: str, tool_name: str, arguments: Mapping[str, object]) -> ToolResponse:
        server = self._get_server(server_name)
        logger.debug("Calling MCP tool %s on %s", tool_name, server_name)
        result = server.client.request("tools/call", {"name": tool_name, "arguments": dict(arguments)})
        return _to_tool_response(result)

    def read_resource(self, server_name: str, uri: str) -> str:
        server = self._get_server(server_name)
        result = server.client.request("resources/read", {"uri": uri})
        contents: list[JsonObject] = result.get("contents", [])  # pyright: ignore[reportAny]
        return "\n\n".join(str(item["text"]) for item in contents if "text" in item)  # pyright: ignore[reportAny]
