import logging
from dataclasses import dataclass

import msgspec

from patchpilot.config import SettingsProvider
from patchpilot.diffing.diff_utils import render_unified_diff
from patchpilot.diffing.strategy import get_diff_strategy
from patchpilot.exceptions import FileAccessError, InvalidRequestError, McpServerError
from patchpilot.integrations.interfaces import CommandRunner, FileSystem, HostUI, ToolHub
from patchpilot.models import DiffFailure, DiffSuccess, TextBlock, ToolResponse, ToolUseBlock

logger = logging.getLogger(__name__)

REQUIRED_PARAMS: dict[str, tuple[str, ...]] = {
    "read_file": ("path",),
    "write_to_file": ("path", "content"),
    "apply_diff": ("path", "diff"),
    "execute_command": ("command",),
    "use_mcp_tool": ("server_name", "tool_name"),
    "access_mcp_resource": ("server_name", "uri"),
    "attempt_completion": ("result",),
}


@dataclass(slots=True, frozen=True)
class ToolOutcome:
    response: ToolResponse
    # Counts toward the consecutive-mistake limit
    is_mistake: bool = False
    completion_result: str | None = None


def _text_response(text: str, is_error: bool = False) -> ToolResponse:
    return ToolResponse(content=[TextBlock(text=text)], is_error=is_error)


def _mistake(text: str) -> ToolOutcome:
    return ToolOutcome(response=_text_response(text, is_error=True), is_mistake=True)


def format_diff_failure(path: str, failure: DiffFailure, threshold: float) -> str:
    lines = [
        f"Unable to apply diff to {path}: {failure.reason.value.replace('_', ' ')}.",
        f"Best match confidence: {failure.best_candidate_confidence:.0%} (required: {threshold:.0%})",
    ]
    if failure.best_candidate_range is not None and failure.best_candidate_text is not None:
        start, end = failure.best_candidate_range.start_line + 1, failure.best_candidate_range.end_line
        lines.append(f"Closest match (lines {start}-{end}):\n{failure.best_candidate_text.rstrip()}")
    lines.append("Use read_file to get the current content of the file and retry with an exact SEARCH block.")
    return "\n".join(lines)


class ToolDispatcher:
    """Executes one tool use against the task's collaborators."""

    def __init__(
        self,
        file_system: FileSystem,
        host: HostUI,
        settings: SettingsProvider,
        command_runner: CommandRunner | None = None,
        tool_hub: ToolHub | None = None,
    ):
        self.file_system = file_system
        self.host = host
        self.settings = settings
        self.command_runner = command_runner
        self.tool_hub = tool_hub

    def dispatch(self, tool_use: ToolUseBlock) -> ToolOutcome:
        required = REQUIRED_PARAMS.get(tool_use.name)
        if required is None:
            return _mistake(f"Unknown tool '{tool_use.name}'.")

        for param in required:
            if not tool_use.input.get(param):
                logger.debug("Tool %s is missing parameter %s", tool_use.name, param)
                self.host.say("error", f"Missing value for required parameter '{param}' of {tool_use.name}.")
                return _mistake(
                    f"Missing value for required parameter '{param}'. Please retry with complete response."
                )

        params = tool_use.input
        try:
            match tool_use.name:
                case "read_file":
                    return self._read_file(params["path"])
                case "write_to_file":
                    return self._write_to_file(params["path"], params["content"])
                case "apply_diff":
                    return self._apply_diff(params["path"], params["diff"])
                case "execute_command":
                    return self._execute_command(params["command"])
                case "use_mcp_tool":
                    return self._use_mcp_tool(params["server_name"], params["tool_name"], params.get("arguments"))
                case "access_mcp_resource":
                    return self._access_mcp_resource(params["server_name"], params["uri"])
                case _:
                    result = params["result"]
                    self.host.say("completion_result", result)
                    return ToolOutcome(response=_text_response(result), completion_result=result)
        except (FileAccessError, McpServerError) as e:
            self.host.say("error", e.message)
            return ToolOutcome(response=_text_response(f"Error: {e.message}", is_error=True))

    def _read_file(self, path: str) -> ToolOutcome:
        content = self.file_system.read_file(path)
        self.host.say("tool", f"Read {path}")
        return ToolOutcome(response=_text_response(content))

    def _write_to_file(self, path: str, content: str) -> ToolOutcome:
        try:
            before: str | None = self.file_system.read_file(path)
        except FileAccessError:
            before = None
        if not content.endswith("\n"):
            content += "\n"

        self.file_system.write_file(path, content)
        self.host.say("tool", render_unified_diff(path, before, content) or f"No changes to {path}")
        verb = "created" if before is None else "saved"
        return ToolOutcome(response=_text_response(f"The content was successfully {verb} to {path}."))

    def _apply_diff(self, path: str, diff: str) -> ToolOutcome:
        original = self.file_system.read_file(path)
        # Read once per diff decision
        settings = self.settings.get_settings()
        strategy = get_diff_strategy(settings.diff_strategy_kind, settings.fuzzy_match_threshold)

        try:
            result = strategy.apply_diff(original, diff, path)
        except InvalidRequestError as e:
            self.host.say("diff_error", e.message)
            return _mistake(f"Error applying diff to {path}: {e.message}")

        match result:
            case DiffFailure():
                message = format_diff_failure(path, result, settings.fuzzy_match_threshold)
                self.host.say("diff_error", message)
                return _mistake(message)
            case DiffSuccess():
                if result.new_content != original:
                    self.file_system.write_file(path, result.new_content)
                rendered = render_unified_diff(path, original, result.new_content)
                self.host.say("tool", rendered or f"No changes to {path}")

                message = f"Changes successfully applied to {path}."
                if result.match_confidence < 1.0:
                    message += f" (matched with {result.match_confidence:.0%} confidence)"
                if result.failed_hunks:
                    failed = ", ".join(str(h.hunk_index + 1) for h in result.failed_hunks)
                    message += f"\nHunk(s) {failed} could not be applied; re-read the file and retry them."
                return ToolOutcome(response=_text_response(message))

    def _execute_command(self, command: str) -> ToolOutcome:
        if self.command_runner is None:
            return ToolOutcome(response=_text_response("Command execution is not available.", is_error=True))
        self.host.say("tool", f"$ {command}")
        result = self.command_runner.run(command)
        self.host.say("command_output", result.output)

        status = "timed out" if result.exit_code is None else f"exited with code {result.exit_code}"
        output = result.output.strip() or "(no output)"
        return ToolOutcome(
            response=_text_response(f"Command {status}.\nOutput:\n{output}", is_error=result.exit_code != 0)
        )

    def _use_mcp_tool(self, server_name: str, tool_name: str, arguments: str | None) -> ToolOutcome:
        if self.tool_hub is None:
            raise McpServerError(f"No connection found for server: {server_name}")
        parsed: dict[str, object] = {}
        if arguments:
            try:
                parsed = msgspec.json.decode(arguments, type=dict[str, object])
            except msgspec.DecodeError:
                return _mistake(
                    f"Invalid JSON argument used with {server_name}. "
                    + "Please retry with a properly formatted JSON argument."
                )

        self.host.say("tool", f"Using {tool_name} on {server_name}")
        response = self.tool_hub.call_tool(server_name, tool_name, parsed)
        if not response.content:
            return ToolOutcome(response=_text_response("(No response)", is_error=response.is_error))
        return ToolOutcome(response=response)

    def _access_mcp_resource(self, server_name: str, uri: str) -> ToolOutcome:
        if self.tool_hub is None:
            raise McpServerError(f"No connection found for server: {server_name}")
        self.host.say("tool", f"Reading {uri} from {server_name}")
        content = self.tool_hub.read_resource(server_name, uri)
        return ToolOutcome(response=_text_response(content or "(Empty response)"))
