"""
The request/response/tool-use cycle for one task.

    Idle -> Requesting -> Streaming -> ToolExecuting -> Requesting ... -> Completed | Aborted | Failed

The loop is the only place that retries. Cancellation is cooperative: `abort()` sets an
event that is checked between stream chunks, on every retry countdown tick, and before
and after each tool dispatch. The per-second countdown wait returns early on abort.
"""

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from patchpilot.agent.parser import new_tool_use_id, parse_assistant_message
from patchpilot.agent.prompts import build_system_prompt
from patchpilot.agent.tools import ToolDispatcher
from patchpilot.config import SettingsProvider
from patchpilot.conversation.environment import Clock, build_environment_details, system_clock
from patchpilot.conversation.state import ConversationState, make_message
from patchpilot.diffing.strategy import get_diff_strategy
from patchpilot.exceptions import ApiError, PatchPilotError, TaskAbortedError
from patchpilot.integrations.interfaces import CommandRunner, FileSystem, HostUI, ToolHub
from patchpilot.llm.model_info import cost_of
from patchpilot.llm.providers.base import ApiHandler
from patchpilot.llm.stream import ApiStream
from patchpilot.models import (
    ContentBlock,
    ImageBlock,
    TaskOutcome,
    TaskStatus,
    TextBlock,
    TextChunk,
    ToolResultBlock,
    ToolUseBlock,
    UsageChunk,
    UsageTotals,
)

logger = logging.getLogger(__name__)

INTERRUPTED_MARKER = "[Response interrupted by user]"

NO_TOOLS_USED = (
    "[ERROR] You did not use a tool in your previous response! Please retry with a tool use.\n\n"
    + "If you have completed the user's task, use the attempt_completion tool. "
    + "If you need more information, read the relevant files first."
)

EMPTY_RESPONSE = "Failure: I did not provide a response."

type Waiter = Callable[[float], object]


def tool_already_used(tool_name: str) -> str:
    return (
        f"Tool [{tool_name}] was not executed because a tool has already been used in this message. "
        + "Only one tool may be used per message. "
        + "You must assess the first tool's result before proceeding to use the next tool."
    )


@dataclass(slots=True)
class TaskState:
    conversation: ConversationState
    abort_event: threading.Event = field(default_factory=threading.Event)
    retry_count: int = 0
    consecutive_mistake_count: int = 0
    last_request_tokens: int = 0
    usage: UsageTotals = field(default_factory=UsageTotals)
    status: TaskStatus = TaskStatus.IDLE

    @property
    def abort_requested(self) -> bool:
        return self.abort_event.is_set()


class Task:
    def __init__(
        self,
        api: ApiHandler,
        host: HostUI,
        file_system: FileSystem,
        settings: SettingsProvider,
        *,
        cwd: str,
        command_runner: CommandRunner | None = None,
        tool_hub: ToolHub | None = None,
        mcp_server_names: list[str] | None = None,
        clock: Clock = system_clock,
        wait: Waiter | None = None,
        id_factory: Callable[[], str] = new_tool_use_id,
    ):
        self.api = api
        self.host = host
        self.file_system = file_system
        self.settings = settings
        self.cwd = cwd
        self.mcp_server_names = mcp_server_names
        self.clock = clock
        self.id_factory = id_factory
        self.model = api.get_model()
        self.state = TaskState(conversation=ConversationState(self.model, file_system))
        self.dispatcher = ToolDispatcher(file_system, host, settings, command_runner, tool_hub)
        self._wait: Waiter = wait if wait is not None else self.state.abort_event.wait

    @property
    def status(self) -> TaskStatus:
        return self.state.status

    def abort(self) -> None:
        """Requests cancellation. Safe to call from another thread or a signal handler."""
        self.state.abort_event.set()

    def _check_abort(self) -> None:
        if self.state.abort_requested:
            raise TaskAbortedError("Task was aborted by the user.")

    def run(self, task_text: str, images: Sequence[ImageBlock] = ()) -> TaskOutcome:
        self.host.say("text", task_text, images=list(images) or None)
        user_content: list[ContentBlock] = [TextBlock(text=f"<task>\n{task_text}\n</task>"), *images]

        try:
            result = self._run_loop(user_content)
        except TaskAbortedError:
            logger.debug("Task aborted")
            return self._finish(TaskStatus.ABORTED)
        except PatchPilotError as e:
            self.host.say("error", e.message)
            return self._finish(TaskStatus.FAILED, error=e.message)

        return self._finish(TaskStatus.COMPLETED, result=result)

    def _finish(self, status: TaskStatus, result: str | None = None, error: str | None = None) -> TaskOutcome:
        self.state.status = status
        return TaskOutcome(status=status, result=result, error=error, usage=self.state.usage)

    def _run_loop(self, user_content: list[ContentBlock]) -> str:
        pending = user_content
        while True:
            self._check_abort()
            settings = self.settings.get_settings()
            if self.state.consecutive_mistake_count >= settings.max_consecutive_mistakes:
                raise PatchPilotError(
                    f"The model made {self.state.consecutive_mistake_count} consecutive mistakes. "
                    + "Try breaking the task down into smaller steps or using a more capable model."
                )

            environment = build_environment_details(self.file_system, self.cwd, self.clock)
            content = self.state.conversation.inject_context(pending, environment)
            self.state.conversation.append_message(make_message("user", content))

            response_text = self._request_assistant_text()
            blocks = parse_assistant_message(response_text, self.id_factory)
            if not blocks:
                blocks = [TextBlock(text=EMPTY_RESPONSE)]
            self.state.conversation.append_message(make_message("assistant", blocks))

            for block in blocks:
                if isinstance(block, TextBlock):
                    self.host.say("text", block.text)

            tool_uses = [block for block in blocks if isinstance(block, ToolUseBlock)]
            if not tool_uses:
                self.state.consecutive_mistake_count += 1
                pending = [TextBlock(text=NO_TOOLS_USED)]
                continue

            pending, completion = self._execute_tools(tool_uses)
            if completion is not None:
                return completion

    def _execute_tools(self, tool_uses: list[ToolUseBlock]) -> tuple[list[ContentBlock], str | None]:
        self._check_abort()
        self.state.status = TaskStatus.TOOL_EXECUTING

        first = tool_uses[0]
        outcome = self.dispatcher.dispatch(first)
        if outcome.is_mistake:
            self.state.consecutive_mistake_count += 1
        else:
            self.state.consecutive_mistake_count = 0

        results: list[ContentBlock] = [
            ToolResultBlock(
                tool_use_id=first.id,
                content=list(outcome.response.content),
                status="error" if outcome.response.is_error else "success",
            )
        ]
        for extra in tool_uses[1:]:
            results.append(
                ToolResultBlock(
                    tool_use_id=extra.id,
                    content=[TextBlock(text=tool_already_used(extra.name))],
                    status="error",
                )
            )

        if outcome.completion_result is not None:
            # The completion stands even if an abort arrived during dispatch
            return results, outcome.completion_result

        self._check_abort()
        return results, None

    def _system_prompt(self) -> str:
        settings = self.settings.get_settings()
        strategy = get_diff_strategy(settings.diff_strategy_kind, settings.fuzzy_match_threshold)
        return build_system_prompt(self.cwd, strategy, self.mcp_server_names)

    def _maybe_truncate(self) -> None:
        conversation = self.state.conversation
        if self.state.last_request_tokens and conversation.needs_truncation(self.state.last_request_tokens):
            removed = conversation.truncate_half()
            logger.debug(
                "Context window nearly full (%d tokens), removed %d messages", self.state.last_request_tokens, removed
            )

    def _request_assistant_text(self) -> str:
        self.state.retry_count = 0
        while True:
            self._check_abort()
            self._maybe_truncate()
            self.state.status = TaskStatus.REQUESTING
            self.host.say("api_req_started", self.model.id)

            stream = self.api.create_message(self._system_prompt(), self.state.conversation.sanitize_for_transmission())
            try:
                return self._consume(stream)
            except ApiError as error:
                settings = self.settings.get_settings()
                if not error.retryable or not settings.always_approve_resubmit:
                    raise
                if self.state.retry_count >= settings.max_auto_retries:
                    raise PatchPilotError(
                        f"{error.message} (gave up after {self.state.retry_count} automatic retries)"
                    ) from error

                self.state.retry_count += 1
                logger.debug("Retry %d after: %s", self.state.retry_count, error.message)
                self._countdown(error, settings.request_delay_seconds)

    def _countdown(self, error: ApiError, delay_seconds: int) -> None:
        self.host.say("api_req_failed", error.message)
        for remaining in range(delay_seconds, 0, -1):
            self.host.say("api_req_retry_delayed", f"Retrying in {remaining} seconds...", partial=True)
            _ = self._wait(1.0)
            self._check_abort()
        self.host.say("api_req_retry_delayed", "Retrying now", partial=False)

    def _consume(self, stream: ApiStream) -> str:
        text = ""
        request_tokens = 0
        with stream:
            for chunk in stream:
                self.state.status = TaskStatus.STREAMING
                if self.state.abort_requested:
                    self._commit_interrupted(text)
                    raise TaskAbortedError("Task was aborted by the user.")
                match chunk:
                    case TextChunk(text=delta):
                        text += delta
                    case UsageChunk():
                        request_tokens += self._record_usage(chunk)

        if self.state.abort_requested:
            self._commit_interrupted(text)
            raise TaskAbortedError("Task was aborted by the user.")

        if request_tokens:
            self.state.last_request_tokens = request_tokens
        self.host.say(
            "api_req_finished",
            f"Tokens: {self.state.usage.input_tokens} in, {self.state.usage.output_tokens} out, "
            + f"cost ${self.state.usage.total_cost:.4f}",
        )
        return text

    def _record_usage(self, chunk: UsageChunk) -> int:
        usage = self.state.usage
        usage.input_tokens += chunk.input_tokens
        usage.output_tokens += chunk.output_tokens
        usage.cache_write_tokens += chunk.cache_write_tokens or 0
        usage.cache_read_tokens += chunk.cache_read_tokens or 0
        usage.total_cost += cost_of(self.model, chunk)
        return (
            chunk.input_tokens + chunk.output_tokens + (chunk.cache_write_tokens or 0) + (chunk.cache_read_tokens or 0)
        )

    def _commit_interrupted(self, partial_text: str) -> None:
        """Keeps what was streamed, clearly marked as cut off, so the task can be resumed."""
        if not partial_text:
            return
        self.state.conversation.append_message(
            make_message("assistant", [TextBlock(text=f"{partial_text}\n\n{INTERRUPTED_MARKER}")])
        )
