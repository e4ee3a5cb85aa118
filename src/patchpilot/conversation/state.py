import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from patchpilot.conversation.mentions import TAGGED_REGION_REGEX, expand_tagged_mentions
from patchpilot.exceptions import InvalidRequestError
from patchpilot.integrations.interfaces import FileSystem
from patchpilot.models import (
    ApiMessage,
    ContentBlock,
    ImageBlock,
    Message,
    ModelDescriptor,
    Role,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

IMAGE_PLACEHOLDER = "[Referenced image in conversation]"


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


def make_message(role: Role, content: Sequence[ContentBlock]) -> Message:
    return Message(role=role, content=list(content), timestamp=utc_timestamp())


def context_limit(model: ModelDescriptor) -> int:
    """Token count above which the history is truncated before the next request."""
    window = model.context_window
    return max(window - 40_000, int(window * 0.8))


def _placeholder_images(blocks: Sequence[ContentBlock]) -> list[ContentBlock]:
    sanitized: list[ContentBlock] = []
    for block in blocks:
        match block:
            case ImageBlock():
                sanitized.append(TextBlock(text=IMAGE_PLACEHOLDER))
            case ToolResultBlock(content=content) if any(isinstance(item, ImageBlock) for item in content):
                sanitized.append(
                    ToolResultBlock(
                        tool_use_id=block.tool_use_id,
                        content=[
                            TextBlock(text=IMAGE_PLACEHOLDER) if isinstance(item, ImageBlock) else item
                            for item in content
                        ],
                        status=block.status,
                    )
                )
            case _:
                sanitized.append(block)
    return sanitized


class ConversationState:
    """
    Ordered message history for one task.

    Owned by the task loop; appended messages are never edited. Truncation drops whole
    user/assistant pairs so a tool result never outlives its tool use.
    """

    def __init__(self, model: ModelDescriptor, file_system: FileSystem):
        self.model = model
        self.file_system = file_system
        self._messages: list[Message] = []
        self._tool_use_ids: set[str] = set()

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append_message(self, message: Message) -> None:
        for block in message.content:
            if isinstance(block, ToolResultBlock) and block.tool_use_id not in self._tool_use_ids:
                raise InvalidRequestError(f"Tool result references unknown tool use '{block.tool_use_id}'.")
            if isinstance(block, ToolUseBlock):
                self._tool_use_ids.add(block.id)
        self._messages.append(message)

    def sanitize_for_transmission(self) -> list[ApiMessage]:
        """Role and content only; images become a placeholder when the model cannot take them."""
        keep_images = self.model.supports_images
        return [
            ApiMessage(
                role=message.role,
                content=list(message.content) if keep_images else _placeholder_images(message.content),
            )
            for message in self._messages
        ]

    def inject_context(self, raw_content: Sequence[ContentBlock], environment_details: str) -> list[ContentBlock]:
        """
        Expands mentions inside `<task>`/`<feedback>` regions of text blocks and tool
        results, then appends the environment details as a final text block.
        """
        processed: list[ContentBlock] = [self._expand_block(block) for block in raw_content]
        processed.append(TextBlock(text=environment_details))
        return processed

    def _expand_text(self, text: str) -> str:
        if not TAGGED_REGION_REGEX.search(text):
            return text
        return expand_tagged_mentions(text, self.file_system)

    def _expand_block(self, block: ContentBlock) -> ContentBlock:
        match block:
            case TextBlock(text=text):
                return TextBlock(text=self._expand_text(text))
            case ToolResultBlock(content=content):
                return ToolResultBlock(
                    tool_use_id=block.tool_use_id,
                    content=[
                        TextBlock(text=self._expand_text(item.text)) if isinstance(item, TextBlock) else item
                        for item in content
                    ],
                    status=block.status,
                )
            case _:
                return block

    def needs_truncation(self, last_request_tokens: int) -> bool:
        return last_request_tokens >= context_limit(self.model)

    def truncate_half(self) -> int:
        """
        Keeps the first message (the task) and drops the older half of the rest, rounded
        down to whole pairs. Returns the number of messages removed.
        """
        if len(self._messages) < 2:
            return 0
        to_remove = (len(self._messages) - 1) // 4 * 2
        if to_remove == 0:
            return 0
        self._messages = [self._messages[0], *self._messages[1 + to_remove :]]
        logger.debug("Truncated %d messages from the conversation", to_remove)
        return to_remove
