"""Converts history messages into backend wire formats: OpenAI chat-completions and the Bedrock Converse API."""

import base64
from collections.abc import Sequence
from typing import Any

from patchpilot.exceptions import InvalidRequestError
from patchpilot.models import (
    ApiMessage,
    ContentBlock,
    ImageBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    text_of,
)

type OpenAIMessage = dict[str, Any]  # pyright: ignore[reportExplicitAny]
type OpenAIContentPart = dict[str, Any]  # pyright: ignore[reportExplicitAny]
type ConverseMessage = dict[str, Any]  # pyright: ignore[reportExplicitAny]
type ConverseContentBlock = dict[str, Any]  # pyright: ignore[reportExplicitAny]

CONVERSE_IMAGE_FORMATS = frozenset({"png", "jpeg", "gif", "webp"})


def image_data_url(image: ImageBlock) -> str:
    return f"data:{image.mime_type};base64,{base64.b64encode(image.data).decode('ascii')}"


def render_tool_use(block: ToolUseBlock) -> str:
    """Renders a tool use back into the XML call the model wrote."""
    params = "".join(f"<{name}>{value}</{name}>\n" for name, value in block.input.items())
    return f"<{block.name}>\n{params}</{block.name}>"


def _tool_result_header(block: ToolResultBlock) -> str:
    status = " (error)" if block.status == "error" else ""
    return f"[tool_result {block.tool_use_id}{status}]"


def _user_parts(content: Sequence[ContentBlock]) -> list[OpenAIContentPart]:
    parts: list[OpenAIContentPart] = []
    for block in content:
        match block:
            case TextBlock(text=text):
                parts.append({"type": "text", "text": text})
            case ImageBlock():
                parts.append({"type": "image_url", "image_url": {"url": image_data_url(block)}})
            case ToolResultBlock(content=result_content):
                text = text_of(result_content) or "(empty)"
                parts.append({"type": "text", "text": f"{_tool_result_header(block)}\n{text}"})
                for item in result_content:
                    if isinstance(item, ImageBlock):
                        parts.append({"type": "image_url", "image_url": {"url": image_data_url(item)}})
            case ToolUseBlock():
                parts.append({"type": "text", "text": render_tool_use(block)})
    return parts


def _assistant_text(content: Sequence[ContentBlock]) -> str:
    segments: list[str] = []
    for block in content:
        match block:
            case TextBlock(text=text):
                segments.append(text)
            case ToolUseBlock():
                segments.append(render_tool_use(block))
            case ToolResultBlock(content=result_content):
                segments.append(f"{_tool_result_header(block)}\n{text_of(result_content)}")
            case ImageBlock():
                # Assistant turns cannot carry images.
                continue
    return "\n".join(segment for segment in segments if segment)


def convert_to_openai_messages(messages: Sequence[ApiMessage]) -> list[OpenAIMessage]:
    converted: list[OpenAIMessage] = []
    for message in messages:
        if message.role == "assistant":
            converted.append({"role": "assistant", "content": _assistant_text(message.content)})
        else:
            converted.append({"role": "user", "content": _user_parts(message.content)})
    return converted


def converse_image_block(image: ImageBlock) -> ConverseContentBlock:
    image_format = image.mime_type.split("/")[-1]
    if image_format not in CONVERSE_IMAGE_FORMATS:
        raise InvalidRequestError(f"Unsupported image format: {image_format}")
    return {"image": {"format": image_format, "source": {"bytes": image.data}}}


def _converse_user_content(content: Sequence[ContentBlock]) -> list[ConverseContentBlock]:
    blocks: list[ConverseContentBlock] = []
    for block in content:
        match block:
            case TextBlock(text=text):
                if text:
                    blocks.append({"text": text})
            case ImageBlock():
                blocks.append(converse_image_block(block))
            case ToolResultBlock(content=result_content):
                text = text_of(result_content) or "(empty)"
                blocks.append({"text": f"{_tool_result_header(block)}\n{text}"})
                blocks.extend(converse_image_block(item) for item in result_content if isinstance(item, ImageBlock))
            case ToolUseBlock():
                blocks.append({"text": render_tool_use(block)})
    return blocks


def convert_to_converse_messages(messages: Sequence[ApiMessage]) -> list[ConverseMessage]:
    """
    Tool uses stay in their XML text form: Converse only accepts `toolUse` blocks when the
    request declares a tool configuration, and tools here are described in the system prompt.
    Blank text blocks are rejected by the API, so they are dropped.
    """
    converted: list[ConverseMessage] = []
    for message in messages:
        if message.role == "assistant":
            content = [{"text": text}] if (text := _assistant_text(message.content)) else []
        else:
            content = _converse_user_content(message.content)
        converted.append({"role": message.role, "content": content or [{"text": "(empty)"}]})
    return converted
