import os
from typing import TYPE_CHECKING

from patchpilot.exceptions import ConfigurationError
from patchpilot.models import ApiStreamChunk, TextChunk, UsageChunk

if TYPE_CHECKING:
    from openai.types.chat import ChatCompletionChunk
    from openai.types.completion_usage import CompletionUsage


def get_env_var_or_fail(var_name: str, provider_display_name: str) -> str:
    val = os.getenv(var_name)
    if not val:
        raise ConfigurationError(f"{provider_display_name} requires the environment variable '{var_name}' to be set.")
    return val


def parse_usage(usage: "CompletionUsage") -> UsageChunk:
    # Pydantic models from OpenAI SDK, but safeguard access
    prompt_details = getattr(usage, "prompt_tokens_details", None)

    cache_read_tokens: int | None = None
    if prompt_details:
        cache_read_tokens = getattr(prompt_details, "cached_tokens", None)  # pyright: ignore[reportAny]

    # OpenRouter custom field 'cost' injected into the usage object
    total_cost: float | None = None
    cost_val = getattr(usage, "cost", None)
    if isinstance(cost_val, float | int):
        total_cost = float(cost_val)

    return UsageChunk(
        input_tokens=usage.prompt_tokens or 0,
        output_tokens=usage.completion_tokens or 0,
        cache_read_tokens=cache_read_tokens,
        total_cost=total_cost,
    )


def parse_standard_openai_chunk(chunk: "ChatCompletionChunk", include_usage: bool = True) -> list[ApiStreamChunk]:
    chunks: list[ApiStreamChunk] = []

    if chunk.choices:
        content = chunk.choices[0].delta.content
        if content:
            chunks.append(TextChunk(text=content))

    # Usage arrives on the last chunk of OpenAI/OpenRouter streams
    if include_usage and chunk.usage:
        chunks.append(parse_usage(chunk.usage))

    return chunks
