from collections.abc import Mapping
from typing import TYPE_CHECKING, override

from patchpilot.llm.model_info import DEEPSEEK_DEFAULT_MODEL_ID, DEEPSEEK_MODELS, lookup_model
from patchpilot.llm.providers.base import EMPTY_MAP
from patchpilot.llm.providers.openai import OpenAIHandler
from patchpilot.models import ApiStreamChunk, ModelDescriptor, UsageChunk

if TYPE_CHECKING:
    from openai.types.chat import ChatCompletionChunk


class DeepSeekHandler(OpenAIHandler):
    display_name: str = "DeepSeek"
    api_key_env: str = "DEEPSEEK_API_KEY"
    base_url_env: str = "DEEPSEEK_BASE_URL"
    default_base_url: str | None = "https://api.deepseek.com/v1"

    def __init__(self, model_id: str, extra_params: Mapping[str, str] = EMPTY_MAP):
        super().__init__(model_id or DEEPSEEK_DEFAULT_MODEL_ID, extra_params)
        self.streaming_enabled = True
        self.include_max_tokens = True

    @override
    def process_chunk(self, chunk: "ChatCompletionChunk") -> list[ApiStreamChunk]:
        chunks = super().process_chunk(chunk)
        if not chunk.usage:
            return chunks

        # DeepSeek reports its context cache hits outside prompt_tokens_details
        hit_tokens = getattr(chunk.usage, "prompt_cache_hit_tokens", None)
        miss_tokens = getattr(chunk.usage, "prompt_cache_miss_tokens", None)
        if not isinstance(hit_tokens, int):
            return chunks

        return [
            UsageChunk(
                input_tokens=c.input_tokens,
                output_tokens=c.output_tokens,
                cache_write_tokens=miss_tokens if isinstance(miss_tokens, int) else None,
                cache_read_tokens=hit_tokens,
                total_cost=c.total_cost,
            )
            if isinstance(c, UsageChunk)
            else c
            for c in chunks
        ]

    @override
    def get_model(self) -> ModelDescriptor:
        return lookup_model(DEEPSEEK_MODELS, self.model_id, DEEPSEEK_DEFAULT_MODEL_ID)
