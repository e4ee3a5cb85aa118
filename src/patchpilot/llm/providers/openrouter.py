import logging
import os
import time
from collections.abc import Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, TypedDict, override

from pydantic import TypeAdapter, ValidationError

from patchpilot.exceptions import NetworkError
from patchpilot.llm.model_info import openrouter_model_info
from patchpilot.llm.providers.base import EMPTY_MAP, LLMRequestConfig, OpenAICompatibleHandler
from patchpilot.llm.providers.utils import get_env_var_or_fail
from patchpilot.llm.stream import translate_exception
from patchpilot.llm.transform import OpenAIMessage
from patchpilot.models import ApiMessage, ApiStreamChunk, ModelDescriptor, UsageChunk

if TYPE_CHECKING:
    from openai.types.chat import ChatCompletionChunk

logger = logging.getLogger(__name__)

OPENROUTER_DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


# --- Private Models for External API Parsing ---
class _GenerationData(TypedDict, total=False):
    native_tokens_prompt: int | None
    native_tokens_completion: int | None
    total_cost: float | None


class _GenerationResponse(TypedDict):
    data: _GenerationData


def in_band_error(payload: object) -> NetworkError | None:
    """OpenRouter reports some failures as an `error` object inside a 200 response."""
    error = getattr(payload, "error", None)
    if error is None and isinstance(payload, Mapping):
        error = payload.get("error")  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]
    if error is None:
        return None

    if isinstance(error, Mapping):
        code = error.get("code")  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]
        message = error.get("message")  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]
    else:
        code = getattr(error, "code", None)
        message = getattr(error, "message", None)

    return NetworkError(
        f"OpenRouter API Error {code}: {message}",
        status_code=code if isinstance(code, int) else None,
    )


def _add_cache_control(messages: list[OpenAIMessage]) -> None:
    """Marks the system prompt and the last two user messages as cache breakpoints, IN-PLACE."""
    system = messages[0]
    system["content"] = [{"type": "text", "text": system["content"], "cache_control": {"type": "ephemeral"}}]

    for message in [m for m in messages if m["role"] == "user"][-2:]:
        if isinstance(message["content"], str):
            message["content"] = [{"type": "text", "text": message["content"]}]
        text_parts = [part for part in message["content"] if part["type"] == "text"]
        if text_parts:
            last_text_part = text_parts[-1]
        else:
            last_text_part = {"type": "text", "text": "..."}
            message["content"].append(last_text_part)
        last_text_part["cache_control"] = {"type": "ephemeral"}


class OpenRouterHandler(OpenAICompatibleHandler):
    """
    OpenRouter streams usage (with cost) on its final chunk when asked to. If a stream ends
    without it, the generation-stats endpoint is queried once; failures there are logged
    and the stream simply carries no usage.
    """

    display_name: str = "OpenRouter"
    generation_stats_delay: float = 0.5
    generation_stats_timeout: float = 5.0

    @override
    def configure_request(self, model_id: str, extra_params: Mapping[str, str] = EMPTY_MAP) -> LLMRequestConfig:
        api_key = get_env_var_or_fail("OPENROUTER_API_KEY", self.display_name)
        base_url = os.getenv("OPENROUTER_API_BASE", OPENROUTER_DEFAULT_BASE_URL)

        from openai import OpenAI

        client = OpenAI(api_key=api_key, base_url=base_url)

        extra_body: dict[str, object] = {"usage": {"include": True}}
        if "reasoning_effort" in extra_params:
            extra_body["reasoning"] = {"effort": extra_params["reasoning_effort"]}
        if extra_params.get("middle_out", "").lower() == "true":
            extra_body["transforms"] = ["middle-out"]

        kwargs: dict[str, object] = {"extra_body": extra_body}
        model = self.get_model()
        if model.supports_prompt_cache and model.max_tokens:
            kwargs["max_tokens"] = model.max_tokens

        return LLMRequestConfig(client=client, model_id=model_id, extra_kwargs=kwargs)

    @override
    def build_messages(self, model_id: str, system_prompt: str, messages: Sequence[ApiMessage]) -> list[OpenAIMessage]:
        openai_messages = super().build_messages(model_id, system_prompt, messages)
        if self.get_model().supports_prompt_cache:
            _add_cache_control(openai_messages)
        return openai_messages

    @override
    def iter_stream(self, stream: Iterator["ChatCompletionChunk"]) -> Iterator[ApiStreamChunk]:
        generation_id: str | None = None
        saw_usage = False

        for chunk in stream:
            if error := in_band_error(chunk):
                logger.error("OpenRouter API error: %s", error.message)
                raise error
            if not generation_id and chunk.id:
                generation_id = chunk.id

            for normalized in self.process_chunk(chunk):
                saw_usage = saw_usage or isinstance(normalized, UsageChunk)
                yield normalized

        if not saw_usage and generation_id:
            if usage := self.fetch_generation_usage(generation_id):
                yield usage

    def fetch_generation_usage(self, generation_id: str) -> UsageChunk | None:
        import httpx

        api_key = get_env_var_or_fail("OPENROUTER_API_KEY", self.display_name)
        base_url = os.getenv("OPENROUTER_API_BASE", OPENROUTER_DEFAULT_BASE_URL)

        # The generation endpoint is not ready immediately after the stream ends
        time.sleep(self.generation_stats_delay)
        try:
            response = httpx.get(
                f"{base_url}/generation",
                params={"id": generation_id},
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=self.generation_stats_timeout,
            )
            _ = response.raise_for_status()
            generation = TypeAdapter(_GenerationResponse).validate_json(response.content)["data"]
        except (httpx.HTTPError, ValidationError, OSError) as e:
            logger.warning("Could not fetch OpenRouter generation details: %s", e)
            return None

        return UsageChunk(
            input_tokens=generation.get("native_tokens_prompt") or 0,
            output_tokens=generation.get("native_tokens_completion") or 0,
            total_cost=generation.get("total_cost") or 0.0,
        )

    @override
    def complete_prompt(self, prompt: str) -> str:
        config = self.configure_request(self.model_id, self.extra_params)
        try:
            response = config.client.chat.completions.create(
                model=config.model_id,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                stream=False,
            )
        except Exception as e:
            translated = translate_exception(e)
            raise type(translated)(f"OpenRouter completion error: {translated.message}") from e

        if error := in_band_error(response):
            raise NetworkError(f"OpenRouter completion error: {error.message}", error.status_code)
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    @override
    def get_model(self) -> ModelDescriptor:
        return openrouter_model_info(self.model_id)
