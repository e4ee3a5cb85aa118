from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeGuard

from patchpilot.llm.stream import ApiStream, translate_exception
from patchpilot.llm.transform import OpenAIMessage, convert_to_openai_messages
from patchpilot.models import ApiMessage, ApiStreamChunk, ModelDescriptor, TextChunk

if TYPE_CHECKING:
    from openai import OpenAI
    from openai.types.chat import ChatCompletion, ChatCompletionChunk

logger = logging.getLogger(__name__)

EMPTY_MAP: Mapping[str, str] = {}


@dataclass(slots=True, frozen=True)
class LLMRequestConfig:
    client: OpenAI
    model_id: str
    extra_kwargs: dict[str, Any]  # pyright: ignore[reportExplicitAny]


class ApiHandler(ABC):
    """A bound model configuration that can open normalized chunk streams."""

    @abstractmethod
    def create_message(self, system_prompt: str, messages: Sequence[ApiMessage]) -> ApiStream:
        """Starts a request. Nothing is sent until the returned stream is first advanced."""
        ...

    @abstractmethod
    def get_model(self) -> ModelDescriptor: ...


class SingleCompletionHandler(ABC):
    """Capability marker for handlers that can answer a single prompt without streaming."""

    @abstractmethod
    def complete_prompt(self, prompt: str) -> str: ...


def supports_single_completion(handler: ApiHandler) -> TypeGuard[SingleCompletionHandler]:
    return isinstance(handler, SingleCompletionHandler)


class OpenAICompatibleHandler(ApiHandler, SingleCompletionHandler):
    """
    Shared driver for backends that speak the chat-completions wire format.

    Subclasses supply the client (`configure_request`) and may override how chunks are
    parsed, whether a model streams, and how the system prompt is placed.
    """

    display_name: str = "OpenAI"
    reports_usage: bool = True
    temperature: float | None = 0.0

    def __init__(self, model_id: str, extra_params: Mapping[str, str] = EMPTY_MAP):
        self.model_id = model_id
        self.extra_params = dict(extra_params)

    @abstractmethod
    def configure_request(self, model_id: str, extra_params: Mapping[str, str] = EMPTY_MAP) -> LLMRequestConfig:
        """Returns the configured client, actual model name, and extra kwargs."""
        ...

    def process_chunk(self, chunk: ChatCompletionChunk) -> list[ApiStreamChunk]:
        from patchpilot.llm.providers.utils import parse_standard_openai_chunk

        return parse_standard_openai_chunk(chunk, include_usage=self.reports_usage)

    def process_completion(self, response: ChatCompletion) -> list[ApiStreamChunk]:
        from patchpilot.llm.providers.utils import parse_usage

        chunks: list[ApiStreamChunk] = []
        if response.choices and response.choices[0].message.content:
            chunks.append(TextChunk(text=response.choices[0].message.content))
        if self.reports_usage and response.usage:
            chunks.append(parse_usage(response.usage))
        return chunks

    def use_streaming(self, model_id: str) -> bool:
        return True

    def request_temperature(self, model_id: str) -> float | None:
        return self.temperature

    def build_messages(self, model_id: str, system_prompt: str, messages: Sequence[ApiMessage]) -> list[OpenAIMessage]:
        return [{"role": "system", "content": system_prompt}, *convert_to_openai_messages(messages)]

    def _request_kwargs(self, config: LLMRequestConfig) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
        kwargs: dict[str, Any] = dict(config.extra_kwargs)  # pyright: ignore[reportExplicitAny]
        temperature = self.request_temperature(config.model_id)
        if temperature is not None:
            kwargs["temperature"] = temperature
        return kwargs

    def create_message(self, system_prompt: str, messages: Sequence[ApiMessage]) -> ApiStream:
        config = self.configure_request(self.model_id, self.extra_params)
        openai_messages = self.build_messages(config.model_id, system_prompt, messages)
        return ApiStream(self.stream_chunks(config, openai_messages))

    def stream_chunks(self, config: LLMRequestConfig, messages: list[OpenAIMessage]) -> Iterator[ApiStreamChunk]:
        kwargs = self._request_kwargs(config)
        logger.debug("Requesting %s (%s, %d messages)", config.model_id, self.display_name, len(messages))

        if not self.use_streaming(config.model_id):
            response = config.client.chat.completions.create(
                model=config.model_id,
                messages=messages,  # pyright: ignore[reportArgumentType]
                **kwargs,  # pyright: ignore[reportAny]
            )
            yield from self.process_completion(response)
            return

        if self.reports_usage:
            kwargs["stream_options"] = {"include_usage": True}
        stream = config.client.chat.completions.create(
            model=config.model_id,
            messages=messages,  # pyright: ignore[reportArgumentType]
            stream=True,
            **kwargs,  # pyright: ignore[reportAny]
        )
        try:
            yield from self.iter_stream(stream)
        finally:
            stream.close()

    def iter_stream(self, stream: Iterator[ChatCompletionChunk]) -> Iterator[ApiStreamChunk]:
        for chunk in stream:
            yield from self.process_chunk(chunk)

    def complete_prompt(self, prompt: str) -> str:
        config = self.configure_request(self.model_id, self.extra_params)
        kwargs = self._request_kwargs(config)
        try:
            response = config.client.chat.completions.create(
                model=config.model_id,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,  # pyright: ignore[reportAny]
            )
        except Exception as e:
            error = translate_exception(e)
            raise type(error)(f"{self.display_name} completion error: {error.message}") from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
