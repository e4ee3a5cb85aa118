"""Locally hosted OpenAI-compatible servers. Neither reports token usage."""

import os
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, override

from patchpilot.exceptions import NetworkError
from patchpilot.llm.model_info import SANE_DEFAULTS, with_model_id
from patchpilot.llm.providers.base import EMPTY_MAP, LLMRequestConfig, OpenAICompatibleHandler
from patchpilot.llm.transform import OpenAIMessage
from patchpilot.models import ApiStreamChunk, ModelDescriptor

if TYPE_CHECKING:
    from openai import OpenAI

LM_STUDIO_HINT = (
    "Please check the LM Studio developer logs to debug what went wrong. "
    + "You may need to load the model with a larger context length to work with these prompts."
)


def _local_client(base_url: str, api_key: str) -> "OpenAI":
    from openai import OpenAI

    return OpenAI(base_url=base_url.rstrip("/") + "/v1", api_key=api_key)


class OllamaHandler(OpenAICompatibleHandler):
    display_name: str = "Ollama"
    reports_usage: bool = False

    @override
    def configure_request(self, model_id: str, extra_params: Mapping[str, str] = EMPTY_MAP) -> LLMRequestConfig:
        base_url = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
        return LLMRequestConfig(client=_local_client(base_url, "ollama"), model_id=model_id, extra_kwargs={})

    @override
    def get_model(self) -> ModelDescriptor:
        return with_model_id(SANE_DEFAULTS, self.model_id)


class LmStudioHandler(OpenAICompatibleHandler):
    display_name: str = "LM Studio"
    reports_usage: bool = False

    @override
    def configure_request(self, model_id: str, extra_params: Mapping[str, str] = EMPTY_MAP) -> LLMRequestConfig:
        base_url = os.getenv("LMSTUDIO_BASE_URL", "http://localhost:1234")
        return LLMRequestConfig(client=_local_client(base_url, "noop"), model_id=model_id, extra_kwargs={})

    @override
    def stream_chunks(self, config: LLMRequestConfig, messages: list[OpenAIMessage]) -> Iterator[ApiStreamChunk]:
        from openai import APIError

        # LM Studio does not return an error code or body
        try:
            yield from super().stream_chunks(config, messages)
        except APIError as e:
            raise NetworkError(LM_STUDIO_HINT) from e

    @override
    def complete_prompt(self, prompt: str) -> str:
        from openai import APIError

        try:
            return super().complete_prompt(prompt)
        except NetworkError as e:
            if isinstance(e.__cause__, APIError):
                raise NetworkError(LM_STUDIO_HINT) from e
            raise

    @override
    def get_model(self) -> ModelDescriptor:
        return with_model_id(SANE_DEFAULTS, self.model_id)
