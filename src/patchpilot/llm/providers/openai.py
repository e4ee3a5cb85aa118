import os
from collections.abc import Mapping, Sequence
from typing import override
from urllib.parse import urlparse

from patchpilot.llm.model_info import SANE_DEFAULTS, with_model_id
from patchpilot.llm.providers.base import EMPTY_MAP, LLMRequestConfig, OpenAICompatibleHandler
from patchpilot.llm.providers.utils import get_env_var_or_fail
from patchpilot.llm.transform import OpenAIMessage, convert_to_openai_messages
from patchpilot.models import ApiMessage, ModelDescriptor

AZURE_DEFAULT_API_VERSION = "2024-08-01-preview"


def is_azure_host(base_url: str | None) -> bool:
    if not base_url:
        return False
    host = urlparse(base_url).hostname or ""
    return host == "azure.com" or host.endswith(".azure.com")


def _is_enabled(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class OpenAIHandler(OpenAICompatibleHandler):
    """
    Any server exposing the chat-completions API (`OPENAI_BASE_URL`), Azure included.

    Extra params: `+streaming=false` sends a single non-streaming request,
    `+include_max_tokens=true` sends the model's max_tokens, `+api_version=...` for Azure.
    """

    display_name: str = "OpenAI"
    api_key_env: str = "OPENAI_API_KEY"
    base_url_env: str = "OPENAI_BASE_URL"
    default_base_url: str | None = None

    def __init__(self, model_id: str, extra_params: Mapping[str, str] = EMPTY_MAP):
        super().__init__(model_id, extra_params)
        self.streaming_enabled = _is_enabled(self.extra_params.get("streaming"), True)
        self.include_max_tokens = _is_enabled(self.extra_params.get("include_max_tokens"), False)

    @override
    def configure_request(self, model_id: str, extra_params: Mapping[str, str] = EMPTY_MAP) -> LLMRequestConfig:
        api_key = get_env_var_or_fail(self.api_key_env, self.display_name)
        base_url = os.getenv(self.base_url_env) or self.default_base_url

        if is_azure_host(base_url):
            from openai import AzureOpenAI

            client = AzureOpenAI(
                base_url=base_url,
                api_key=api_key,
                api_version=extra_params.get("api_version", AZURE_DEFAULT_API_VERSION),
            )
        else:
            from openai import OpenAI

            client = OpenAI(api_key=api_key, base_url=base_url)

        kwargs: dict[str, object] = {}
        max_tokens = self.get_model().max_tokens
        if self.include_max_tokens and max_tokens:
            kwargs["max_tokens"] = max_tokens

        return LLMRequestConfig(client=client, model_id=model_id, extra_kwargs=kwargs)

    def is_deepseek_reasoner(self, model_id: str) -> bool:
        return "deepseek-reasoner" in model_id

    @override
    def use_streaming(self, model_id: str) -> bool:
        return self.streaming_enabled and not self.is_deepseek_reasoner(model_id)

    @override
    def request_temperature(self, model_id: str) -> float | None:
        return self.temperature if self.use_streaming(model_id) else None

    @override
    def build_messages(self, model_id: str, system_prompt: str, messages: Sequence[ApiMessage]) -> list[OpenAIMessage]:
        if self.use_streaming(model_id) or self.is_deepseek_reasoner(model_id):
            return super().build_messages(model_id, system_prompt, messages)
        # Non-streaming reasoning models do not accept a system role.
        return [{"role": "user", "content": system_prompt}, *convert_to_openai_messages(messages)]

    @override
    def get_model(self) -> ModelDescriptor:
        return with_model_id(SANE_DEFAULTS, self.model_id)
