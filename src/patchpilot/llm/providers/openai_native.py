from collections.abc import Mapping, Sequence
from typing import override

from patchpilot.llm.model_info import OPENAI_NATIVE_DEFAULT_MODEL_ID, OPENAI_NATIVE_MODELS, lookup_model
from patchpilot.llm.providers.base import EMPTY_MAP, LLMRequestConfig, OpenAICompatibleHandler
from patchpilot.llm.providers.utils import get_env_var_or_fail
from patchpilot.llm.transform import OpenAIMessage, convert_to_openai_messages
from patchpilot.models import ApiMessage, ModelDescriptor

# No streaming, no custom temperature, no system role ("o1" takes a developer message).
O1_MODELS = frozenset({"o1", "o1-preview", "o1-mini"})


class OpenAINativeHandler(OpenAICompatibleHandler):
    display_name: str = "OpenAI Native"

    @override
    def configure_request(self, model_id: str, extra_params: Mapping[str, str] = EMPTY_MAP) -> LLMRequestConfig:
        api_key = get_env_var_or_fail("OPENAI_API_KEY", self.display_name)

        from openai import OpenAI

        client = OpenAI(api_key=api_key)

        kwargs: dict[str, object] = {}
        if "reasoning_effort" in extra_params:
            kwargs["reasoning_effort"] = extra_params["reasoning_effort"]

        return LLMRequestConfig(client=client, model_id=self.get_model().id, extra_kwargs=kwargs)

    @override
    def use_streaming(self, model_id: str) -> bool:
        return model_id not in O1_MODELS

    @override
    def request_temperature(self, model_id: str) -> float | None:
        return None if model_id in O1_MODELS else self.temperature

    @override
    def build_messages(self, model_id: str, system_prompt: str, messages: Sequence[ApiMessage]) -> list[OpenAIMessage]:
        if model_id not in O1_MODELS:
            return super().build_messages(model_id, system_prompt, messages)
        role = "developer" if model_id == "o1" else "user"
        return [{"role": role, "content": system_prompt}, *convert_to_openai_messages(messages)]

    @override
    def get_model(self) -> ModelDescriptor:
        return lookup_model(OPENAI_NATIVE_MODELS, self.model_id, OPENAI_NATIVE_DEFAULT_MODEL_ID)
