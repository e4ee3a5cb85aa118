import pytest

from patchpilot.exceptions import ConfigurationError
from patchpilot.llm.providers.bedrock import BedrockHandler
from patchpilot.llm.providers.deepseek import DeepSeekHandler
from patchpilot.llm.providers.local import LmStudioHandler, OllamaHandler
from patchpilot.llm.providers.openai import OpenAIHandler
from patchpilot.llm.providers.openai_native import OpenAINativeHandler
from patchpilot.llm.providers.openrouter import OpenRouterHandler
from patchpilot.llm.router import build_api_handler, parse_model_string


def test_build_api_handler_openai():
    handler = build_api_handler("openai/gpt-4o")
    assert isinstance(handler, OpenAINativeHandler)
    assert handler.model_id == "gpt-4o"
    assert handler.extra_params == {}


def test_build_api_handler_openrouter():
    handler = build_api_handler("openrouter/anthropic/claude-3.5-sonnet")
    assert isinstance(handler, OpenRouterHandler)
    assert handler.model_id == "anthropic/claude-3.5-sonnet"
    assert handler.get_model().supports_prompt_cache


def test_build_api_handler_with_params():
    handler = build_api_handler("openai/o1+reasoning_effort=high")
    assert isinstance(handler, OpenAINativeHandler)
    assert handler.model_id == "o1"
    assert handler.extra_params == {"reasoning_effort": "high"}


@pytest.mark.parametrize(
    ("model_string", "handler_cls", "model_id"),
    [
        ("openai-compatible/qwen2.5-coder", OpenAIHandler, "qwen2.5-coder"),
        ("deepseek/deepseek-reasoner", DeepSeekHandler, "deepseek-reasoner"),
        ("ollama/llama3.1:8b", OllamaHandler, "llama3.1:8b"),
        ("lmstudio/local-model", LmStudioHandler, "local-model"),
        ("bedrock/amazon.nova-pro-v1:0", BedrockHandler, "amazon.nova-pro-v1:0"),
    ],
)
def test_build_api_handler_prefixes(model_string: str, handler_cls: type, model_id: str):
    handler = build_api_handler(model_string)
    assert type(handler) is handler_cls
    assert handler.get_model().id == model_id


def test_parse_model_string_with_multiple_params():
    base_model, extra_params = parse_model_string("openrouter/meta/llama+ext=val+effort=low+flag")
    assert base_model == "openrouter/meta/llama"
    assert extra_params == {"ext": "val", "effort": "low"}


def test_build_api_handler_invalid_prefix():
    with pytest.raises(ConfigurationError, match="Unrecognized model provider format"):
        _ = build_api_handler("invalid/model")


def test_handlers_are_built_without_credentials(monkeypatch: pytest.MonkeyPatch):
    # Credentials are only read when a request is configured
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    handler = build_api_handler("openai-compatible/some-model+streaming=false")
    assert isinstance(handler, OpenAIHandler)
    assert not handler.streaming_enabled
