from collections.abc import Callable, Mapping

from patchpilot.exceptions import ConfigurationError
from patchpilot.llm.providers.base import ApiHandler
from patchpilot.llm.providers.bedrock import BedrockHandler
from patchpilot.llm.providers.deepseek import DeepSeekHandler
from patchpilot.llm.providers.local import LmStudioHandler, OllamaHandler
from patchpilot.llm.providers.openai import OpenAIHandler
from patchpilot.llm.providers.openai_native import OpenAINativeHandler
from patchpilot.llm.providers.openrouter import OpenRouterHandler

type HandlerFactory = Callable[[str, Mapping[str, str]], ApiHandler]

_PROVIDER_MAP: dict[str, HandlerFactory] = {
    "bedrock/": BedrockHandler,
    "openrouter/": OpenRouterHandler,
    "openai-compatible/": OpenAIHandler,
    "openai/": OpenAINativeHandler,
    "deepseek/": DeepSeekHandler,
    "ollama/": OllamaHandler,
    "lmstudio/": LmStudioHandler,
}


def parse_model_string(full_model_string: str) -> tuple[str, dict[str, str]]:
    """Splits 'provider/model+key=value+...' into the base model string and its extra parameters."""
    parts = full_model_string.split("+")
    base_model = parts[0]
    extra_params = {k: v for p in parts[1:] if "=" in p for k, v in [p.split("=", 1)]}
    return base_model, extra_params


def build_api_handler(full_model_string: str) -> ApiHandler:
    """
    Factory that returns the handler bound to the STRIPPED model name and the extra
    parameters parsed from the model string.
    """
    base_model, extra_params = parse_model_string(full_model_string)

    for prefix, handler_cls in _PROVIDER_MAP.items():
        if base_model.startswith(prefix):
            clean_model_id = base_model[len(prefix) :]
            return handler_cls(clean_model_id, extra_params)

    raise ConfigurationError(
        f"Unrecognized model provider format for '{full_model_string}'. "
        + f"Please use one of ({', '.join(_PROVIDER_MAP.keys())}) followed by <model>."
    )
