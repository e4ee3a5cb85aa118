from patchpilot.models import ModelDescriptor, ModelPricing, UsageChunk

# Used for OpenAI-compatible and local servers whose capabilities are unknown.
SANE_DEFAULTS = ModelDescriptor(
    id="",
    max_tokens=None,
    context_window=128_000,
    supports_images=True,
    supports_prompt_cache=False,
)

OPENAI_NATIVE_DEFAULT_MODEL_ID = "gpt-4o"

OPENAI_NATIVE_MODELS: dict[str, ModelDescriptor] = {
    "o1": ModelDescriptor(
        id="o1",
        max_tokens=100_000,
        context_window=200_000,
        supports_images=True,
        supports_prompt_cache=False,
        pricing=ModelPricing(input_price=15.0, output_price=60.0, cache_reads_price=7.5),
    ),
    "o1-preview": ModelDescriptor(
        id="o1-preview",
        max_tokens=32_768,
        context_window=128_000,
        supports_images=True,
        supports_prompt_cache=False,
        pricing=ModelPricing(input_price=15.0, output_price=60.0, cache_reads_price=7.5),
    ),
    "o1-mini": ModelDescriptor(
        id="o1-mini",
        max_tokens=65_536,
        context_window=128_000,
        supports_images=True,
        supports_prompt_cache=False,
        pricing=ModelPricing(input_price=3.0, output_price=12.0, cache_reads_price=1.5),
    ),
    "gpt-4o": ModelDescriptor(
        id="gpt-4o",
        max_tokens=16_384,
        context_window=128_000,
        supports_images=True,
        supports_prompt_cache=False,
        pricing=ModelPricing(input_price=2.5, output_price=10.0, cache_reads_price=1.25),
    ),
    "gpt-4o-mini": ModelDescriptor(
        id="gpt-4o-mini",
        max_tokens=16_384,
        context_window=128_000,
        supports_images=True,
        supports_prompt_cache=False,
        pricing=ModelPricing(input_price=0.15, output_price=0.6, cache_reads_price=0.075),
    ),
}

DEEPSEEK_DEFAULT_MODEL_ID = "deepseek-chat"

DEEPSEEK_MODELS: dict[str, ModelDescriptor] = {
    "deepseek-chat": ModelDescriptor(
        id="deepseek-chat",
        max_tokens=8_000,
        context_window=64_000,
        supports_images=False,
        supports_prompt_cache=True,
        pricing=ModelPricing(input_price=0.014, output_price=0.28, cache_writes_price=0.14, cache_reads_price=0.014),
    ),
    "deepseek-reasoner": ModelDescriptor(
        id="deepseek-reasoner",
        max_tokens=8_000,
        context_window=64_000,
        supports_images=False,
        supports_prompt_cache=True,
        pricing=ModelPricing(input_price=0.55, output_price=2.19, cache_writes_price=0.55, cache_reads_price=0.14),
    ),
}

BEDROCK_DEFAULT_MODEL_ID = "anthropic.claude-3-5-sonnet-20241022-v2:0"

BEDROCK_MODELS: dict[str, ModelDescriptor] = {
    "anthropic.claude-3-5-sonnet-20241022-v2:0": ModelDescriptor(
        id="anthropic.claude-3-5-sonnet-20241022-v2:0",
        max_tokens=8_192,
        context_window=200_000,
        supports_images=True,
        supports_prompt_cache=False,
        pricing=ModelPricing(input_price=3.0, output_price=15.0),
    ),
    "anthropic.claude-3-5-haiku-20241022-v1:0": ModelDescriptor(
        id="anthropic.claude-3-5-haiku-20241022-v1:0",
        max_tokens=8_192,
        context_window=200_000,
        supports_images=False,
        supports_prompt_cache=False,
        pricing=ModelPricing(input_price=0.8, output_price=4.0),
    ),
    "amazon.nova-pro-v1:0": ModelDescriptor(
        id="amazon.nova-pro-v1:0",
        max_tokens=5_000,
        context_window=300_000,
        supports_images=True,
        supports_prompt_cache=False,
        pricing=ModelPricing(input_price=0.8, output_price=3.2),
    ),
    "amazon.nova-lite-v1:0": ModelDescriptor(
        id="amazon.nova-lite-v1:0",
        max_tokens=5_000,
        context_window=300_000,
        supports_images=True,
        supports_prompt_cache=False,
        pricing=ModelPricing(input_price=0.06, output_price=0.24),
    ),
}


OPENROUTER_DEFAULT_MODEL_ID = "anthropic/claude-3.5-sonnet:beta"

_CLAUDE_ON_OPENROUTER = ModelDescriptor(
    id=OPENROUTER_DEFAULT_MODEL_ID,
    max_tokens=8_192,
    context_window=200_000,
    supports_images=True,
    supports_prompt_cache=True,
    pricing=ModelPricing(input_price=3.0, output_price=15.0, cache_writes_price=3.75, cache_reads_price=0.3),
)


def openrouter_model_info(model_id: str) -> ModelDescriptor:
    if model_id.startswith("anthropic/"):
        return ModelDescriptor(
            id=model_id,
            max_tokens=_CLAUDE_ON_OPENROUTER.max_tokens,
            context_window=_CLAUDE_ON_OPENROUTER.context_window,
            supports_images=True,
            supports_prompt_cache=True,
            pricing=_CLAUDE_ON_OPENROUTER.pricing,
        )
    return with_model_id(SANE_DEFAULTS, model_id)


def with_model_id(descriptor: ModelDescriptor, model_id: str) -> ModelDescriptor:
    return ModelDescriptor(
        id=model_id,
        max_tokens=descriptor.max_tokens,
        context_window=descriptor.context_window,
        supports_images=descriptor.supports_images,
        supports_prompt_cache=descriptor.supports_prompt_cache,
        pricing=descriptor.pricing,
    )


def lookup_model(table: dict[str, ModelDescriptor], model_id: str, default_id: str) -> ModelDescriptor:
    """Returns the table entry for model_id, or the default model's entry under the requested id."""
    if model_id in table:
        return table[model_id]
    return with_model_id(table[default_id], model_id or default_id)


def calculate_api_cost(
    model: ModelDescriptor,
    input_tokens: int,
    output_tokens: int,
    cache_write_tokens: int | None = None,
    cache_read_tokens: int | None = None,
) -> float:
    """Cost in USD; prices are per million tokens."""
    pricing = model.pricing
    cache_writes_cost = (pricing.cache_writes_price or 0.0) / 1_000_000 * (cache_write_tokens or 0)
    cache_reads_cost = (pricing.cache_reads_price or 0.0) / 1_000_000 * (cache_read_tokens or 0)
    input_cost = pricing.input_price / 1_000_000 * input_tokens
    output_cost = pricing.output_price / 1_000_000 * output_tokens
    return cache_writes_cost + cache_reads_cost + input_cost + output_cost


def cost_of(model: ModelDescriptor, usage: UsageChunk) -> float:
    """Prefers the backend-reported cost over the table price."""
    if usage.total_cost is not None:
        return usage.total_cost
    return calculate_api_cost(
        model,
        usage.input_tokens,
        usage.output_tokens,
        usage.cache_write_tokens,
        usage.cache_read_tokens,
    )
