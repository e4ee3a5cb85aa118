# pyright: standard

import pytest

from patchpilot.llm.model_info import (
    DEEPSEEK_DEFAULT_MODEL_ID,
    DEEPSEEK_MODELS,
    OPENAI_NATIVE_MODELS,
    SANE_DEFAULTS,
    calculate_api_cost,
    cost_of,
    lookup_model,
    openrouter_model_info,
)
from patchpilot.models import UsageChunk


def test_calculate_api_cost_uses_per_million_prices() -> None:
    # GIVEN gpt-4o at $2.50 in / $10 out per million tokens
    model = OPENAI_NATIVE_MODELS["gpt-4o"]

    # WHEN a million tokens of each are used
    cost = calculate_api_cost(model, 1_000_000, 1_000_000)

    # THEN the cost is the sum of both prices
    assert cost == pytest.approx(12.5)


def test_calculate_api_cost_includes_cache_tokens() -> None:
    model = DEEPSEEK_MODELS["deepseek-chat"]

    cost = calculate_api_cost(model, 0, 0, cache_write_tokens=1_000_000, cache_read_tokens=1_000_000)

    assert cost == pytest.approx(0.14 + 0.014)


def test_cost_of_prefers_reported_cost() -> None:
    model = OPENAI_NATIVE_MODELS["gpt-4o"]

    assert cost_of(model, UsageChunk(input_tokens=1_000_000, output_tokens=0, total_cost=0.5)) == 0.5
    assert cost_of(model, UsageChunk(input_tokens=1_000_000, output_tokens=0)) == pytest.approx(2.5)


def test_lookup_model_falls_back_to_default_descriptor() -> None:
    # GIVEN an id missing from the table
    model = lookup_model(DEEPSEEK_MODELS, "deepseek-future", DEEPSEEK_DEFAULT_MODEL_ID)

    # THEN it keeps the requested id but the default's capabilities
    assert model.id == "deepseek-future"
    assert model.context_window == DEEPSEEK_MODELS[DEEPSEEK_DEFAULT_MODEL_ID].context_window

    assert lookup_model(DEEPSEEK_MODELS, "", DEEPSEEK_DEFAULT_MODEL_ID).id == DEEPSEEK_DEFAULT_MODEL_ID


def test_openrouter_model_info() -> None:
    claude = openrouter_model_info("anthropic/claude-3.5-sonnet")
    assert claude.supports_prompt_cache
    assert claude.id == "anthropic/claude-3.5-sonnet"

    other = openrouter_model_info("meta/llama-3")
    assert not other.supports_prompt_cache
    assert other.context_window == SANE_DEFAULTS.context_window
