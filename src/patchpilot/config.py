import os
from collections.abc import Mapping
from typing import Protocol

import msgspec
from msgspec import Struct

from patchpilot.exceptions import ConfigurationError
from patchpilot.models import DiffStrategyKind

ENV_PREFIX = "PATCHPILOT_"
DEFAULT_MODEL = "openai/gpt-4o"


class AgentSettings(Struct, frozen=True, kw_only=True):
    always_approve_resubmit: bool = False
    request_delay_seconds: int = 5
    fuzzy_match_threshold: float = 1.0
    diff_strategy_kind: DiffStrategyKind = DiffStrategyKind.SEARCH_REPLACE
    max_consecutive_mistakes: int = 3
    max_auto_retries: int = 5

    def __post_init__(self) -> None:
        if not 0.0 <= self.fuzzy_match_threshold <= 1.0:
            raise ConfigurationError(
                f"fuzzy_match_threshold must be between 0 and 1, got {self.fuzzy_match_threshold}."
            )
        if self.request_delay_seconds < 0:
            raise ConfigurationError(f"request_delay_seconds must not be negative, got {self.request_delay_seconds}.")
        if self.max_consecutive_mistakes < 1:
            raise ConfigurationError("max_consecutive_mistakes must be at least 1.")
        if self.max_auto_retries < 0:
            raise ConfigurationError("max_auto_retries must not be negative.")


class SettingsProvider(Protocol):
    def get_settings(self) -> AgentSettings: ...


class StaticSettingsProvider:
    def __init__(self, settings: AgentSettings | None = None):
        self._settings = settings or AgentSettings()

    def get_settings(self) -> AgentSettings:
        return self._settings


_SETTING_NAMES = frozenset(AgentSettings.__struct_fields__)


def settings_from_mapping(values: Mapping[str, str], base: AgentSettings | None = None) -> AgentSettings:
    """
    Builds settings from string values (environment variables, CLI overrides).
    Unknown keys are ignored; known keys are converted leniently ("true", "0.9", ...).
    """
    merged: dict[str, object] = msgspec.to_builtins(base or AgentSettings())
    for key, raw in values.items():
        if key in _SETTING_NAMES:
            merged[key] = raw

    try:
        return msgspec.convert(merged, type=AgentSettings, strict=False)
    except msgspec.ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e


class EnvSettingsProvider:
    """Reads PATCHPILOT_* variables every time settings are requested."""

    def __init__(self, environ: Mapping[str, str] | None = None, base: AgentSettings | None = None):
        self._environ = environ
        self._base = base

    def get_settings(self) -> AgentSettings:
        environ = self._environ if self._environ is not None else os.environ
        values = {
            key[len(ENV_PREFIX) :].lower(): value for key, value in environ.items() if key.startswith(ENV_PREFIX)
        }
        return settings_from_mapping(values, self._base)


def get_model_name(override: str | None = None) -> str:
    return override or os.getenv(f"{ENV_PREFIX}MODEL") or DEFAULT_MODEL
