# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Assistant configuration with ``PAGEINTENT_*`` environment overrides.

Env vars fill defaults; the CLI layers explicit flags on top (flags win).
Malformed numeric or boolean values raise ConfigError instead of being
silently ignored.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .browser_session import BrowserConfig
from .errors import ConfigError
from .text_generator import DEFAULT_BASE_URL, DEFAULT_MODEL, DEFAULT_TIMEOUT_SECONDS

ENV_PREFIX = "PAGEINTENT_"
_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


@dataclass(frozen=True)
class AssistantConfig:
    """Knobs for one AssistantSession."""

    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    api_key: str = field(default="", repr=False)
    model_timeout_s: float = DEFAULT_TIMEOUT_SECONDS
    temperature: float = 0.0
    highlight: bool = True
    highlight_duration_s: float = 1.5
    settle_delay_s: float = 0.3
    scroll_amount: int = 500
    model_matching: bool = True  # model-assisted fallback when local scoring fails
    model_match_threshold: float = 0.5
    turn_timeout_s: float = 60.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.model_match_threshold <= 1.0:
            raise ConfigError(f"model_match_threshold must be within [0, 1], got {self.model_match_threshold}")
        for name in ("model_timeout_s", "turn_timeout_s"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("highlight_duration_s", "settle_delay_s"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative, got {getattr(self, name)}")
        if self.scroll_amount <= 0:
            raise ConfigError(f"scroll_amount must be positive, got {self.scroll_amount}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AssistantConfig:
        """Build a config from ``PAGEINTENT_*`` variables (unset ones keep defaults)."""
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        if model := _get(env, "MODEL"):
            kwargs["model"] = model
        if base_url := _get(env, "BASE_URL"):
            kwargs["base_url"] = base_url
        api_key = _get(env, "API_KEY") or env.get("OPENAI_API_KEY", "").strip()
        if api_key:
            kwargs["api_key"] = api_key

        for key, attr in (
            ("MODEL_TIMEOUT", "model_timeout_s"),
            ("TEMPERATURE", "temperature"),
            ("HIGHLIGHT_DURATION", "highlight_duration_s"),
            ("SETTLE_DELAY", "settle_delay_s"),
            ("MODEL_MATCH_THRESHOLD", "model_match_threshold"),
            ("TURN_TIMEOUT", "turn_timeout_s"),
        ):
            value = _get_float(env, key)
            if value is not None:
                kwargs[attr] = value

        scroll = _get_int(env, "SCROLL_AMOUNT")
        if scroll is not None:
            kwargs["scroll_amount"] = scroll

        for key, attr in (("HIGHLIGHT", "highlight"), ("MODEL_MATCHING", "model_matching")):
            flag = _get_bool(env, key)
            if flag is not None:
                kwargs[attr] = flag

        return cls(**kwargs)

    def replace(self, **changes) -> AssistantConfig:
        """Copy with *changes* applied; ``None`` values are ignored (unset CLI flags)."""
        return dataclasses.replace(self, **{k: v for k, v in changes.items() if v is not None})


def browser_config_from_env(environ: Mapping[str, str] | None = None) -> BrowserConfig:
    env = os.environ if environ is None else environ
    config = BrowserConfig()
    headless = _get_bool(env, "HEADLESS")
    if headless is not None:
        config.headless = headless
    if locale := _get(env, "LOCALE"):
        config.locale = locale
    nav_timeout = _get_int(env, "NAV_TIMEOUT_MS")
    if nav_timeout is not None:
        config.timeout_ms = nav_timeout
    return config


# ── env parsing helpers ──────────────────────────────────────────


def _get(env: Mapping[str, str], key: str) -> str:
    return env.get(ENV_PREFIX + key, "").strip()


def _get_float(env: Mapping[str, str], key: str) -> float | None:
    raw = _get(env, key)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{key} must be a number, got {raw!r}") from None


def _get_int(env: Mapping[str, str], key: str) -> int | None:
    raw = _get(env, key)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{key} must be an integer, got {raw!r}") from None


def _get_bool(env: Mapping[str, str], key: str) -> bool | None:
    raw = _get(env, key).lower()
    if not raw:
        return None
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ConfigError(f"{ENV_PREFIX}{key} must be a boolean (1/0, true/false), got {raw!r}")
