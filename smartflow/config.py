"""Configuration management for SmartFlow.

Two sections:
- models: fast/strong model strings for dynamic fields and enrichment
- flow: engine timing and behavior knobs

Model strings use "provider/model" format (e.g., "openrouter/anthropic/claude-sonnet-4.5").

Config resolution order (highest priority first):
1. Programmatic (SmartFlowConfig constructed in code)
2. Environment variables (MODELS_FAST, FLOW_PREFETCH_TIMEOUT, etc.)
3. Config file (~/.config/smartflow/config.json, managed by `smartflow config`)
4. Hardcoded defaults

API keys are ALWAYS from env vars, never stored in the config file.
"""

import json
import logging
import os
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)


# =============================================================================
# Config file location
# =============================================================================

CONFIG_DIR = Path.home() / ".config" / "smartflow"
CONFIG_FILE = CONFIG_DIR / "config.json"


# =============================================================================
# Model string parsing
# =============================================================================


def parse_model_string(model_string: str) -> tuple[str, str]:
    """Parse a "provider/model" string into (provider, model) tuple.

    Examples:
        "openai/gpt-5-mini" → ("openai", "gpt-5-mini")
        "openrouter/anthropic/claude-sonnet-4.5" → ("openrouter", "anthropic/claude-sonnet-4.5")

    Raises:
        ValueError: If the string doesn't contain a '/' separator.
    """
    if "/" not in model_string:
        raise ValueError(
            f"Invalid model string: {model_string!r}. "
            f"Expected format: 'provider/model' (e.g., 'openai/gpt-5-mini')"
        )
    provider, _, model = model_string.partition("/")
    if not provider or not model:
        raise ValueError(
            f"Invalid model string: {model_string!r}. "
            f"Both provider and model must be non-empty."
        )
    return provider, model


# =============================================================================
# Config dataclasses
# =============================================================================


@dataclass
class ModelsConfig:
    """Model configuration.

    - fast: enrichment calls (run in the background on every step advance)
    - strong: dynamic field generation
    """

    fast: str = "openrouter/anthropic/claude-haiku-4.5"
    strong: str = "openrouter/anthropic/claude-sonnet-4.5"


@dataclass
class FlowConfig:
    """Engine timing and behavior.

    All durations are in seconds.
    """

    prefetch_timeout: float = 45.0
    enrichment_timeout: float = 60.0
    enrichment_error_reset: float = 5.0
    stuck_step_timeout: float = 30.0
    dynamic_failure_grace: float = 8.0
    standards_max_iterations: int = 5
    default_max_fields: int = 5
    # Unrecognized prompt variables count as settled when True
    fail_open: bool = True


@dataclass
class CustomProviderConfig:
    """Configuration for a custom OpenAI-compatible provider endpoint."""

    base_url: str = ""
    api_key_env: str = ""


# =============================================================================
# Main config class
# =============================================================================


@dataclass
class SmartFlowConfig:
    """Top-level smartflow configuration.

    Construct programmatically for package use, or load from config file for CLI use.

    Examples:
        # Package use: no files needed
        config = SmartFlowConfig(flow=FlowConfig(prefetch_timeout=20.0))

        # CLI use: loads from ~/.config/smartflow/config.json
        config = SmartFlowConfig.load()
    """

    models: ModelsConfig = field(default_factory=ModelsConfig)
    flow: FlowConfig = field(default_factory=FlowConfig)
    providers: dict[str, CustomProviderConfig] = field(default_factory=dict)

    @classmethod
    def load(cls) -> "SmartFlowConfig":
        """Load config from file + env vars.

        Priority: env var values > config.json values > defaults.
        """
        config = cls()

        # Layer 1: Load from config file if it exists
        if CONFIG_FILE.exists():
            try:
                with open(CONFIG_FILE) as f:
                    data = json.load(f)
                _apply_dict(config, data)
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Failed to load config from %s: %s", CONFIG_FILE, exc)

        # Layer 2: Env var overrides
        if val := os.environ.get("MODELS_FAST"):
            config.models.fast = val
        if val := os.environ.get("MODELS_STRONG"):
            config.models.strong = val
        for flow_field in fields(FlowConfig):
            env_name = f"FLOW_{flow_field.name.upper()}"
            if (val := os.environ.get(env_name)) is not None and val != "":
                try:
                    setattr(
                        config.flow,
                        flow_field.name,
                        coerce_flow_value(flow_field.name, val),
                    )
                except ValueError:
                    logger.warning("Invalid %s=%r, ignoring", env_name, val)

        return config

    def save(self) -> None:
        """Save config to ~/.config/smartflow/config.json."""
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        data: dict[str, Any] = {"models": asdict(self.models)}
        if self.flow != FlowConfig():
            data["flow"] = asdict(self.flow)
        if self.providers:
            data["providers"] = {
                name: asdict(cfg) for name, cfg in self.providers.items()
            }
        with open(CONFIG_FILE, "w") as f:
            json.dump(data, f, indent=2)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for display."""
        result = {
            "models": asdict(self.models),
            "flow": asdict(self.flow),
        }
        if self.providers:
            result["providers"] = {
                name: asdict(cfg) for name, cfg in self.providers.items()
            }
        return result


# =============================================================================
# Config dict application
# =============================================================================

_FLOW_TYPES: dict[str, type] = {
    "prefetch_timeout": float,
    "enrichment_timeout": float,
    "enrichment_error_reset": float,
    "stuck_step_timeout": float,
    "dynamic_failure_grace": float,
    "standards_max_iterations": int,
    "default_max_fields": int,
    "fail_open": bool,
}


def coerce_flow_value(name: str, value: Any) -> Any:
    """Coerce a raw (string or JSON) value to the FlowConfig field's type."""
    target = _FLOW_TYPES[name]
    if target is bool:
        if isinstance(value, bool):
            return value
        lowered = str(value).strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"Invalid boolean: {value!r}")
    return target(value)


def _apply_dict(config: SmartFlowConfig, data: dict) -> None:
    """Apply a dict of values onto a SmartFlowConfig."""
    if "models" in data and isinstance(data["models"], dict):
        for k, v in data["models"].items():
            if hasattr(config.models, k):
                setattr(config.models, k, v)
    if "flow" in data and isinstance(data["flow"], dict):
        for k, v in data["flow"].items():
            if k in _FLOW_TYPES:
                try:
                    setattr(config.flow, k, coerce_flow_value(k, v))
                except ValueError:
                    logger.warning("Invalid flow.%s=%r in config file, ignoring", k, v)
    if "providers" in data and isinstance(data["providers"], dict):
        for name, provider_data in data["providers"].items():
            if isinstance(provider_data, dict):
                config.providers[name] = CustomProviderConfig(
                    base_url=provider_data.get("base_url", ""),
                    api_key_env=provider_data.get("api_key_env", ""),
                )


# =============================================================================
# API key resolution
# =============================================================================

_dotenv_loaded = False


def _ensure_dotenv() -> None:
    """Load .env file into os.environ if not already loaded."""
    global _dotenv_loaded
    if not _dotenv_loaded:
        _dotenv_loaded = True
        from dotenv import find_dotenv, load_dotenv

        dotenv_path = find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path=dotenv_path, override=False)


def get_api_key_for_provider(
    provider_name: str,
    custom_providers: dict[str, CustomProviderConfig] | None = None,
) -> str:
    """Get API key for a provider.

    Resolution order:
    1. Custom provider api_key_env override
    2. Convention: {PROVIDER_UPPER}_API_KEY

    Returns empty string if not found.
    """
    _ensure_dotenv()

    if custom_providers and provider_name in custom_providers:
        custom = custom_providers[provider_name]
        if custom.api_key_env:
            return os.environ.get(custom.api_key_env, "")

    return os.environ.get(f"{provider_name.upper()}_API_KEY", "")


# =============================================================================
# Global config singleton
# =============================================================================

_config: SmartFlowConfig | None = None


def get_config() -> SmartFlowConfig:
    """Get the global SmartFlowConfig instance.

    First call loads from file + env vars. Subsequent calls return cached instance.
    Use configure() to replace the global config programmatically.
    """
    global _config
    if _config is None:
        _config = SmartFlowConfig.load()
    return _config


def configure(config: SmartFlowConfig) -> None:
    """Set the global SmartFlowConfig programmatically.

    Use this when smartflow is used as a package:
        from smartflow.config import configure, SmartFlowConfig, FlowConfig
        configure(SmartFlowConfig(flow=FlowConfig(fail_open=False)))
    """
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global config (forces reload on next get_config())."""
    global _config
    _config = None
