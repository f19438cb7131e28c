"""Built-in provider definitions."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ProviderDefinition:
    display_name: str
    base_url: str = ""
    model: str = ""
    env_vars: tuple[str, ...] = field(default_factory=tuple)
    requires_api_key: bool = True


BUILTIN_PROVIDERS: dict[str, ProviderDefinition] = {
    "anthropic": ProviderDefinition(
        display_name="Native Anthropic",
        requires_api_key=False,
    ),
    "zai": ProviderDefinition(
        display_name="Z.AI",
        base_url="https://api.z.ai/api/anthropic",
        model="glm-4.7",
        env_vars=("ANTHROPIC_DEFAULT_HAIKU_MODEL=glm-4.5-air",),
    ),
    "minimax": ProviderDefinition(
        display_name="MiniMax",
        base_url="https://api.minimax.io/anthropic",
        model="Minimax-M2.1",
        env_vars=(
            "ANTHROPIC_SMALL_FAST_MODEL_TIMEOUT=120",
            "ANTHROPIC_SMALL_FAST_MAX_TOKENS=24576",
        ),
    ),
    "kimi": ProviderDefinition(
        display_name="Moonshot AI",
        base_url="https://api.kimi.com/coding/",
        model="kimi-for-coding",
        env_vars=(
            "ANTHROPIC_SMALL_FAST_MODEL_TIMEOUT=240",
            "ANTHROPIC_SMALL_FAST_MAX_TOKENS=200000",
        ),
    ),
    "deepseek": ProviderDefinition(
        display_name="DeepSeek AI",
        base_url="https://api.deepseek.com/anthropic",
        model="deepseek-chat",
        env_vars=(
            "API_TIMEOUT_MS=600000",
            "CLAUDE_CODE_DISABLE_NONESSENTIAL_TRAFFIC=1",
        ),
    ),
    "custom": ProviderDefinition(display_name="Custom Provider"),
}


def is_builtin(name: str) -> bool:
    return name in BUILTIN_PROVIDERS


def get_builtin(name: str) -> ProviderDefinition | None:
    return BUILTIN_PROVIDERS.get(name)


def provider_names() -> list[str]:
    return list(BUILTIN_PROVIDERS)


def requires_api_key(name: str) -> bool:
    """Unknown (custom) providers always need a key."""
    definition = BUILTIN_PROVIDERS.get(name)
    return True if definition is None else definition.requires_api_key


def api_key_name(provider: str) -> str:
    """Secret name holding *provider*'s API key, e.g. ``ZAI_API_KEY``."""
    return f"{provider.upper().replace('-', '_')}_API_KEY"
