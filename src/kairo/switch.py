"""Switch to a configured provider and launch the coding harness.

The provider's API key, when one is stored, is delivered through
:mod:`kairo.handoff` and never appears in the launched command line.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from kairo.audit import AuditSink, NullAuditSink
from kairo.config.document import ConfigDocument, Provider, load_config
from kairo.errors import ConfigError, CryptoError, FileSystemError, KairoError
from kairo.handoff import AuthHandoff, exec_or_wait
from kairo.providers import api_key_name, requires_api_key
from kairo.secrets.store import load_secrets
from kairo.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_HARNESS = "claude"
HARNESSES = ("claude", "qwen")

# Variable the API key is exported as, per harness.
TOKEN_ENV_VARS = {
    "claude": "ANTHROPIC_AUTH_TOKEN",
    "qwen": "ANTHROPIC_API_KEY",
}


def resolve_harness(doc: ConfigDocument, flag: str | None = None) -> str:
    """Pick the harness: explicit flag, then config default, then ``claude``."""
    harness = flag or doc.default_harness or ""
    if not harness:
        return DEFAULT_HARNESS
    if harness not in HARNESSES:
        logger.warning("Unknown harness %r, using %r", harness, DEFAULT_HARNESS)
        return DEFAULT_HARNESS
    return harness


def builtin_env(provider: Provider) -> list[str]:
    """``ANTHROPIC_*`` variables pointing the harness at *provider*."""
    env = [f"ANTHROPIC_BASE_URL={provider.base_url}"]
    for name in (
        "ANTHROPIC_MODEL",
        "ANTHROPIC_DEFAULT_HAIKU_MODEL",
        "ANTHROPIC_DEFAULT_SONNET_MODEL",
        "ANTHROPIC_DEFAULT_OPUS_MODEL",
        "ANTHROPIC_SMALL_FAST_MODEL",
    ):
        env.append(f"{name}={provider.model}")
    return env


def merge_env_vars(*layers: Iterable[str]) -> dict[str, str]:
    """Merge ``NAME=value`` layers; later layers win.

    Entries without ``=`` or with an empty name are ignored. An overridden
    name moves to the position of its latest definition.
    """
    merged: dict[str, str] = {}
    for layer in layers:
        for item in layer:
            name, sep, value = item.partition("=")
            if not sep or not name:
                continue
            merged.pop(name, None)
            merged[name] = value
    return merged


@dataclass
class SwitchPlan:
    """Everything needed to launch a harness for one provider."""

    provider_name: str
    provider: Provider
    harness: str
    target: str
    args: list[str]
    env: dict[str, str]
    api_key: str | None = field(default=None, repr=False)

    @property
    def token_env_var(self) -> str:
        return TOKEN_ENV_VARS[self.harness]


def _load_provider_secrets(settings: Settings, provider_name: str) -> dict[str, str]:
    try:
        return load_secrets(settings.config_dir)
    except (CryptoError, FileSystemError) as exc:
        if requires_api_key(provider_name):
            raise exc.with_context("hint", "your encryption key may be corrupted; try 'kairo rotate'")
        logger.warning("Could not decrypt secrets; continuing without them: %s", exc)
        return {}


def _find_executable(binary: str, env: Mapping[str, str]) -> str:
    path = shutil.which(binary, path=env.get("PATH"))
    if path is None:
        raise KairoError(f"'{binary}' command not found in PATH", harness=binary)
    return path


def plan_switch(
    settings: Settings,
    provider_name: str,
    args: Sequence[str] = (),
    model: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> SwitchPlan:
    """Resolve provider, harness, environment and credential for a switch."""
    doc = load_config(settings.config_dir)
    provider = doc.providers.get(provider_name)
    if provider is None:
        raise ConfigError(f"provider '{provider_name}' not configured", provider=provider_name)

    harness = resolve_harness(doc, settings.harness)
    secrets = _load_provider_secrets(settings, provider_name)
    key_name = api_key_name(provider_name)
    api_key = secrets.pop(key_name, None)

    env = merge_env_vars(
        (f"{k}={v}" for k, v in (os.environ if environ is None else environ).items()),
        builtin_env(provider),
        provider.env_vars,
        (f"{k}={v}" for k, v in secrets.items()),
    )
    # The key reaches the harness only through the handoff.
    env.pop(key_name, None)

    cli_args = list(args)
    if harness == "qwen":
        if api_key is None:
            raise ConfigError(
                f"API key not found for provider '{provider_name}'",
                hint="the qwen harness requires a stored API key",
            )
        cli_args = ["--model", model or provider.model, *cli_args]

    return SwitchPlan(
        provider_name=provider_name,
        provider=provider,
        harness=harness,
        target=_find_executable(harness, env),
        args=cli_args,
        env=env,
        api_key=api_key,
    )


def run_plan(plan: SwitchPlan, platform: str | None = None) -> int:
    """Launch the harness described by *plan* and return its exit status."""
    if plan.api_key is None:
        logger.debug("No API key stored for %s; launching %s directly", plan.provider_name, plan.harness)
        return exec_or_wait([plan.target, *plan.args], plan.env, platform)

    handoff = AuthHandoff(
        plan.api_key,
        plan.target,
        plan.args,
        env_var=plan.token_env_var,
        env=plan.env,
        platform=platform,
    )
    with handoff:
        return handoff.launch()


def switch(
    settings: Settings,
    provider_name: str,
    args: Sequence[str] = (),
    model: str | None = None,
    audit: AuditSink | None = None,
    platform: str | None = None,
) -> int:
    """Switch to *provider_name* and run the harness. Returns its exit status."""
    audit = audit or NullAuditSink()
    try:
        plan = plan_switch(settings, provider_name, args, model=model)
    except KairoError as exc:
        audit.log_failure("switch", provider_name, str(exc))
        raise
    audit.log_switch(provider_name)
    logger.info("Switching to %s (%s)", plan.provider.name or provider_name, plan.harness)
    return run_plan(plan, platform)
