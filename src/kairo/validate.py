"""Input validation for provider names, URLs, API keys and models.

Every check raises :class:`kairo.errors.ValidationError` with a message
that can be shown to the user as-is.
"""

from __future__ import annotations

import ipaddress
import re
from urllib.parse import urlsplit

from kairo.config.document import ConfigDocument
from kairo.errors import ValidationError
from kairo.providers import is_builtin

MAX_PROVIDER_NAME_LENGTH = 50
MAX_MODEL_NAME_LENGTH = 100

DEFAULT_MIN_KEY_LENGTH = 20
MIN_KEY_LENGTHS: dict[str, int] = {
    "zai": 32,
    "minimax": 32,
    "kimi": 32,
    "deepseek": 32,
    "custom": 20,
}

_PROVIDER_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
_MODEL_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")

_BLOCKED_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})
_BLOCKED_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
)


def validate_provider_name(name: str, custom: bool = True) -> str:
    """Check a provider name; custom providers may not shadow a built-in one."""
    if not name:
        raise ValidationError("provider name is required")
    if len(name) > MAX_PROVIDER_NAME_LENGTH:
        raise ValidationError(
            f"provider name must be at most {MAX_PROVIDER_NAME_LENGTH} characters (got {len(name)})"
        )
    if not _PROVIDER_NAME_RE.match(name):
        raise ValidationError(
            "provider name must start with a letter and contain only "
            "alphanumeric characters, underscores, and hyphens"
        )
    if custom and is_builtin(name.lower()):
        raise ValidationError(f"reserved provider name: {name.lower()}")
    return name


def _is_blocked_host(host: str) -> bool:
    if host.lower() in _BLOCKED_HOSTS:
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return ip.version == 4 and any(ip in net for net in _BLOCKED_NETWORKS)


def validate_url(url: str, provider: str = "provider") -> str:
    if not url:
        raise ValidationError(f"{provider} base URL cannot be empty")
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
    except ValueError as exc:
        raise ValidationError(f"{provider} base URL is not a valid URL: {exc}") from exc
    if parts.scheme != "https":
        raise ValidationError(f"{provider} base URL must use HTTPS")
    if not host:
        raise ValidationError(f"{provider} base URL is missing a host")
    if _is_blocked_host(host):
        raise ValidationError(
            f"{provider} base URL cannot use blocked host: {host} (localhost/private IPs not allowed)"
        )
    return url


def validate_api_key(key: str, provider: str) -> str:
    if not key.strip():
        raise ValidationError(f"{provider} API key cannot be empty or whitespace")
    minimum = MIN_KEY_LENGTHS.get(provider, DEFAULT_MIN_KEY_LENGTH)
    if len(key) < minimum:
        raise ValidationError(
            f"{provider} API key too short (minimum {minimum} characters, got {len(key)})"
        )
    return key


def validate_model(model: str, provider: str = "provider") -> str:
    """An empty model means "use the provider default" and is accepted."""
    if not model:
        return model
    if len(model) > MAX_MODEL_NAME_LENGTH:
        raise ValidationError(
            f"model name for {provider} is too long (max {MAX_MODEL_NAME_LENGTH} characters)"
        )
    if not _MODEL_NAME_RE.match(model):
        raise ValidationError(f"model name {model!r} for {provider} contains invalid characters")
    return model


def validate_cross_provider_config(doc: ConfigDocument) -> None:
    """Reject an env var set to different values by two providers.

    The same variable with the same value in several providers is allowed.
    """
    seen: dict[str, tuple[str, str]] = {}
    for provider_name in sorted(doc.providers):
        for item in doc.providers[provider_name].env_vars:
            key, sep, value = item.partition("=")
            if not sep:
                continue
            key, value = key.strip(), value.strip()
            if key in seen and seen[key][1] != value:
                raise ValidationError(
                    f"environment variable collision: {key!r} is set to different values "
                    f"by providers {seen[key][0]!r} and {provider_name!r}"
                )
            seen.setdefault(key, (provider_name, value))
