"""Secret stack configuration and credential redaction."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from pulumi import automation as auto

from vm_stack._vm_stack_errors import ConfigurationError

logger = logging.getLogger(__name__)

REDACTED = "***"


class ConfigurableStack(Protocol):
    name: str

    def set_config(self, key: str, value: auto.ConfigValue, *, path: bool = False) -> None: ...


def set_secret(
    stack: ConfigurableStack,
    key: str,
    value: str | None,
    *,
    source: str,
) -> None:
    """Store ``value`` under ``key`` as an encrypted stack secret.

    Parameters
    ----------
    stack
        Stack receiving the configuration value.
    key
        Namespaced configuration key, e.g. ``linode:token``.
    value
        Secret read from process settings; never from a request payload.
    source
        Name of the environment variable ``value`` came from, used in errors.

    Raises
    ------
    ConfigurationError
        If ``value`` is absent or the engine rejects the configuration.

    Examples
    --------
    >>> set_secret(stack, "linode:token", settings.linode_token, source="LINODE_TOKEN")
    """
    if value is None or not value.strip():
        msg = f"{source} is not configured; cannot set secret {key}"
        raise ConfigurationError(msg)

    try:
        stack.set_config(key, auto.ConfigValue(value=value, secret=True))
    except Exception as exc:
        msg = redact_secrets(f"failed to set secret {key}: {exc}", [value])
        raise ConfigurationError(msg) from exc

    logger.info("Set secret config %s on stack %s", key, stack.name)


def redact_secrets(text: str, secrets: Iterable[str | None]) -> str:
    """Replace every non-empty secret in ``text`` with ``***``.

    Longer secrets are replaced first so overlapping values stay hidden.

    Examples
    --------
    >>> redact_secrets("token abc123 rejected", ["abc123", None])
    'token *** rejected'
    """
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    return text
