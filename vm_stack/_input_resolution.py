"""Shared helpers for resolving CLI and environment inputs."""

from __future__ import annotations

import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

from vm_stack._vm_stack_errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving an input from multiple sources."""

    env_key: str
    default: str | Path | None = None
    required: bool = False
    as_path: bool = False


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Resolve input from parameter, environment variable, or default.

    Blank environment values are treated as unset.

    Raises
    ------
    ConfigurationError
        If the input is required and no source provides it.

    Examples
    --------
    >>> resolve_input(None, InputResolution("VM_REGION"), env={"VM_REGION": "us-east"})
    'us-east'
    >>> resolve_input("eu-west", InputResolution("VM_REGION"), env={})
    'eu-west'
    """

    if param_value is not None:
        return param_value

    env_value = (os.environ if env is None else env).get(resolution.env_key)
    if env_value is not None and env_value.strip():
        return Path(env_value) if resolution.as_path else env_value

    if resolution.required:
        msg = f"{resolution.env_key} is required"
        raise ConfigurationError(msg)

    return resolution.default


def parse_bool(value: str | bool | None, *, default: bool = False) -> bool:
    """Parse a boolean flag from CLI or environment input.

    Examples
    --------
    >>> parse_bool("yes")
    True
    >>> parse_bool(None)
    False
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return value.strip().lower() in ("true", "1", "yes", "on")
