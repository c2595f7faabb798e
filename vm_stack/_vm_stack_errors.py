"""Exception hierarchy for the VM stack lifecycle.

Every failure the orchestrator can surface derives from ``VmStackError`` so
entry points can catch a single base error and map ``kind`` to a response.

Examples
--------
>>> raise RefreshError("refresh failed for stack 'carlos-ubuntu18.04-01-02-2024'")
"""

from __future__ import annotations


class VmStackError(Exception):
    """Base error for VM stack orchestration.

    Parameters
    ----------
    message
        Human-readable error message. Must not contain credentials.

    Examples
    --------
    >>> VmStackError("unexpected failure").kind
    'VmStackError'
    """

    kind = "VmStackError"


class InvalidSpecification(VmStackError):
    """Raised when a VM request or specification fails validation.

    This is a caller error and is never retried.

    Examples
    --------
    >>> raise InvalidSpecification("swap_size must be between 0 and 32767")
    """

    kind = "InvalidSpecification"


class ConfigurationError(VmStackError):
    """Raised when required process configuration is absent or rejected."""

    kind = "ConfigurationError"


class PluginInstallError(VmStackError):
    """Raised when the provider plugin cannot be installed."""

    kind = "PluginInstallError"


class RefreshError(VmStackError):
    """Raised when refreshing stack state against the provider fails."""

    kind = "RefreshError"


class ApplyError(VmStackError):
    """Raised when ``up`` fails."""

    kind = "ApplyError"


class DestroyError(VmStackError):
    """Raised when ``destroy`` fails or the stack to destroy cannot be selected.

    Attributes
    ----------
    stack_missing
        ``True`` when the stack had no prior state to destroy.
    """

    kind = "DestroyError"

    def __init__(self, message: str, *, stack_missing: bool = False) -> None:
        super().__init__(message)
        self.stack_missing = stack_missing


class ResourceDeclarationError(VmStackError):
    """Raised when the engine rejects the declared resource shape."""

    kind = "ResourceDeclarationError"


class Cancelled(VmStackError):
    """Raised when the caller cancels a run or its deadline passes."""

    kind = "Cancelled"
