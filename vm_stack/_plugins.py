"""Provider plugin provisioning for inline Pulumi programs.

Inline programs do not declare their plugins to the engine up front, so the
orchestrator installs the provider plugin itself before configuring or
mutating a stack.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from vm_stack._vm_stack_errors import PluginInstallError

logger = logging.getLogger(__name__)


class PluginInfo(Protocol):
    name: str
    version: str | None


class PluginWorkspace(Protocol):
    """The part of a Pulumi workspace the provisioner needs."""

    def list_plugins(self) -> Iterable[PluginInfo]: ...

    def install_plugin(self, name: str, version: str, kind: str = "resource") -> None: ...


def _normalise_version(version: str | None) -> str:
    return (version or "").strip().removeprefix("v")


def plugin_installed(workspace: PluginWorkspace, name: str, version: str) -> bool:
    """Return whether ``workspace`` already has ``name`` at ``version``."""
    wanted = _normalise_version(version)
    return any(
        plugin.name == name and _normalise_version(plugin.version) == wanted
        for plugin in workspace.list_plugins()
    )


def ensure_plugin(workspace: PluginWorkspace, plugin_name: str, plugin_version: str) -> None:
    """Install ``plugin_name`` at ``plugin_version`` unless it is already present.

    Parameters
    ----------
    workspace
        Pulumi workspace of the stack, e.g. ``stack.workspace``.
    plugin_name
        Provider plugin name, e.g. ``linode``.
    plugin_version
        Pinned plugin version, e.g. ``v3.7.1``.

    Raises
    ------
    PluginInstallError
        If the engine cannot list or install the plugin.

    Examples
    --------
    >>> ensure_plugin(stack.workspace, "linode", "v3.7.1")
    """
    try:
        if plugin_installed(workspace, plugin_name, plugin_version):
            logger.info("Plugin %s %s already installed", plugin_name, plugin_version)
            return
        logger.info("Installing plugin %s %s", plugin_name, plugin_version)
        workspace.install_plugin(plugin_name, plugin_version)
    except Exception as exc:
        msg = f"failed to install plugin {plugin_name} {plugin_version}: {exc}"
        raise PluginInstallError(msg) from exc

    logger.info("Installed plugin %s %s", plugin_name, plugin_version)
