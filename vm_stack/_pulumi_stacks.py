"""Pulumi Automation API adapter for selecting and creating stacks.

The orchestrator only needs the narrow ``StackFactory`` surface defined here,
which keeps the engine replaceable by an in-memory double in tests.
"""

from __future__ import annotations

import logging
from collections import abc as cabc
from pathlib import Path
from typing import Any, Protocol

from pulumi import automation as auto

from vm_stack._settings import Settings

logger = logging.getLogger(__name__)

type Program = cabc.Callable[[], None]
type OutputCallback = cabc.Callable[[str], Any]


class LifecycleStack(Protocol):
    """Operations the orchestrator performs on one stack."""

    name: str
    workspace: Any

    def set_config(self, key: str, value: auto.ConfigValue, path: bool = False) -> None: ...

    def refresh(self, *, on_output: OutputCallback | None = None) -> Any: ...

    def up(self, *, on_output: OutputCallback | None = None) -> Any: ...

    def destroy(self, *, on_output: OutputCallback | None = None) -> Any: ...

    def cancel(self) -> None: ...


class StackFactory(Protocol):
    def create_or_select(
        self, stack_name: str, project_name: str, program: Program
    ) -> LifecycleStack: ...

    def select(self, stack_name: str, project_name: str, program: Program) -> LifecycleStack: ...


class StackNotFound(LookupError):
    """Raised by ``select`` when the stack has no recorded state."""


class PulumiStackFactory:
    """``StackFactory`` backed by a Pulumi ``LocalWorkspace``.

    Parameters
    ----------
    work_dir
        Workspace directory shared by every run; Pulumi uses a temporary
        directory when omitted.
    env_vars
        Environment variables for the Pulumi CLI, e.g. ``PULUMI_BACKEND_URL``.

    Examples
    --------
    >>> factory = PulumiStackFactory(env_vars={"PULUMI_BACKEND_URL": "file:///tmp/state"})
    >>> stack = factory.create_or_select("carlos-ubuntu18.04-01-02-2024", "vm-bot", program)
    """

    def __init__(
        self,
        work_dir: Path | None = None,
        env_vars: cabc.Mapping[str, str] | None = None,
    ) -> None:
        self._work_dir = work_dir
        self._env_vars = dict(env_vars or {})

    def _options(self) -> auto.LocalWorkspaceOptions:
        return auto.LocalWorkspaceOptions(
            work_dir=str(self._work_dir) if self._work_dir else None,
            env_vars=self._env_vars or None,
        )

    def create_or_select(
        self, stack_name: str, project_name: str, program: Program
    ) -> auto.Stack:
        stack = auto.create_or_select_stack(
            stack_name=stack_name,
            project_name=project_name,
            program=program,
            opts=self._options(),
        )
        logger.info("Created or selected stack %s/%s", project_name, stack_name)
        return stack

    def select(self, stack_name: str, project_name: str, program: Program) -> auto.Stack:
        try:
            stack = auto.select_stack(
                stack_name=stack_name,
                project_name=project_name,
                program=program,
                opts=self._options(),
            )
        except auto.StackNotFoundError as exc:
            msg = f"stack {project_name}/{stack_name} not found"
            raise StackNotFound(msg) from exc
        logger.info("Selected stack %s/%s", project_name, stack_name)
        return stack


def build_stack_factory(settings: Settings) -> PulumiStackFactory:
    """Return the factory configured by ``settings``."""
    return PulumiStackFactory(work_dir=settings.work_dir, env_vars=settings.workspace_env())
