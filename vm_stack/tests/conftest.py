from __future__ import annotations

import copy
import datetime as dt
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest


def pytest_configure() -> None:
    project_root = Path(__file__).resolve().parents[2]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


TOKEN = "linode-token-0123456789"
ROOT_PASSWORD = "r00t-Pass-9876"
FIXED_DATE = dt.date(2024, 1, 2)

BASE_PAYLOAD: dict[str, Any] = {
    "requesterUsername": "carlos",
    "intent": "create",
    "vmOptions": {
        "imageName": "linode/ubuntu18.04",
        "operatingSystem": "ubuntu18.04",
        "labelName": "carlos-box",
        "privateIp": False,
        "regionName": "us-east",
        "password": ROOT_PASSWORD,
        "type": "g6-nanode-1",
        "swapSize": 512,
    },
    "pulumiDetails": {
        "username": "carlos",
        "projectName": "vm-bot",
        "instanceName": "carlos-vm",
    },
}


@dataclass
class FakePlugin:
    name: str
    version: str | None
    kind: str = "resource"


class FakeWorkspace:
    """In-memory stand-in for a Pulumi workspace."""

    def __init__(self, engine: FakeEngine) -> None:
        self._engine = engine

    def list_plugins(self) -> list[FakePlugin]:
        self._engine.maybe_fail("list_plugins")
        return list(self._engine.plugins)

    def install_plugin(self, name: str, version: str, kind: str = "resource") -> None:
        self._engine.record("install_plugin", name, version)
        self._engine.maybe_fail("install_plugin")
        self._engine.plugins.append(FakePlugin(name, version.removeprefix("v"), kind))


class FakeStack:
    """In-memory stack that rejects mutation before a refresh."""

    def __init__(self, engine: FakeEngine, name: str, project_name: str) -> None:
        self._engine = engine
        self.name = name
        self.project_name = project_name
        self.workspace = FakeWorkspace(engine)
        self.refreshed = False

    def set_config(self, key: str, value: Any, path: bool = False) -> None:
        self._engine.record("set_config", key)
        self._engine.maybe_fail("set_config")
        self._engine.config[key] = value

    def refresh(self, *, on_output: Callable[[str], object] | None = None) -> Any:
        self._engine.record("refresh")
        self._engine.run_hook("refresh", self)
        self._engine.maybe_fail("refresh")
        self.refreshed = True
        return SimpleNamespace(summary=SimpleNamespace(result="succeeded", resource_changes={}))

    def up(self, *, on_output: Callable[[str], object] | None = None) -> Any:
        self._mutate("up", on_output)
        return SimpleNamespace(
            summary=SimpleNamespace(result="succeeded", resource_changes={"create": 2}),
            outputs={
                "instance_id": SimpleNamespace(value="12345", secret=False),
                "ip_address": SimpleNamespace(value="203.0.113.10", secret=False),
                "root_pass": SimpleNamespace(value=ROOT_PASSWORD, secret=True),
            },
        )

    def destroy(self, *, on_output: Callable[[str], object] | None = None) -> Any:
        self._mutate("destroy", on_output)
        return SimpleNamespace(
            summary=SimpleNamespace(result="succeeded", resource_changes={"delete": 2})
        )

    def cancel(self) -> None:
        self._engine.record("cancel")
        self._engine.cancel_requested.set()

    def _mutate(self, operation: str, on_output: Callable[[str], object] | None) -> None:
        if not self.refreshed:
            msg = f"{operation} called before refresh"
            raise AssertionError(msg)
        self._engine.record(operation)
        self._engine.begin_mutation()
        try:
            if on_output is not None:
                for line in self._engine.output_lines:
                    on_output(line)
            self._engine.run_hook(operation, self)
            self._engine.maybe_fail(operation)
        finally:
            self._engine.end_mutation()


class FakeEngine:
    """``StackFactory`` double recording every engine call in order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.calls: list[tuple[str, ...]] = []
        self.selections: list[tuple[str, str, str]] = []
        self.plugins: list[FakePlugin] = []
        self.config: dict[str, Any] = {}
        self.failures: dict[str, Exception] = {}
        self.hooks: dict[str, Callable[[FakeStack], None]] = {}
        self.output_lines: list[str] = []
        self.existing_stacks: set[str] = set()
        self.programs: list[Callable[[], None]] = []
        self.cancel_requested = threading.Event()
        self.active_mutations = 0
        self.max_active_mutations = 0

    def record(self, *call: str) -> None:
        with self._lock:
            self.calls.append(call)

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def maybe_fail(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    def run_hook(self, operation: str, stack: FakeStack) -> None:
        hook = self.hooks.get(operation)
        if hook is not None:
            hook(stack)

    def begin_mutation(self) -> None:
        with self._lock:
            self.active_mutations += 1
            self.max_active_mutations = max(self.max_active_mutations, self.active_mutations)

    def end_mutation(self) -> None:
        with self._lock:
            self.active_mutations -= 1

    def create_or_select(
        self, stack_name: str, project_name: str, program: Callable[[], None]
    ) -> FakeStack:
        with self._lock:
            self.selections.append(("create_or_select", stack_name, project_name))
            self.existing_stacks.add(stack_name)
            self.programs.append(program)
        self.maybe_fail("create_or_select")
        return FakeStack(self, stack_name, project_name)

    def select(self, stack_name: str, project_name: str, program: Callable[[], None]) -> FakeStack:
        from vm_stack._pulumi_stacks import StackNotFound

        with self._lock:
            self.selections.append(("select", stack_name, project_name))
        if stack_name not in self.existing_stacks:
            msg = f"stack {project_name}/{stack_name} not found"
            raise StackNotFound(msg)
        return FakeStack(self, stack_name, project_name)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def make_payload() -> Callable[..., dict[str, Any]]:
    """Return a builder for request payloads with per-section overrides."""

    def _make(
        *,
        vm_options: dict[str, Any] | None = None,
        pulumi_details: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> dict[str, Any]:
        payload = copy.deepcopy(BASE_PAYLOAD)
        payload["vmOptions"].update(vm_options or {})
        payload["pulumiDetails"].update(pulumi_details or {})
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def settings() -> Any:
    from vm_stack._settings import Settings

    return Settings(linode_token=TOKEN)


@pytest.fixture
def engine_output() -> list[str]:
    return []


@pytest.fixture
def orchestrator(settings: Any, engine: FakeEngine, engine_output: list[str]) -> Any:
    from vm_stack._lifecycle import LifecycleOrchestrator

    return LifecycleOrchestrator(
        settings,
        engine,
        clock=lambda: FIXED_DATE,
        on_output=engine_output.append,
    )
