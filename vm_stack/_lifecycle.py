"""Stack lifecycle orchestration for a single Linode instance.

A run walks a fixed sequence of states and stops at the first failure:

``RESOLVING -> PLUGIN_READY -> CONFIGURED -> REFRESHED -> APPLYING|DESTROYING
-> SUCCEEDED|FAILED``

The create path selects or creates the stack; the destroy path only selects
an existing one, so a delete request can never provision infrastructure.
State is always refreshed before it is mutated, and nothing is retried:
infrastructure mutations are not safe to repeat without a fresh diff.

Examples
--------
Run a create request against the configured Pulumi backend:

>>> settings = load_settings()
>>> orchestrator = LifecycleOrchestrator(settings, build_stack_factory(settings))
>>> result = orchestrator.run(parse_request(payload))
>>> result.state
<LifecycleState.SUCCEEDED: 'succeeded'>
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from vm_stack._concurrency import CancelToken, StackLocks, watch_cancellation
from vm_stack._deployment_program import DeploymentProgram, build_program
from vm_stack._plugins import ensure_plugin
from vm_stack._pulumi_stacks import LifecycleStack, StackFactory, StackNotFound
from vm_stack._secrets import redact_secrets, set_secret
from vm_stack._settings import TOKEN_ENV_KEY, Settings
from vm_stack._stack_identity import Clock, resolve_stack_name, utc_today
from vm_stack._vm_spec import Intent, VmRequest
from vm_stack._vm_stack_errors import (
    ApplyError,
    Cancelled,
    DestroyError,
    RefreshError,
    ResourceDeclarationError,
    VmStackError,
)

logger = logging.getLogger(__name__)

PLUGIN_NAME = "linode"
PLUGIN_VERSION = "v3.7.1"
TOKEN_CONFIG_KEY = "linode:token"
SECRET_OUTPUT = "[secret]"


class LifecycleState(enum.Enum):
    RESOLVING = "resolving"
    PLUGIN_READY = "plugin_ready"
    CONFIGURED = "configured"
    REFRESHED = "refreshed"
    APPLYING = "applying"
    DESTROYING = "destroying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DeploymentResult:
    """Outcome of one lifecycle run.

    Attributes
    ----------
    stack_name
        Resolved stack name.
    project_name
        Pulumi project owning the stack.
    intent
        Requested intent.
    state
        Terminal state, ``SUCCEEDED`` or ``FAILED``.
    transitions
        Every state the run entered, in order.
    summary
        Engine update summary (``result`` and ``resource_changes``).
    outputs
        Stack outputs; secret outputs are replaced with ``"[secret]"``.
    error
        Failure cause when ``state`` is ``FAILED``.
    """

    stack_name: str
    project_name: str
    intent: Intent
    state: LifecycleState
    transitions: tuple[LifecycleState, ...]
    summary: dict[str, object] = field(default_factory=dict)
    outputs: dict[str, object] = field(default_factory=dict)
    error: VmStackError | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is LifecycleState.SUCCEEDED


def summarise_result(result: Any) -> dict[str, object]:
    """Extract the update summary from an engine result."""
    summary = getattr(result, "summary", None)
    if summary is None:
        return {}
    changes = getattr(summary, "resource_changes", None)
    return {
        "result": getattr(summary, "result", None),
        "resource_changes": dict(changes) if changes else {},
    }


def extract_outputs(result: Any) -> dict[str, object]:
    """Return plain stack outputs, hiding secret values."""
    outputs: dict[str, object] = {}
    for key, output in (getattr(result, "outputs", None) or {}).items():
        outputs[key] = SECRET_OUTPUT if getattr(output, "secret", False) else output.value
    return outputs


class LifecycleOrchestrator:
    """Drive select/create, plugin install, config, refresh, and up/destroy.

    Parameters
    ----------
    settings
        Process-wide settings holding the Linode token and system tag.
    stacks
        Factory used to select or create stacks.
    locks
        Per-stack lock registry; share one instance between orchestrators
        serving the same engine state.
    clock
        Date source for stack names.
    on_output
        Receives redacted engine output lines; defaults to ``logger.info``.
    """

    def __init__(
        self,
        settings: Settings,
        stacks: StackFactory,
        *,
        locks: StackLocks | None = None,
        clock: Clock = utc_today,
        on_output: Callable[[str], object] | None = None,
    ) -> None:
        self._settings = settings
        self._stacks = stacks
        self._locks = locks or StackLocks()
        self._clock = clock
        self._on_output = on_output or logger.info

    def run(self, request: VmRequest, cancel: CancelToken | None = None) -> DeploymentResult:
        """Execute ``request`` and return its terminal result.

        Failures are recorded on the result instead of being raised, each
        carrying its underlying cause as ``__cause__``.
        """
        token = cancel or CancelToken()
        spec = request.spec
        stack_name = resolve_stack_name(spec.requester, spec.operating_system, self._clock)
        run = _Run(request, stack_name, [spec.root_password, self._settings.linode_token])
        run.enter(LifecycleState.RESOLVING)

        try:
            with self._locks.hold(stack_name, token):
                self._drive(run, token)
        except VmStackError as exc:
            run.enter(LifecycleState.FAILED)
            logger.error(
                "%s of stack %s failed with %s: %s",
                request.intent.value,
                stack_name,
                exc.kind,
                exc,
            )
            return run.result(LifecycleState.FAILED, error=exc)

        run.enter(LifecycleState.SUCCEEDED)
        logger.info("%s of stack %s succeeded", request.intent.value, stack_name)
        return run.result(LifecycleState.SUCCEEDED)

    def _drive(self, run: _Run, token: CancelToken) -> None:
        stack = self._resolve_stack(run, token)
        sink = run.output_sink(self._on_output)

        install = partial(ensure_plugin, stack.workspace, PLUGIN_NAME, PLUGIN_VERSION)
        self._step(run, token, stack, "plugin install", install)
        run.enter(LifecycleState.PLUGIN_READY)

        configure = partial(
            set_secret,
            stack,
            TOKEN_CONFIG_KEY,
            self._settings.linode_token,
            source=TOKEN_ENV_KEY,
        )
        self._step(run, token, stack, "configuration", configure)
        run.enter(LifecycleState.CONFIGURED)

        refresh = partial(stack.refresh, on_output=sink)
        self._step(run, token, stack, "refresh", refresh, error_type=RefreshError)
        run.enter(LifecycleState.REFRESHED)

        if run.request.intent is Intent.CREATE:
            run.enter(LifecycleState.APPLYING)
            up = partial(stack.up, on_output=sink)
            result = self._step(run, token, stack, "up", up, error_type=ApplyError)
            run.outputs = extract_outputs(result)
        else:
            run.enter(LifecycleState.DESTROYING)
            destroy = partial(stack.destroy, on_output=sink)
            result = self._step(run, token, stack, "destroy", destroy, error_type=DestroyError)
        run.summary = summarise_result(result)

    def _resolve_stack(self, run: _Run, token: CancelToken) -> LifecycleStack:
        spec = run.request.spec
        token.raise_if_cancelled("stack selection")
        program = build_program(spec, self._settings.system_tag)
        run.program = program

        if run.request.intent is Intent.DESTROY:
            try:
                return self._stacks.select(run.stack_name, spec.project_name, program)
            except StackNotFound as exc:
                raise DestroyError(run.redact(str(exc)), stack_missing=True) from exc
            except Exception as exc:
                msg = run.redact(f"failed to select stack {run.stack_name}: {exc}")
                raise DestroyError(msg) from exc

        try:
            return self._stacks.create_or_select(run.stack_name, spec.project_name, program)
        except Exception as exc:
            msg = run.redact(f"failed to create or select stack {run.stack_name}: {exc}")
            raise ApplyError(msg) from exc

    def _step[T](
        self,
        run: _Run,
        token: CancelToken,
        stack: LifecycleStack,
        action: str,
        call: Callable[[], T],
        *,
        error_type: type[VmStackError] = VmStackError,
    ) -> T:
        """Run one engine call, translating failures into ``error_type``."""
        token.raise_if_cancelled(action)
        logger.info("Starting %s for stack %s", action, run.stack_name)
        try:
            with watch_cancellation(token, stack.cancel):
                result = call()
        except Exception as exc:
            if token.cancelled:
                raise Cancelled(f"{action} cancelled for stack {run.stack_name}") from exc
            if isinstance(exc, VmStackError):
                raise
            declared = run.program.failure if run.program is not None else None
            if declared is not None:
                raise ResourceDeclarationError(run.redact(str(declared))) from declared
            msg = run.redact(f"{action} failed for stack {run.stack_name}: {exc}")
            raise error_type(msg) from exc

        if token.cancelled:
            raise Cancelled(f"{action} cancelled for stack {run.stack_name}")
        logger.info("Finished %s for stack %s", action, run.stack_name)
        return result


class _Run:
    """Mutable bookkeeping for one in-flight run."""

    def __init__(self, request: VmRequest, stack_name: str, secrets: Iterable[str | None]) -> None:
        self.request = request
        self.stack_name = stack_name
        self.transitions: list[LifecycleState] = []
        self.summary: dict[str, object] = {}
        self.outputs: dict[str, object] = {}
        self.program: DeploymentProgram | None = None
        self._secrets = tuple(secrets)

    def enter(self, state: LifecycleState) -> None:
        self.transitions.append(state)
        logger.debug("Stack %s entered %s", self.stack_name, state.value)

    def redact(self, text: str) -> str:
        return redact_secrets(text, self._secrets)

    def output_sink(self, sink: Callable[[str], object]) -> Callable[[str], None]:
        def _emit(line: str) -> None:
            sink(self.redact(line))

        return _emit

    def result(self, state: LifecycleState, error: VmStackError | None = None) -> DeploymentResult:
        return DeploymentResult(
            stack_name=self.stack_name,
            project_name=self.request.spec.project_name,
            intent=self.request.intent,
            state=state,
            transitions=tuple(self.transitions),
            summary=dict(self.summary),
            outputs=dict(self.outputs),
            error=error,
        )
