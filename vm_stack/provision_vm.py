#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "pulumi>=3.100", "pulumi-linode>=3.7.1", "python-dotenv>=1.0"]
# ///
"""Create or destroy a Linode VM stack via the Pulumi Automation API.

This script:
- resolves the VM specification from CLI options or environment variables;
- derives the per-user, per-OS, per-day stack name;
- installs the Linode plugin, sets the API token as a stack secret, refreshes
  the stack, and runs ``up`` or ``destroy``; and
- prints the resulting summary and stack outputs.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from cyclopts import App, Parameter

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from vm_stack._concurrency import CancelToken
from vm_stack._input_resolution import InputResolution, parse_bool, resolve_input
from vm_stack._lifecycle import DeploymentResult, LifecycleOrchestrator
from vm_stack._pulumi_stacks import build_stack_factory
from vm_stack._settings import load_settings
from vm_stack._vm_spec import VmRequest, VmSpecification, parse_intent
from vm_stack._vm_stack_errors import (
    ConfigurationError,
    InvalidSpecification,
    VmStackError,
)

app = App(help="Create or destroy a Linode VM stack via the Pulumi Automation API.")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_CONFIGURATION = 3


@dataclass(frozen=True, slots=True)
class RawVmInputs:
    """Raw VM inputs from the CLI; ``None`` falls back to the environment."""

    intent: str | None = None
    requester: str | None = None
    project_name: str | None = None
    instance_name: str | None = None
    image: str | None = None
    operating_system: str | None = None
    label: str | None = None
    region: str | None = None
    root_password: str | None = None
    instance_type: str | None = None
    swap_size: str | None = None
    private_ip: str | None = None


_ENV_KEYS = {
    "intent": "VM_INTENT",
    "requester": "VM_REQUESTER",
    "project_name": "PULUMI_PROJECT_NAME",
    "instance_name": "VM_INSTANCE_NAME",
    "image": "VM_IMAGE",
    "operating_system": "VM_OPERATING_SYSTEM",
    "label": "VM_LABEL",
    "region": "VM_REGION",
    "root_password": "VM_ROOT_PASSWORD",
    "instance_type": "VM_TYPE",
    "swap_size": "VM_SWAP_SIZE",
    "private_ip": "VM_PRIVATE_IP",
}


def resolve_vm_request(raw: RawVmInputs) -> VmRequest:
    """Resolve CLI values with environment fallbacks into a ``VmRequest``.

    Raises
    ------
    InvalidSpecification
        If the intent or any specification field is missing or invalid.
    """
    values: dict[str, str] = {}
    for name, env_key in _ENV_KEYS.items():
        value = resolve_input(getattr(raw, name), InputResolution(env_key=env_key))
        values[name] = "" if value is None else str(value)

    try:
        swap_size = int(values["swap_size"] or "0")
    except ValueError as exc:
        msg = f"swap_size must be an integer, got {values['swap_size']!r}"
        raise InvalidSpecification(msg) from exc

    spec = VmSpecification(
        image=values["image"],
        operating_system=values["operating_system"],
        label=values["label"],
        private_ip=parse_bool(values["private_ip"] or None),
        region=values["region"],
        root_password=values["root_password"],
        instance_type=values["instance_type"],
        swap_size=swap_size,
        requester=values["requester"],
        project_name=values["project_name"],
        instance_name=values["instance_name"],
    )
    return VmRequest(spec=spec, intent=parse_intent(values["intent"]))


def resolve_cancel_token(timeout: float | None) -> CancelToken:
    """Return a token expiring after ``timeout`` seconds (or ``VM_TIMEOUT``)."""
    raw = resolve_input(
        None if timeout is None else str(timeout),
        InputResolution(env_key="VM_TIMEOUT"),
    )
    if raw is None:
        return CancelToken()
    try:
        seconds = float(str(raw))
    except ValueError as exc:
        msg = f"VM_TIMEOUT must be a number of seconds, got {raw!r}"
        raise ConfigurationError(msg) from exc
    if seconds <= 0:
        msg = "VM_TIMEOUT must be positive"
        raise ConfigurationError(msg)
    return CancelToken.after(seconds)


def report_result(result: DeploymentResult) -> None:
    """Print the outcome of a lifecycle run."""
    print(f"Stack: {result.project_name}/{result.stack_name}")
    print(f"  Intent: {result.intent.value}")
    print(f"  State: {result.state.value}")
    if result.summary:
        print(f"  Summary: {json.dumps(result.summary, default=str)}")
    for key, value in result.outputs.items():
        print(f"  {key}: {value}")
    if result.error is not None:
        print(f"error: {result.error.kind}: {result.error}", file=sys.stderr)


def exit_code_for(error: VmStackError | None) -> int:
    if error is None:
        return EXIT_OK
    if isinstance(error, InvalidSpecification):
        return EXIT_INVALID
    if isinstance(error, ConfigurationError):
        return EXIT_CONFIGURATION
    return EXIT_FAILED


@app.command()
def main(
    intent: str | None = Parameter(),
    requester: str | None = Parameter(),
    project_name: str | None = Parameter(),
    instance_name: str | None = Parameter(),
    image: str | None = Parameter(),
    operating_system: str | None = Parameter(),
    label: str | None = Parameter(),
    region: str | None = Parameter(),
    instance_type: str | None = Parameter(),
    swap_size: str | None = Parameter(),
    private_ip: str | None = Parameter(),
    timeout: float | None = Parameter(),
) -> int:
    """Create or destroy the VM described by CLI options and environment.

    ``--intent`` must be ``create`` or ``destroy``. Credentials never appear
    on the command line: the Linode token is read from ``LINODE_TOKEN`` and
    the root password from ``VM_ROOT_PASSWORD``.
    """
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    raw_inputs = RawVmInputs(
        intent=intent,
        requester=requester,
        project_name=project_name,
        instance_name=instance_name,
        image=image,
        operating_system=operating_system,
        label=label,
        region=region,
        instance_type=instance_type,
        swap_size=swap_size,
        private_ip=private_ip,
    )
    try:
        request = resolve_vm_request(raw_inputs)
        settings = load_settings()
        cancel = resolve_cancel_token(timeout)
    except VmStackError as exc:
        print(f"error: {exc.kind}: {exc}", file=sys.stderr)
        return exit_code_for(exc)

    orchestrator = LifecycleOrchestrator(settings, build_stack_factory(settings))
    result = orchestrator.run(request, cancel)
    report_result(result)
    return exit_code_for(result.error)


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
