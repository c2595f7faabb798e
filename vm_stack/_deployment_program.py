"""Inline Pulumi program declaring the requested Linode instance.

The program is a pure function of the ``VmSpecification``: the engine may
run it repeatedly while diffing, and every run declares the same desired
state.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

import pulumi
import pulumi_linode as linode

from vm_stack._vm_spec import VmSpecification
from vm_stack._vm_stack_errors import ResourceDeclarationError


@dataclass(frozen=True, slots=True)
class InstanceDeclaration:
    """Resource name and constructor arguments of the declared instance."""

    resource_name: str
    args: Mapping[str, object]

    def __repr__(self) -> str:
        shown = {k: ("***" if k == "root_pass" else v) for k, v in self.args.items()}
        return f"InstanceDeclaration(resource_name={self.resource_name!r}, args={shown!r})"


def declare_instance(spec: VmSpecification, system_tag: str) -> InstanceDeclaration:
    """Return the instance declaration for ``spec``.

    Examples
    --------
    >>> declare_instance(spec, "slack-bot").args["tags"]
    ('slack-bot', 'carlos')
    """
    args = {
        "image": spec.image,
        "label": spec.label,
        "private_ip": spec.private_ip,
        "region": spec.region,
        "root_pass": spec.root_password,
        "swap_size": spec.swap_size,
        "tags": (system_tag, spec.requester),
        "type": spec.instance_type,
    }
    return InstanceDeclaration(resource_name=spec.instance_name, args=MappingProxyType(args))


class DeploymentProgram:
    """Inline program declaring one instance.

    The Automation API runs the program inside ``up`` and reports a failed
    declaration only as an engine error, so the program keeps the
    ``ResourceDeclarationError`` it raised in ``failure`` for the caller.
    """

    def __init__(self, declaration: InstanceDeclaration) -> None:
        self.declaration = declaration
        self.failure: ResourceDeclarationError | None = None

    def __call__(self) -> None:
        declaration = self.declaration
        args = dict(declaration.args)
        args["tags"] = list(declaration.args["tags"])  # type: ignore[arg-type]
        try:
            instance = linode.Instance(declaration.resource_name, **args)
        except Exception as exc:
            msg = f"failed to declare instance {declaration.resource_name!r}: {exc}"
            self.failure = ResourceDeclarationError(msg)
            raise self.failure from exc

        pulumi.export("instance_id", instance.id)
        pulumi.export("instance_label", instance.label)
        pulumi.export("ip_address", instance.ip_address)


def build_program(spec: VmSpecification, system_tag: str) -> DeploymentProgram:
    """Return the inline program passed to the Automation API.

    Raises
    ------
    ResourceDeclarationError
        From the returned program, when the instance cannot be declared.
    """
    return DeploymentProgram(declare_instance(spec, system_tag))
