"""AWS Lambda entry points for VM stack requests.

``handle_request`` serves direct invocations and API Gateway proxy events and
answers with an HTTP-style response mapping. ``handle_queue_event`` processes
SQS batches, acknowledging every record it starts and handing back only
those left unstarted at the invocation deadline.

Both translate their input into a ``VmRequest``, run it through one shared
``LifecycleOrchestrator``, and map the ``DeploymentResult`` back. Settings
and the orchestrator are built once per process on first use.
"""

from __future__ import annotations

import functools
import json
import logging
from collections import abc as cabc
from typing import Any

from vm_stack._concurrency import CancelToken
from vm_stack._lifecycle import DeploymentResult, LifecycleOrchestrator
from vm_stack._pulumi_stacks import build_stack_factory
from vm_stack._settings import load_settings
from vm_stack._vm_spec import Intent, VmRequest, parse_request
from vm_stack._vm_stack_errors import (
    Cancelled,
    ConfigurationError,
    DestroyError,
    InvalidSpecification,
    VmStackError,
)

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}

# Seconds kept back from the Lambda deadline to report a cancelled run.
DEADLINE_MARGIN = 10.0


@functools.cache
def default_orchestrator() -> LifecycleOrchestrator:
    """Return the process-wide orchestrator, loading settings on first use."""
    settings = load_settings()
    return LifecycleOrchestrator(settings, build_stack_factory(settings))


def status_for(error: VmStackError | None) -> int:
    """Map an orchestration error to an HTTP status code.

    Examples
    --------
    >>> status_for(None)
    200
    >>> status_for(InvalidSpecification("region must be a non-empty string"))
    400
    """
    match error:
        case None:
            return 200
        case InvalidSpecification():
            return 400
        case DestroyError(stack_missing=True):
            return 404
        case Cancelled():
            return 504
        case ConfigurationError():
            return 500
        case _:
            return 502


def _response(status: int, body: cabc.Mapping[str, object]) -> dict[str, Any]:
    return {
        "statusCode": status,
        "headers": dict(JSON_HEADERS),
        "body": json.dumps(body, default=str),
    }


def error_response(error: VmStackError) -> dict[str, Any]:
    """Return the response for ``error``; its message is already redacted."""
    return _response(status_for(error), {"error": error.kind, "message": str(error)})


def result_response(request: VmRequest, result: DeploymentResult) -> dict[str, Any]:
    if result.error is not None:
        return error_response(result.error)
    return _response(
        200,
        {
            "stack": result.stack_name,
            "project": result.project_name,
            "intent": result.intent.value,
            "state": result.state.value,
            "summary": result.summary,
            "outputs": result.outputs,
            "request": request.spec.to_public_mapping(),
        },
    )


def _request_payload(event: object) -> object:
    """Return the request mapping from a direct or API Gateway event."""
    if isinstance(event, cabc.Mapping) and "body" in event and "vmOptions" not in event:
        body = event["body"]
        if isinstance(body, str):
            try:
                return json.loads(body)
            except json.JSONDecodeError as exc:
                msg = f"request body is not valid JSON: {exc.msg}"
                raise InvalidSpecification(msg) from exc
        return body
    return event


def cancel_token_for(context: object) -> CancelToken:
    """Return a token expiring shortly before the Lambda invocation deadline."""
    remaining_ms = getattr(context, "get_remaining_time_in_millis", None)
    if remaining_ms is None:
        return CancelToken()
    seconds = remaining_ms() / 1000 - DEADLINE_MARGIN
    return CancelToken.after(max(seconds, 0.0))


def _handle(
    event: object,
    cancel: CancelToken,
    orchestrator: LifecycleOrchestrator | None,
) -> dict[str, Any]:
    try:
        request = parse_request(_request_payload(event), default_intent=Intent.CREATE)
    except InvalidSpecification as exc:
        logger.warning("Rejected request: %s", exc)
        return error_response(exc)

    runner = orchestrator or default_orchestrator()
    result = runner.run(request, cancel)
    return result_response(request, result)


def handle_request(
    event: object,
    context: object = None,
    *,
    orchestrator: LifecycleOrchestrator | None = None,
) -> dict[str, Any]:
    """Lambda handler: create (default) or destroy the requested VM stack.

    Parameters
    ----------
    event
        Request mapping, or an API Gateway proxy event whose ``body`` holds
        the request as JSON.
    context
        Lambda context; its remaining time bounds the run.
    orchestrator
        Orchestrator to use instead of the process-wide default.

    Returns
    -------
    dict[str, Any]
        ``statusCode``, ``headers``, and a JSON ``body``.
    """
    return _handle(event, cancel_token_for(context), orchestrator)


def handle_queue_event(
    event: cabc.Mapping[str, Any],
    context: object = None,
    *,
    orchestrator: LifecycleOrchestrator | None = None,
) -> dict[str, list[dict[str, str]]]:
    """Process an SQS batch of requests, one record at a time.

    Every record that is rejected or runs to a terminal result is
    acknowledged, whether it succeeded or failed; infrastructure mutations
    are never redelivered. Only records left unstarted when the invocation
    deadline passes are handed back to the queue.

    Returns
    -------
    dict[str, list[dict[str, str]]]
        Partial batch response listing the message IDs that never started.
    """
    cancel = cancel_token_for(context)
    unstarted: list[dict[str, str]] = []
    for record in event.get("Records", []):
        message_id = str(record.get("messageId", ""))
        if cancel.cancelled:
            logger.warning("Deadline reached; returning queued request %s", message_id)
            unstarted.append({"itemIdentifier": message_id})
            continue

        response = _handle(record, cancel, orchestrator)
        if response["statusCode"] != 200:
            body = json.loads(response["body"])
            logger.error(
                "Queued request %s failed with %s (status %s): %s",
                message_id,
                body["error"],
                response["statusCode"],
                body["message"],
            )
    return {"batchItemFailures": unstarted}
