"""Derive deterministic stack names from requester identity, OS, and date."""

from __future__ import annotations

import datetime as dt
import re
from collections.abc import Callable

type Clock = Callable[[], dt.date]

_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def utc_today() -> dt.date:
    """Return the current UTC date."""
    return dt.datetime.now(dt.UTC).date()


def _stack_segment(value: str, name: str) -> str:
    segment = value.strip()
    if not segment:
        msg = f"{name} must not be blank"
        raise ValueError(msg)
    if not _SEGMENT_PATTERN.match(segment):
        msg = f"{name} {segment!r} may only contain letters, digits, '-', '_' and '.'"
        raise ValueError(msg)
    return segment


def resolve_stack_name(identity: str, os_tag: str, clock: Clock = utc_today) -> str:
    """Return the stack name for ``identity`` and ``os_tag`` on today's date.

    Requests from the same identity and OS on the same day resolve to the
    same stack, so a second create updates the existing instance instead of
    provisioning another one.

    Parameters
    ----------
    identity
        Requester identity.
    os_tag
        Operating-system tag of the requested image.
    clock
        Zero-argument callable returning the current date.

    Returns
    -------
    str
        ``"{identity}-{os_tag}-{MM-DD-YYYY}"``.

    Raises
    ------
    ValueError
        If a segment is blank or holds characters Pulumi rejects in stack
        names. Segments are never rewritten, so distinct identities never
        share a stack.

    Examples
    --------
    >>> resolve_stack_name("carlos", "ubuntu18.04", lambda: dt.date(2024, 1, 2))
    'carlos-ubuntu18.04-01-02-2024'
    """
    today = clock()
    return "-".join(
        (
            _stack_segment(identity, "identity"),
            _stack_segment(os_tag, "os_tag"),
            today.strftime("%m-%d-%Y"),
        )
    )
