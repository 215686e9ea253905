"""Run triggers.

A run starts either from a manual dispatch or from a pushed tag matching
the definition's pattern. The triggering reference name is the only input
that varies between runs; it becomes the immutable image tag.
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass

from archpush.definition import TAG_PATTERN
from archpush.errors import TriggerError
from archpush.types import TriggerKind

_REF_PREFIXES = ("refs/tags/", "refs/heads/")


@dataclass(frozen=True)
class Trigger:
    """The event that started a run.

    Attributes:
        kind: Manual dispatch or tag push.
        ref_name: Short reference name (e.g. 'v2.3.0').
    """

    kind: TriggerKind
    ref_name: str


def short_ref_name(ref: str) -> str:
    """Strip ``refs/tags/`` or ``refs/heads/`` from a full reference."""
    for prefix in _REF_PREFIXES:
        if ref.startswith(prefix):
            return ref[len(prefix) :]
    return ref


def resolve_trigger(event_name: str, ref: str, pattern: str = "v*") -> Trigger:
    """Validate a trigger and derive the immutable tag from it.

    Args:
        event_name: 'workflow_dispatch' or 'push'.
        ref: Full or short reference name.
        pattern: Glob that tag pushes must match.

    Returns:
        Trigger with the short reference name.

    Raises:
        TriggerError: If the event is unknown, the reference does not
            match the pattern, or it is not usable as an image tag.
    """
    try:
        kind = TriggerKind(event_name)
    except ValueError:
        raise TriggerError(f"Unsupported trigger event: {event_name}") from None

    if (
        kind is TriggerKind.TAG_PUSH
        and ref.startswith("refs/")
        and not ref.startswith("refs/tags/")
    ):
        raise TriggerError(f"Push trigger is not a tag: {ref}")

    ref_name = short_ref_name(ref.strip())
    if not ref_name:
        raise TriggerError("Triggering reference is empty")

    if kind is TriggerKind.TAG_PUSH and not fnmatch.fnmatchcase(ref_name, pattern):
        raise TriggerError(f"Tag {ref_name} does not match pattern {pattern}")

    # Branch names may contain '/', which is not legal in a tag
    ref_name = ref_name.replace("/", "-")
    if not TAG_PATTERN.match(ref_name):
        raise TriggerError(f"Reference {ref_name} is not a valid image tag")

    return Trigger(kind=kind, ref_name=ref_name)


__all__ = ["Trigger", "resolve_trigger", "short_ref_name"]
