"""Image tagging policy.

Every published image gets exactly two tags: a floating alias
(``latest``) that moves on every publish, and an immutable tag equal to
the triggering reference name.
"""

from __future__ import annotations

from archpush.definition import TAG_PATTERN


def split_image_ref(ref: str) -> tuple[str, str]:
    """Split 'name:tag' into (name, tag).

    A colon before the last '/' belongs to a registry port, not a tag.
    References without a tag get 'latest', as docker does.
    """
    name, sep, tag = ref.rpartition(":")
    if not sep or "/" in tag:
        return ref, "latest"
    return name, tag


def compose_tags(
    image_name: str,
    ref_name: str,
    floating_tag: str = "latest",
) -> tuple[str, ...]:
    """Compose the tags for one publish.

    Args:
        image_name: Image name without tag (e.g. 'acme/pathfinder').
        ref_name: Triggering reference name (e.g. 'v2.3.0').
        floating_tag: Floating alias.

    Returns:
        Tuple of (floating ref, immutable ref).

    Raises:
        ValueError: If a tag is invalid or the reference equals the alias.
    """
    for tag in (floating_tag, ref_name):
        if not TAG_PATTERN.match(tag):
            raise ValueError(f"invalid tag '{tag}'")
    if ref_name == floating_tag:
        raise ValueError(
            f"reference '{ref_name}' collides with the floating tag"
        )
    return (f"{image_name}:{floating_tag}", f"{image_name}:{ref_name}")


__all__ = ["compose_tags", "split_image_ref"]
