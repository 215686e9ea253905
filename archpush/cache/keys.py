"""Cache input digests.

This module handles:
- Canonical snapshots of the inputs that affect a platform build
- Deterministic hashing of the build context and Dockerfile

The digest is recorded with every cache generation so that an entry can
be matched to the source tree it was produced from.
"""

from __future__ import annotations

import fnmatch
import hashlib
import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from archpush.types import Platform

# Schema version for digest format; bump when the snapshot layout changes
INPUTS_SCHEMA_VERSION = "1"

HASH_CHUNK_SIZE = 64 * 1024

ALWAYS_IGNORED = (".git",)


@dataclass
class CacheInputs:
    """Canonical representation of the inputs of one platform build.

    Attributes:
        schema_version: Version of the snapshot schema.
        platform: Docker platform string.
        dockerfile_sha256: Hash of the Dockerfile.
        context_sha256: Hash over all context files and their paths.
        file_count: Number of context files hashed.
    """

    schema_version: str = INPUTS_SCHEMA_VERSION
    platform: str = ""
    dockerfile_sha256: str = ""
    context_sha256: str = ""
    file_count: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_file_hash(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA-256 hash of a file."""
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def load_dockerignore(context: Path) -> list[str]:
    """Read ``.dockerignore`` patterns (comments and blanks dropped)."""
    ignore_file = context / ".dockerignore"
    if not ignore_file.is_file():
        return []
    patterns = []
    for line in ignore_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line.rstrip("/"))
    return patterns


def is_ignored(relative: str, patterns: list[str]) -> bool:
    """Check a context-relative POSIX path against ignore patterns.

    Patterns match the path itself or any of its parent directories;
    ``!pattern`` re-includes a path excluded by an earlier pattern.
    """
    parts = relative.split("/")
    if parts[0] in ALWAYS_IGNORED:
        return True
    candidates = ["/".join(parts[: i + 1]) for i in range(len(parts))]
    ignored = False
    for pattern in patterns:
        negate = pattern.startswith("!")
        body = pattern[1:] if negate else pattern
        body = body.lstrip("/")
        if any(fnmatch.fnmatchcase(c, body) for c in candidates):
            ignored = not negate
    return ignored


def compute_context_digest(context: Path) -> tuple[str, int]:
    """Hash every non-ignored file of a build context.

    Args:
        context: Build context directory.

    Returns:
        Tuple of (hex digest, number of files hashed).
    """
    patterns = load_dockerignore(context)
    sha256 = hashlib.sha256()
    count = 0
    for path in sorted(context.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(context).as_posix()
        if is_ignored(relative, patterns):
            continue
        sha256.update(relative.encode("utf-8"))
        sha256.update(b"\0")
        sha256.update(compute_file_hash(path).encode("ascii"))
        sha256.update(b"\n")
        count += 1
    return sha256.hexdigest(), count


def create_cache_inputs(
    context: Path,
    dockerfile: Path,
    platform: Platform,
    extra: dict[str, Any] | None = None,
    context_digest: tuple[str, int] | None = None,
) -> CacheInputs:
    """Snapshot the inputs of one platform build.

    Args:
        context: Build context directory.
        dockerfile: Dockerfile path.
        platform: Platform being built.
        extra: Additional inputs to include.
        context_digest: Precomputed result of compute_context_digest().
    """
    context_sha, count = context_digest or compute_context_digest(context)
    return CacheInputs(
        platform=platform.docker_platform,
        dockerfile_sha256=compute_file_hash(dockerfile) if dockerfile.is_file() else "",
        context_sha256=context_sha,
        file_count=count,
        extra=extra or {},
    )


def compute_inputs_digest(inputs: CacheInputs) -> str:
    """Compute the digest of a build input snapshot.

    Returns:
        Digest as 'sha256:<hex>'.
    """
    canonical_json = json.dumps(inputs.to_dict(), sort_keys=True, separators=(",", ":"))
    return "sha256:" + hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


__all__ = [
    "INPUTS_SCHEMA_VERSION",
    "CacheInputs",
    "compute_context_digest",
    "compute_file_hash",
    "compute_inputs_digest",
    "create_cache_inputs",
    "is_ignored",
    "load_dockerignore",
]
