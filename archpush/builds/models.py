"""Build request and publish result models.

A BuildRequest describes one platform build; a PublishResult records its
outcome. Both live for a single run. A RunReport aggregates the results
of every platform in the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from archpush.builds.tags import split_image_ref
from archpush.cache.store import CacheStore
from archpush.types import Platform, PublishStatus


@dataclass(frozen=True)
class BuildRequest:
    """One platform build.

    Attributes:
        source_context: Build context directory.
        dockerfile_path: Dockerfile path.
        target_platform: The single platform to build.
        tags: Full image references to attach and push.
        cache_ref: Cache store the build reads from and writes to.
        floating_tag: Tag name of the mutable alias among ``tags``.

    Raises:
        ValueError: If ``tags`` lacks the floating alias or a version tag.
    """

    source_context: Path
    dockerfile_path: Path
    target_platform: Platform
    tags: tuple[str, ...]
    cache_ref: CacheStore
    floating_tag: str = "latest"

    def __post_init__(self) -> None:
        if not self.tags:
            raise ValueError("tags must not be empty")
        tag_names = [split_image_ref(t)[1] for t in self.tags]
        if self.floating_tag not in tag_names:
            raise ValueError(f"tags must include the '{self.floating_tag}' alias")
        if all(name == self.floating_tag for name in tag_names):
            raise ValueError("tags must include a version-specific tag")

    @property
    def version_tags(self) -> tuple[str, ...]:
        """Tags other than the floating alias."""
        return tuple(
            t for t in self.tags if split_image_ref(t)[1] != self.floating_tag
        )


@dataclass
class PublishResult:
    """Outcome of one platform's build-and-push.

    Attributes:
        platform: Platform that was built.
        success: Whether the image was built and every tag pushed.
        image_digest: Digest of the pushed image.
        pushed_tags: Tags that now point at ``image_digest``.
        error_detail: Human-readable failure description.
        error_code: Stable failure code (build_failed, push_failed, ...).
        log_path: Build log file.
        cache_generation: Cache generation written by this build.
        started_at: Build start time.
        finished_at: Build finish time.
    """

    platform: Platform
    success: bool
    image_digest: str | None = None
    pushed_tags: list[str] = field(default_factory=list)
    error_detail: str | None = None
    error_code: str | None = None
    log_path: str | None = None
    cache_generation: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def status(self) -> PublishStatus:
        return PublishStatus.SUCCEEDED if self.success else PublishStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "platform": self.platform.value,
            "docker_platform": self.platform.docker_platform,
            "status": self.status.value,
            "success": self.success,
            "image_digest": self.image_digest,
            "pushed_tags": list(self.pushed_tags),
            "error_code": self.error_code,
            "error_detail": self.error_detail,
            "log_path": self.log_path,
            "cache_generation": self.cache_generation,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


def floating_tag_owner(results: list[PublishResult]) -> Platform | None:
    """Return the platform whose image the shared tags resolve to.

    Every platform pushes the same floating and version tags, so the
    registry keeps whichever image was pushed last.
    """
    for result in reversed(results):
        if result.success:
            return result.platform
    return None


@dataclass
class RunReport:
    """Aggregate outcome of a release run.

    Attributes:
        ref_name: Triggering reference (the immutable tag).
        image_name: Image repository the run published to.
        results: One PublishResult per requested platform, in build order.
        started_at: Run start time.
        finished_at: Run finish time.
    """

    ref_name: str
    image_name: str
    results: list[PublishResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        """True only if every platform published."""
        return all(r.success for r in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    @property
    def failed_platforms(self) -> list[Platform]:
        return [r.platform for r in self.results if not r.success]

    @property
    def floating_tag_platform(self) -> Platform | None:
        return floating_tag_owner(self.results)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        owner = self.floating_tag_platform
        return {
            "ref_name": self.ref_name,
            "image_name": self.image_name,
            "success": self.success,
            "exit_code": self.exit_code,
            "floating_tag_platform": owner.value if owner else None,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "results": [r.to_dict() for r in self.results],
        }


__all__ = [
    "BuildRequest",
    "PublishResult",
    "RunReport",
    "floating_tag_owner",
]
