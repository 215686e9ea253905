"""Build service module.

This module provides the high-level build API:
- plan_requests(): Turn a run definition and trigger into BuildRequests
- build_and_publish(): Build and push every request, one platform at a time

Platforms are built strictly in sequence against one builder, one
registry session and one cache store. A failure on one platform is
recorded in its PublishResult and never stops the remaining platforms.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from archpush.builder.service import BuilderHandle
from archpush.builds.models import BuildRequest, PublishResult, floating_tag_owner
from archpush.builds.runner import run_buildx
from archpush.builds.tags import compose_tags
from archpush.cache.keys import (
    compute_context_digest,
    compute_inputs_digest,
    create_cache_inputs,
)
from archpush.cache.store import CacheStore
from archpush.definition import RunDefinition
from archpush.errors import BuildError, CacheError, PushError
from archpush.registry.auth import AuthSession
from archpush.trigger import Trigger
from archpush.types import Platform

logger = logging.getLogger(__name__)


def plan_requests(
    definition: RunDefinition,
    trigger: Trigger,
    image_name: str,
    cache_store: CacheStore,
) -> list[BuildRequest]:
    """Create one BuildRequest per platform, in definition order.

    Args:
        definition: Run definition.
        trigger: Trigger providing the immutable tag.
        image_name: Fully qualified image name without tag.
        cache_store: Shared cache store.

    Returns:
        List of BuildRequests sharing context, Dockerfile, tags and cache.
    """
    tags = compose_tags(image_name, trigger.ref_name, definition.floating_tag)
    return [
        BuildRequest(
            source_context=definition.context,
            dockerfile_path=definition.dockerfile,
            target_platform=platform,
            tags=tags,
            cache_ref=cache_store,
            floating_tag=definition.floating_tag,
        )
        for platform in definition.platforms
    ]


def _warn_shared_tags(requests: Sequence[BuildRequest]) -> None:
    """Log the last-writer-wins ordering of shared tags."""
    seen: dict[str, list[Platform]] = {}
    for request in requests:
        for tag in request.tags:
            seen.setdefault(tag, []).append(request.target_platform)
    for tag, platforms in seen.items():
        if len(platforms) > 1:
            logger.warning(
                "Tag %s is pushed by %d platforms; it will resolve to the "
                "last successful one in order %s",
                tag,
                len(platforms),
                " -> ".join(p.value for p in platforms),
            )


def _inputs_digest(
    request: BuildRequest,
    memo: dict[tuple[Path, Path], tuple[str, int]],
) -> str | None:
    """Compute the cache input digest of a request, hashing each context once."""
    key = (request.source_context, request.dockerfile_path)
    try:
        if key not in memo:
            memo[key] = compute_context_digest(request.source_context)
        inputs = create_cache_inputs(
            request.source_context,
            request.dockerfile_path,
            request.target_platform,
            context_digest=memo[key],
        )
    except (OSError, ValueError) as e:
        logger.warning("Cannot hash build context %s: %s", key[0], e)
        return None
    return compute_inputs_digest(inputs)


def publish_platform(
    request: BuildRequest,
    builder: BuilderHandle,
    session: AuthSession | None,
    read_from: Sequence[Platform],
    log_dir: Path,
    push: bool = True,
    docker_bin: str = "docker",
    timeout: int | None = None,
    inputs_digest: str | None = None,
) -> PublishResult:
    """Build and push a single platform.

    Cache is read before the build and written back afterwards whether the
    build succeeded or not. Build and push failures are caught here and
    turned into a failed PublishResult.

    Args:
        request: BuildRequest for the platform.
        builder: Shared builder.
        session: Registry session (None when not pushing).
        read_from: Platforms already built in this run.
        log_dir: Directory for build logs.
        push: Push after building.
        docker_bin: Docker CLI executable.
        timeout: Build timeout in seconds.
        inputs_digest: Digest of the build inputs, stored with the cache.

    Returns:
        PublishResult for the platform.
    """
    platform = request.target_platform
    store = request.cache_ref
    started_at = datetime.now(timezone.utc)
    result = PublishResult(platform=platform, success=False, started_at=started_at)

    try:
        cache = store.open_ref(platform, read_from=read_from)
    except CacheError as e:
        result.error_code = e.code
        result.error_detail = str(e)
        result.finished_at = datetime.now(timezone.utc)
        logger.error("Cannot prepare cache for %s: %s", platform.value, e)
        return result

    logger.info(
        "Building %s (cache from %d generation(s))",
        platform.docker_platform,
        len(cache.read_paths),
    )
    build_succeeded = False
    try:
        outcome = run_buildx(
            request,
            builder,
            cache,
            log_dir=log_dir,
            push=push,
            docker_bin=docker_bin,
            timeout=timeout,
            env_override=session.env if session else None,
        )
        result.log_path = str(outcome.log_path)
        if not outcome.success:
            error_cls = PushError if outcome.push_failed else BuildError
            raise error_cls(
                outcome.error_message or "build failed",
                platform=platform,
                exit_code=outcome.exit_code,
                log_path=str(outcome.log_path),
            )
        build_succeeded = True
        result.success = True
        result.image_digest = outcome.image_digest
        result.pushed_tags = list(request.tags) if push else []
        logger.info(
            "Published %s: %s (%s)",
            platform.docker_platform,
            ", ".join(result.pushed_tags) or "not pushed",
            outcome.image_digest or "digest unknown",
        )
    except BuildError as e:
        result.error_code = e.code
        result.error_detail = str(e)
        result.log_path = e.log_path or result.log_path
    finally:
        metadata: dict[str, Any] = {"build_succeeded": build_succeeded}
        if inputs_digest:
            metadata["inputs_digest"] = inputs_digest
        try:
            generation = store.promote(cache, metadata=metadata)
        except CacheError as e:
            logger.warning("Cache not saved for %s: %s", platform.value, e)
            store.discard(cache)
        else:
            result.cache_generation = generation.name if generation else None
        result.finished_at = datetime.now(timezone.utc)

    return result


def build_and_publish(
    requests: Sequence[BuildRequest],
    builder: BuilderHandle,
    session: AuthSession | None,
    log_dir: Path,
    push: bool = True,
    docker_bin: str = "docker",
    timeout: int | None = None,
    record_inputs: bool = True,
) -> list[PublishResult]:
    """Build and publish every request in order.

    Exactly one PublishResult is returned per request, in request order,
    regardless of individual failures.

    Args:
        requests: BuildRequests in build order.
        builder: Builder shared by every request.
        session: Registry session shared by every push.
        log_dir: Directory for build logs.
        push: Push after building.
        docker_bin: Docker CLI executable.
        timeout: Per-platform build timeout in seconds.
        record_inputs: Hash the build context and store the digest with
            each cache generation.

    Returns:
        List of PublishResults.
    """
    _warn_shared_tags(requests)

    context_digests: dict[tuple[Path, Path], tuple[str, int]] = {}
    results: list[PublishResult] = []
    built: list[Platform] = []

    for index, request in enumerate(requests, start=1):
        logger.info(
            "[%d/%d] %s", index, len(requests), request.target_platform.docker_platform
        )
        inputs_digest = (
            _inputs_digest(request, context_digests) if record_inputs else None
        )
        result = publish_platform(
            request,
            builder,
            session,
            read_from=list(reversed(built)),
            log_dir=log_dir,
            push=push,
            docker_bin=docker_bin,
            timeout=timeout,
            inputs_digest=inputs_digest,
        )
        results.append(result)
        built.append(request.target_platform)

    succeeded = sum(1 for r in results if r.success)
    owner = floating_tag_owner(results)
    logger.info(
        "%d/%d platform(s) published; shared tags resolve to %s",
        succeeded,
        len(results),
        owner.value if owner else "nothing new",
    )
    return results


__all__ = ["build_and_publish", "plan_requests", "publish_platform"]
