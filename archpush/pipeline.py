"""Release pipeline.

This module wires the components of a release run together:

    provision -> register_emulation -> acquire_builder -> authenticate
        -> build_and_publish

Host, emulation, builder and authentication failures abort the run before
any platform is built. Build and push failures are isolated per platform
and reported in the RunReport.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from archpush.builder.service import BuilderHandle, acquire_builder
from archpush.builds.models import BuildRequest, RunReport
from archpush.builds.runner import compose_buildx_command
from archpush.builds.service import build_and_publish, plan_requests
from archpush.cache.store import STAGING_PREFIX, CacheRef, CacheStore
from archpush.config import Settings, get_settings
from archpush.definition import RunDefinition
from archpush.errors import AuthError, AuthFailureReason, TriggerError
from archpush.host.emulation import register_emulation
from archpush.host.provision import provision
from archpush.registry.auth import AuthSession, Credential, authenticate_with_retry
from archpush.trigger import Trigger

logger = logging.getLogger(__name__)


def credentials_from_settings(settings: Settings) -> Credential | None:
    """Return registry credentials from settings, if both parts are set."""
    if not settings.registry_username or settings.registry_token is None:
        return None
    return Credential(
        username=settings.registry_username, token=settings.registry_token
    )


def _plan(
    definition: RunDefinition,
    trigger: Trigger,
    image_name: str,
    cache_store: CacheStore,
) -> list[BuildRequest]:
    try:
        return plan_requests(definition, trigger, image_name, cache_store)
    except ValueError as e:
        raise TriggerError(f"Cannot tag {image_name} for {trigger.ref_name}: {e}") from e


@dataclass(frozen=True)
class PlannedBuild:
    """A build that a run would execute.

    Attributes:
        request: BuildRequest for the platform.
        command: buildx command line the run would invoke.
    """

    request: BuildRequest
    command: list[str]


def plan_run(
    definition: RunDefinition,
    trigger: Trigger,
    settings: Settings | None = None,
    username: str | None = None,
) -> list[PlannedBuild]:
    """Describe the builds of a run without touching the host.

    Commands reference the cache generations that exist now; the first
    platform's entry is not yet visible to later ones.

    Raises:
        DefinitionError: If the image namespace is unknown.
        TriggerError: If the reference cannot be used as a tag.
    """
    if settings is None:
        settings = get_settings()
    image_name = definition.image_name(username)
    store = CacheStore(settings.cache_dir)
    requests = _plan(definition, trigger, image_name, store)

    builder = BuilderHandle(
        name=definition.builder.name,
        driver=definition.builder.driver,
        platforms=tuple(p.docker_platform for p in definition.platforms),
        created=False,
    )
    planned: list[PlannedBuild] = []
    for request in requests:
        platform = request.target_platform
        current = store.current(platform)
        cache = CacheRef(
            platform=platform,
            read_paths=(current,) if current else (),
            write_path=store.platform_dir(platform) / f"{STAGING_PREFIX}<new>",
        )
        command = compose_buildx_command(
            request,
            builder,
            cache,
            metadata_file=settings.logs_dir / f"{platform.slug}.metadata.json",
            push=definition.push,
            docker_bin=settings.docker_bin,
        )
        planned.append(PlannedBuild(request=request, command=command))
    return planned


def run_release(
    definition: RunDefinition,
    trigger: Trigger,
    credentials: Credential | None,
    settings: Settings | None = None,
    cache_store: CacheStore | None = None,
    sleep: Callable[[float], None] = time.sleep,
    http_client: httpx.Client | None = None,
) -> RunReport:
    """Run a full release: prepare the host, then build and push every platform.

    Args:
        definition: Run definition.
        trigger: Validated trigger.
        credentials: Registry credentials (required when pushing).
        settings: Application settings; loaded from the environment if omitted.
        cache_store: Cache store; defaults to ``settings.cache_dir``.
        sleep: Sleep function used between login retries.
        http_client: HTTP client for the credential probe.

    Returns:
        RunReport with one PublishResult per platform.

    Raises:
        ProvisionError: If host provisioning fails.
        EmulationError: If emulation cannot be registered.
        BuilderError: If no usable builder can be acquired.
        AuthError: If the registry rejects the credentials.
        DefinitionError: If the image namespace is unknown.
        TriggerError: If the reference cannot be used as a tag.
    """
    if settings is None:
        settings = get_settings()
    if cache_store is None:
        cache_store = CacheStore(settings.cache_dir)

    username = credentials.username if credentials else None
    image_name = definition.image_name(username)
    requests = _plan(definition, trigger, image_name, cache_store)

    if definition.push and credentials is None:
        raise AuthError(
            "Registry credentials are not configured",
            reason=AuthFailureReason.INVALID_CREDENTIALS,
        )

    report = RunReport(ref_name=trigger.ref_name, image_name=image_name)
    logger.info(
        "Release %s:%s for %s",
        image_name,
        trigger.ref_name,
        ", ".join(p.value for p in definition.platforms),
    )

    if definition.provision_host:
        provision(
            definition.swap_gb,
            definition.image_store_gb,
            image_store=definition.image_store_path,
        )
    else:
        logger.info("Host provisioning disabled")

    register_emulation(
        definition.platforms,
        binfmt_image=definition.binfmt_image,
        docker_bin=settings.docker_bin,
    )

    builder = acquire_builder(
        definition.builder.driver,
        name=definition.builder.name,
        docker_bin=settings.docker_bin,
        required_platforms=definition.platforms,
    )

    with ExitStack() as stack:
        session: AuthSession | None = None
        if definition.push and credentials is not None:
            session = stack.enter_context(
                authenticate_with_retry(
                    definition.registry,
                    credentials,
                    retries=settings.auth_retries,
                    backoff_seconds=settings.auth_backoff_seconds,
                    sleep=sleep,
                    docker_bin=settings.docker_bin,
                    client=http_client,
                    timeout=settings.auth_timeout,
                )
            )

        report.results = build_and_publish(
            requests,
            builder,
            session,
            log_dir=settings.logs_dir,
            push=definition.push,
            docker_bin=settings.docker_bin,
            timeout=settings.build_timeout,
        )

    report.finished_at = datetime.now(timezone.utc)
    return report


__all__ = ["PlannedBuild", "credentials_from_settings", "plan_run", "run_release"]
