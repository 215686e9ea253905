"""Builder acquisition.

This module handles:
- Inspecting an existing buildx builder by name
- Creating a builder with the requested driver when none exists
- Bootstrapping the builder and reading the platforms it supports

One builder is acquired per run and reused for every platform, so that
all platforms build against the same toolchain version.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from archpush.errors import BuilderError, CommandError
from archpush.runner import run_command
from archpush.types import DriverKind, Platform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuilderHandle:
    """An active multi-platform builder.

    Attributes:
        name: Buildx builder name.
        driver: Driver the builder runs with.
        platforms: Platform strings the builder reports.
        created: Whether this run created the builder.
    """

    name: str
    driver: DriverKind
    platforms: tuple[str, ...] = field(default_factory=tuple)
    created: bool = False

    def supports(self, platform: Platform) -> bool:
        """Check whether the builder can target ``platform``."""
        return platform.docker_platform in self.platforms


def parse_inspect_output(output: str) -> tuple[str | None, tuple[str, ...]]:
    """Parse ``docker buildx inspect`` output.

    Args:
        output: Text printed by ``docker buildx inspect``.

    Returns:
        Tuple of (driver, platforms). Platforms of all nodes are merged and
        '*' markers (user-pinned platforms) are stripped.
    """
    driver: str | None = None
    platforms: list[str] = []
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key == "Driver" and driver is None:
            driver = value
        elif key == "Platforms" and value:
            for item in value.split(","):
                name = item.strip().rstrip("*")
                if name and name not in platforms:
                    platforms.append(name)
    return driver, tuple(platforms)


def _inspect(docker_bin: str, name: str, bootstrap: bool = False) -> str | None:
    args = [docker_bin, "buildx", "inspect", name]
    if bootstrap:
        args.append("--bootstrap")
    result = run_command(args, check=bootstrap)
    if not result.ok:
        return None
    return result.stdout


def acquire_builder(
    driver: DriverKind,
    name: str = "archpush",
    docker_bin: str = "docker",
    required_platforms: Iterable[Platform] = (),
) -> BuilderHandle:
    """Create or attach to a multi-platform builder.

    Args:
        driver: Requested buildx driver.
        name: Builder name to reuse or create.
        docker_bin: Docker CLI executable.
        required_platforms: Platforms the builder must support.

    Returns:
        BuilderHandle for all subsequent builds in this run.

    Raises:
        BuilderError: If the builder cannot be created, uses a different
            driver, or lacks a required platform.
    """
    created = False
    try:
        existing = _inspect(docker_bin, name)
        if existing is not None:
            existing_driver, _ = parse_inspect_output(existing)
            if existing_driver and existing_driver != driver.value:
                raise BuilderError(
                    f"Builder {name} uses driver {existing_driver}, "
                    f"expected {driver.value}"
                )
            logger.info("Reusing builder %s", name)
        else:
            logger.info("Creating builder %s (driver=%s)", name, driver.value)
            run_command(
                [
                    docker_bin,
                    "buildx",
                    "create",
                    "--name",
                    name,
                    "--driver",
                    driver.value,
                ]
            )
            created = True

        output = _inspect(docker_bin, name, bootstrap=True) or ""
    except CommandError as e:
        raise BuilderError(f"Failed to acquire builder {name}: {e}") from e

    _, platforms = parse_inspect_output(output)
    handle = BuilderHandle(
        name=name, driver=driver, platforms=platforms, created=created
    )

    unsupported = [p for p in required_platforms if not handle.supports(p)]
    if unsupported:
        names = ", ".join(p.docker_platform for p in unsupported)
        raise BuilderError(f"Builder {name} does not support: {names}")

    logger.info("Builder %s ready: %s", name, ", ".join(platforms) or "(unknown)")
    return handle


__all__ = ["BuilderHandle", "acquire_builder", "parse_inspect_output"]
