"""Cross-architecture emulation registration.

Non-native platforms are built under QEMU user-mode emulation. The
handlers are installed into the kernel's binfmt_misc table by running
the binfmt installer image once per missing architecture. Registration is
idempotent and fails fast: a platform that cannot be emulated would only
fail later, at build time.
"""

from __future__ import annotations

import logging
import platform as host_platform
from collections.abc import Iterable
from pathlib import Path

from archpush.errors import CommandError, EmulationError
from archpush.runner import run_command
from archpush.types import Platform

logger = logging.getLogger(__name__)

BINFMT_MISC_DIR = Path("/proc/sys/fs/binfmt_misc")
DEFAULT_BINFMT_IMAGE = "tonistiigi/binfmt:latest"


def native_platform(machine: str | None = None) -> Platform | None:
    """Return the platform the host runs natively, if it is a known one."""
    return Platform.from_machine(machine or host_platform.machine())


def is_registered(platform: Platform, binfmt_dir: Path = BINFMT_MISC_DIR) -> bool:
    """Check whether an enabled handler exists for ``platform``."""
    entry = binfmt_dir / platform.binfmt_entry
    if not entry.exists():
        return False
    try:
        first_line = entry.read_text(encoding="utf-8").splitlines()[:1]
    except OSError:
        return False
    return first_line == ["enabled"]


def register_emulation(
    platforms: Iterable[Platform],
    binfmt_image: str = DEFAULT_BINFMT_IMAGE,
    docker_bin: str = "docker",
    machine: str | None = None,
    binfmt_dir: Path = BINFMT_MISC_DIR,
) -> list[Platform]:
    """Install emulation handlers for every non-native platform.

    Args:
        platforms: Platforms that will be built.
        binfmt_image: Installer image.
        docker_bin: Docker CLI executable.
        machine: Host machine name override (defaults to ``uname -m``).
        binfmt_dir: binfmt_misc directory.

    Returns:
        Platforms that were newly registered (empty when nothing was needed).

    Raises:
        EmulationError: Naming every platform that is still not emulated.
    """
    native = native_platform(machine)
    missing = [
        p
        for p in dict.fromkeys(platforms)
        if p is not native and not is_registered(p, binfmt_dir)
    ]
    if not missing:
        logger.info("Emulation already available for all platforms")
        return []

    arches = ",".join(p.binfmt_arch for p in missing)
    logger.info("Installing emulation handlers: %s", arches)
    detail = ""
    try:
        run_command(
            [docker_bin, "run", "--privileged", "--rm", binfmt_image, "--install", arches]
        )
    except CommandError as e:
        detail = str(e)

    failed = [p for p in missing if not is_registered(p, binfmt_dir)]
    if failed:
        raise EmulationError(failed, detail=detail)

    for p in missing:
        logger.info("Registered emulation for %s", p.docker_platform)
    return missing


__all__ = ["is_registered", "native_platform", "register_emulation"]
