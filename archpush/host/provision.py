"""Build host provisioning.

This module handles:
- Allocating swap space for memory-hungry cross-compiles
- Replacing the image store with a fixed-size tmpfs mount
- Restarting the docker daemon so it picks up the new mount

Provisioning must complete before anything touches the image store. A
half-provisioned host is not safe to build on, so every failure raises
ProvisionError immediately and nothing is retried.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from archpush.errors import CommandError, ProvisionError
from archpush.runner import run_command

logger = logging.getLogger(__name__)

PROC_MEMINFO = Path("/proc/meminfo")
PROC_MOUNTS = Path("/proc/mounts")
DEFAULT_SWAP_FILE = Path("/swapfile")
DEFAULT_IMAGE_STORE = Path("/var/lib/docker")

GIB = 1024**3


def current_swap_bytes(meminfo_path: Path = PROC_MEMINFO) -> int:
    """Return the total swap configured on the host, in bytes.

    Args:
        meminfo_path: Path to a meminfo file.

    Returns:
        Total swap in bytes (0 if unknown).
    """
    try:
        content = meminfo_path.read_text(encoding="utf-8")
    except OSError:
        return 0
    for line in content.splitlines():
        if line.startswith("SwapTotal:"):
            parts = line.split()
            if len(parts) >= 2 and parts[1].isdigit():
                return int(parts[1]) * 1024
    return 0


def tmpfs_size_bytes(mount_point: Path, mounts_path: Path = PROC_MOUNTS) -> int | None:
    """Return the size of a tmpfs mounted at ``mount_point``.

    Args:
        mount_point: Directory to look up.
        mounts_path: Path to a mounts table.

    Returns:
        Size in bytes, or None if no tmpfs is mounted there.
    """
    try:
        content = mounts_path.read_text(encoding="utf-8")
    except OSError:
        return None

    size: int | None = None
    for line in content.splitlines():
        fields = line.split()
        if len(fields) < 4 or fields[1] != str(mount_point):
            continue
        # Later entries shadow earlier ones on the same mount point
        if fields[2] != "tmpfs":
            size = None
            continue
        size = 0
        for option in fields[3].split(","):
            if option.startswith("size="):
                size = _parse_size(option[len("size=") :])
    return size


def _parse_size(value: str) -> int:
    """Parse a mount size option such as '13631488k' or '13G'."""
    units = {"k": 1024, "m": 1024**2, "g": 1024**3}
    suffix = value[-1:].lower()
    if suffix in units:
        return int(value[:-1]) * units[suffix]
    return int(value)


def _privileged(args: list[str], use_sudo: bool) -> list[str]:
    return ["sudo", *args] if use_sudo else args


def ensure_swap(
    min_swap_gb: int,
    swap_file: Path = DEFAULT_SWAP_FILE,
    use_sudo: bool = False,
    meminfo_path: Path = PROC_MEMINFO,
) -> bool:
    """Make sure at least ``min_swap_gb`` of swap is available.

    Args:
        min_swap_gb: Required swap in GiB.
        swap_file: Swap file to (re)create.
        use_sudo: Prefix host commands with sudo.
        meminfo_path: Path to a meminfo file.

    Returns:
        True if swap was allocated, False if the host already had enough.

    Raises:
        ProvisionError: If any swap command fails.
    """
    if min_swap_gb <= 0:
        return False

    current = current_swap_bytes(meminfo_path)
    if current >= min_swap_gb * GIB:
        logger.info(
            "Swap already sufficient (%.1f GiB >= %d GiB)", current / GIB, min_swap_gb
        )
        return False

    logger.info("Allocating %d GiB swap at %s", min_swap_gb, swap_file)
    # The old swap file may be active; releasing it is allowed to fail
    run_command(_privileged(["swapoff", str(swap_file)], use_sudo), check=False)

    steps = [
        ["fallocate", "-l", f"{min_swap_gb}G", str(swap_file)],
        ["chmod", "600", str(swap_file)],
        ["mkswap", str(swap_file)],
        ["swapon", str(swap_file)],
    ]
    for step in steps:
        try:
            run_command(_privileged(step, use_sudo))
        except CommandError as e:
            raise ProvisionError(
                f"Swap allocation failed at '{step[0]}': {e}", step="swap"
            ) from e
    return True


def mount_image_store(
    image_store: Path,
    size_gb: int,
    use_sudo: bool = False,
    mounts_path: Path = PROC_MOUNTS,
) -> bool:
    """Mount a tmpfs of ``size_gb`` over the image store directory.

    Returns:
        True if a new mount was made, False if an identical one exists.

    Raises:
        ProvisionError: If creating the directory or mounting fails.
    """
    if size_gb <= 0:
        return False

    existing = tmpfs_size_bytes(image_store, mounts_path)
    if existing == size_gb * GIB:
        logger.info("Image store %s already on a %d GiB tmpfs", image_store, size_gb)
        return False

    logger.info("Mounting %d GiB tmpfs on %s", size_gb, image_store)
    try:
        run_command(_privileged(["mkdir", "-p", str(image_store)], use_sudo))
        run_command(
            _privileged(
                ["mount", "-t", "tmpfs", "-o", f"size={size_gb}G", "none", str(image_store)],
                use_sudo,
            )
        )
    except CommandError as e:
        raise ProvisionError(
            f"Remounting image store {image_store} failed: {e}", step="mount"
        ) from e
    return True


def restart_daemon(use_sudo: bool = False, service: str = "docker") -> None:
    """Restart the build engine daemon.

    Raises:
        ProvisionError: If the restart fails.
    """
    logger.info("Restarting %s daemon", service)
    try:
        run_command(_privileged(["systemctl", "restart", service], use_sudo))
    except CommandError as e:
        raise ProvisionError(
            f"Restarting {service} failed: {e}", step="restart"
        ) from e


def provision(
    min_swap_gb: int,
    image_store_size_gb: int,
    image_store: Path = DEFAULT_IMAGE_STORE,
    swap_file: Path = DEFAULT_SWAP_FILE,
    use_sudo: bool | None = None,
    meminfo_path: Path = PROC_MEMINFO,
    mounts_path: Path = PROC_MOUNTS,
) -> None:
    """Provision the build host.

    Allocates swap, replaces the image store with a tmpfs and restarts the
    daemon when the mount changed.

    Args:
        min_swap_gb: Minimum swap in GiB (0 skips swap).
        image_store_size_gb: tmpfs size in GiB (0 skips the remount).
        image_store: Image store directory.
        swap_file: Swap file path.
        use_sudo: Prefix commands with sudo; defaults to "not running as root".
        meminfo_path: Path to a meminfo file.
        mounts_path: Path to a mounts table.

    Raises:
        ProvisionError: If any step fails.
    """
    if use_sudo is None:
        use_sudo = os.geteuid() != 0

    ensure_swap(min_swap_gb, swap_file, use_sudo=use_sudo, meminfo_path=meminfo_path)
    remounted = mount_image_store(
        image_store, image_store_size_gb, use_sudo=use_sudo, mounts_path=mounts_path
    )
    if remounted:
        restart_daemon(use_sudo=use_sudo)
    logger.info("Host provisioned")


__all__ = [
    "current_swap_bytes",
    "ensure_swap",
    "mount_image_store",
    "provision",
    "restart_daemon",
    "tmpfs_size_bytes",
]
