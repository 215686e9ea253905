"""Shared type definitions for archpush.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum


class Platform(str, Enum):
    """Target architecture for a container image."""

    ARMV7 = "armv7"
    AARCH64 = "aarch64"
    AMD64 = "amd64"

    @property
    def docker_platform(self) -> str:
        """Platform string understood by buildx (``--platform``)."""
        return _DOCKER_PLATFORMS[self]

    @property
    def binfmt_arch(self) -> str:
        """Architecture name passed to the binfmt installer (``--install``)."""
        return _BINFMT_ARCHES[self]

    @property
    def binfmt_entry(self) -> str:
        """Name of the handler under ``/proc/sys/fs/binfmt_misc``."""
        return _BINFMT_ENTRIES[self]

    @property
    def slug(self) -> str:
        """Filesystem-safe form of the docker platform string."""
        return self.docker_platform.replace("/", "-")

    @classmethod
    def from_machine(cls, machine: str) -> "Platform | None":
        """Map a host machine name (``uname -m``) to a platform, if known."""
        return _MACHINE_ALIASES.get(machine.lower())


_DOCKER_PLATFORMS = {
    Platform.ARMV7: "linux/arm/v7",
    Platform.AARCH64: "linux/arm64",
    Platform.AMD64: "linux/amd64",
}

_BINFMT_ARCHES = {
    Platform.ARMV7: "arm",
    Platform.AARCH64: "arm64",
    Platform.AMD64: "amd64",
}

_BINFMT_ENTRIES = {
    Platform.ARMV7: "qemu-arm",
    Platform.AARCH64: "qemu-aarch64",
    Platform.AMD64: "qemu-x86_64",
}

_MACHINE_ALIASES = {
    "x86_64": Platform.AMD64,
    "amd64": Platform.AMD64,
    "aarch64": Platform.AARCH64,
    "arm64": Platform.AARCH64,
    "armv7l": Platform.ARMV7,
    "armv7": Platform.ARMV7,
}


class DriverKind(str, Enum):
    """Buildx driver used for the builder instance."""

    DOCKER_CONTAINER = "docker-container"
    KUBERNETES = "kubernetes"
    REMOTE = "remote"


class TriggerKind(str, Enum):
    """What started a run."""

    MANUAL = "workflow_dispatch"
    TAG_PUSH = "push"


class PublishStatus(str, Enum):
    """Outcome of one platform's build-and-push."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class CommandResult:
    """Result of an external command.

    Attributes:
        args: The command that was executed.
        exit_code: Process exit code.
        stdout: Captured standard output ("" when output went to a log).
        stderr: Captured standard error.
    """

    args: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class CacheEntryInfo:
    """Information about one cache generation on disk."""

    platform: str
    generation: str
    path: str
    size_bytes: int
    created_at: str | None = None
    build_succeeded: bool | None = None
    inputs_digest: str | None = None
    current: bool = False


__all__ = [
    "CacheEntryInfo",
    "CommandResult",
    "DriverKind",
    "Platform",
    "PublishStatus",
    "TriggerKind",
]
