"""Shared build cache store.

Layout under the cache root::

    <root>/
        linux-arm-v7/
            current -> gen-20240101T000000Z-1a2b3c4d
            gen-20240101T000000Z-1a2b3c4d/   # buildx local cache (OCI layout)
                index.json
                blobs/sha256/...
                archpush-entry.json          # generation metadata
            .staging-5e6f7a8b/               # in-flight cache export
        linux-arm64/
        linux-amd64/

Every platform reads its own current generation first and then the
current generations of the platforms built before it, so layers shared
across architectures still hit. Writes only ever go to a fresh staging
directory that is promoted by atomically swapping the ``current`` symlink;
an interrupted export leaves earlier generations untouched. Generations
accumulate until explicitly pruned.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from archpush.errors import CacheError
from archpush.types import CacheEntryInfo, Platform

logger = logging.getLogger(__name__)

CURRENT_LINK = "current"
GENERATION_PREFIX = "gen-"
STAGING_PREFIX = ".staging-"
METADATA_FILE = "archpush-entry.json"
# buildx writes this last when exporting a local cache
INDEX_FILE = "index.json"


@dataclass(frozen=True)
class CacheRef:
    """Cache endpoints for one platform build.

    Attributes:
        platform: Platform being built.
        read_paths: Generations to import from, own platform first.
        write_path: Staging directory the build exports into.
    """

    platform: Platform
    read_paths: tuple[Path, ...]
    write_path: Path

    def cache_from_args(self) -> list[str]:
        """Return buildx ``--cache-from`` arguments."""
        args: list[str] = []
        for path in self.read_paths:
            args.extend(["--cache-from", f"type=local,src={path}"])
        return args

    def cache_to_args(self) -> list[str]:
        """Return buildx ``--cache-to`` arguments."""
        return ["--cache-to", f"type=local,dest={self.write_path},mode=max"]


def _directory_size(path: Path) -> int:
    total = 0
    for item in path.rglob("*"):
        if item.is_file() and not item.is_symlink():
            total += item.stat().st_size
    return total


class CacheStore:
    """Content-addressed build cache with platform-qualified entries."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def platform_dir(self, platform: Platform) -> Path:
        return self.root / platform.slug

    def current(self, platform: Platform) -> Path | None:
        """Return the current generation of a platform, if any."""
        link = self.platform_dir(platform) / CURRENT_LINK
        if not link.is_symlink():
            return None
        target = link.resolve()
        if not (target / INDEX_FILE).is_file():
            return None
        return target

    def open_ref(
        self,
        platform: Platform,
        read_from: Iterable[Platform] = (),
    ) -> CacheRef:
        """Prepare cache endpoints for a platform build.

        Args:
            platform: Platform about to be built.
            read_from: Other platforms whose entries may also be imported.

        Returns:
            CacheRef with existing generations to read and a fresh staging
            directory to write.

        Raises:
            CacheError: If the staging directory cannot be created.
        """
        read_paths: list[Path] = []
        for p in (platform, *read_from):
            path = self.current(p)
            if path is not None and path not in read_paths:
                read_paths.append(path)

        staging = self.platform_dir(platform) / f"{STAGING_PREFIX}{uuid.uuid4().hex[:8]}"
        try:
            staging.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"Cannot create cache directory {staging.parent}: {e}") from e

        return CacheRef(platform=platform, read_paths=tuple(read_paths), write_path=staging)

    def promote(
        self,
        ref: CacheRef,
        metadata: dict[str, Any] | None = None,
    ) -> Path | None:
        """Make a staged export the platform's current generation.

        Called after every build, successful or not; a failed build that
        still exported cache keeps its partial progress.

        Args:
            ref: CacheRef used for the build.
            metadata: Extra data stored with the generation.

        Returns:
            Path of the new generation, or None if nothing was exported.

        Raises:
            CacheError: If the generation cannot be installed.
        """
        staging = ref.write_path
        if not (staging / INDEX_FILE).is_file():
            logger.info("No cache exported for %s", ref.platform.docker_platform)
            shutil.rmtree(staging, ignore_errors=True)
            return None

        now = datetime.now(timezone.utc)
        generation = (
            f"{GENERATION_PREFIX}{now.strftime('%Y%m%dT%H%M%S%fZ')}-{uuid.uuid4().hex[:8]}"
        )
        platform_dir = self.platform_dir(ref.platform)
        target = platform_dir / generation

        entry: dict[str, Any] = {
            "platform": ref.platform.docker_platform,
            "generation": generation,
            "created_at": now.isoformat(),
        }
        if metadata:
            entry.update(metadata)

        try:
            (staging / METADATA_FILE).write_text(
                json.dumps(entry, indent=2, sort_keys=True), encoding="utf-8"
            )
            os.rename(staging, target)

            tmp_link = platform_dir / f".{CURRENT_LINK}-{uuid.uuid4().hex[:8]}"
            os.symlink(generation, tmp_link)
            os.replace(tmp_link, platform_dir / CURRENT_LINK)
        except OSError as e:
            raise CacheError(
                f"Cannot promote cache for {ref.platform.docker_platform}: {e}"
            ) from e

        logger.info(
            "Cache for %s now at %s", ref.platform.docker_platform, generation
        )
        return target

    def discard(self, ref: CacheRef) -> None:
        """Drop a staging directory without promoting it."""
        shutil.rmtree(ref.write_path, ignore_errors=True)

    def _generations(self, platform_dir: Path) -> list[Path]:
        return sorted(
            p
            for p in platform_dir.iterdir()
            if p.is_dir() and not p.is_symlink() and p.name.startswith(GENERATION_PREFIX)
        )

    def entries(self) -> list[CacheEntryInfo]:
        """List every cache generation on disk."""
        if not self.root.exists():
            return []

        infos: list[CacheEntryInfo] = []
        for platform_dir in sorted(p for p in self.root.iterdir() if p.is_dir()):
            link = platform_dir / CURRENT_LINK
            current = link.resolve() if link.is_symlink() else None
            for gen in self._generations(platform_dir):
                meta: dict[str, Any] = {}
                meta_file = gen / METADATA_FILE
                if meta_file.is_file():
                    try:
                        meta = json.loads(meta_file.read_text(encoding="utf-8"))
                    except (OSError, json.JSONDecodeError):
                        logger.warning("Unreadable cache metadata: %s", meta_file)
                infos.append(
                    CacheEntryInfo(
                        platform=meta.get("platform", platform_dir.name),
                        generation=gen.name,
                        path=str(gen),
                        size_bytes=_directory_size(gen),
                        created_at=meta.get("created_at"),
                        build_succeeded=meta.get("build_succeeded"),
                        inputs_digest=meta.get("inputs_digest"),
                        current=gen.resolve() == current,
                    )
                )
        return infos

    def prune(self, keep: int = 2) -> list[Path]:
        """Remove old generations and abandoned staging directories.

        The current generation is always kept, plus up to ``keep - 1`` of
        the newest older ones.

        Returns:
            Paths that were removed.
        """
        if keep < 1:
            raise ValueError("keep must be at least 1")
        if not self.root.exists():
            return []

        removed: list[Path] = []
        for platform_dir in (p for p in self.root.iterdir() if p.is_dir()):
            link = platform_dir / CURRENT_LINK
            current = link.resolve() if link.is_symlink() else None

            for staging in platform_dir.glob(f"{STAGING_PREFIX}*"):
                shutil.rmtree(staging, ignore_errors=True)
                removed.append(staging)

            older = [
                g for g in self._generations(platform_dir) if g.resolve() != current
            ]
            kept_older = keep - 1 if current is not None else keep
            doomed = older[: max(len(older) - kept_older, 0)]
            for gen in doomed:
                shutil.rmtree(gen, ignore_errors=True)
                removed.append(gen)

        for path in removed:
            logger.info("Pruned %s", path)
        return removed


__all__ = ["CacheRef", "CacheStore"]
