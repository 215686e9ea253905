"""Build runner for executing buildx builds.

This module handles:
- Composing ``docker buildx build`` commands for a single platform
- Executing builds with subprocess, capturing output to log files
- Reading the pushed image digest from the buildx metadata file
- Telling build failures apart from push failures
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from archpush.builder.service import BuilderHandle
from archpush.builds.models import BuildRequest
from archpush.cache.store import CacheRef
from archpush.errors import BuildError

logger = logging.getLogger(__name__)

# Errors that only occur while uploading the built image
PUSH_FAILURE_MARKERS = (
    "failed to push",
    "push access denied",
    "error writing layer blob",
    "unexpected status from put request",
)

# Registry transport errors; they also occur when pulling base images, so
# they only count as push failures once the export phase has started
TRANSPORT_FAILURE_MARKERS = (
    "failed to do request",
    "toomanyrequests",
    "failed to authorize",
    "insufficient_scope",
)

PUSH_PHASE_MARKERS = (
    "exporting to image",
    "pushing layers",
    "pushing manifest",
)

LOG_TAIL_LINES = 20


@dataclass
class BuildxResult:
    """Result of a buildx invocation.

    Attributes:
        success: Whether the build (and push) succeeded.
        exit_code: Process exit code.
        log_path: Path to the build log file.
        started_at: Build start time.
        finished_at: Build finish time.
        command: The command that was executed.
        image_digest: Digest reported in the metadata file.
        push_failed: Failure happened while pushing, not while building.
        error_message: Error message if the build failed.
    """

    success: bool
    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str
    image_digest: str | None = None
    push_failed: bool = False
    error_message: str | None = None


def compose_buildx_command(
    request: BuildRequest,
    builder: BuilderHandle,
    cache: CacheRef,
    metadata_file: Path,
    push: bool = True,
    docker_bin: str = "docker",
) -> list[str]:
    """Compose the ``docker buildx build`` command for one platform.

    Args:
        request: BuildRequest to build.
        builder: Builder to run on.
        cache: Cache endpoints for this build.
        metadata_file: Where buildx writes build metadata.
        push: Push the image after building.
        docker_bin: Docker CLI executable.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        docker_bin,
        "buildx",
        "build",
        "--builder",
        builder.name,
        "--platform",
        request.target_platform.docker_platform,
        "--file",
        str(request.dockerfile_path),
        "--progress",
        "plain",
    ]
    for tag in request.tags:
        cmd.extend(["--tag", tag])
    cmd.extend(cache.cache_from_args())
    cmd.extend(cache.cache_to_args())
    cmd.extend(["--metadata-file", str(metadata_file)])
    if push:
        cmd.append("--push")
    cmd.append(str(request.source_context))
    return cmd


def read_metadata_digest(metadata_file: Path) -> str | None:
    """Return the image digest from a buildx metadata file, if present."""
    try:
        data = json.loads(metadata_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    digest = data.get("containerimage.digest")
    return str(digest) if digest else None


def error_lines(log_text: str) -> list[str]:
    """Return the ``ERROR:`` lines buildx printed."""
    return [
        line.strip()
        for line in log_text.splitlines()
        if line.lstrip().upper().startswith("ERROR")
    ]


def is_push_failure(log_text: str) -> bool:
    """Check whether a failed build log describes a push failure."""
    lines = error_lines(log_text) or log_text.splitlines()[-LOG_TAIL_LINES:]
    lowered = "\n".join(lines).lower()
    if any(marker in lowered for marker in PUSH_FAILURE_MARKERS):
        return True
    if not any(marker in lowered for marker in TRANSPORT_FAILURE_MARKERS):
        return False
    full_log = log_text.lower()
    return any(marker in full_log for marker in PUSH_PHASE_MARKERS)


def summarize_failure(log_text: str, exit_code: int) -> str:
    """Build a short failure description from a build log."""
    errors = error_lines(log_text)
    if errors:
        return errors[-1]
    return f"Build failed with exit code {exit_code}"


def _append_log(log_path: Path, text: str) -> None:
    # The build outcome stands even if the log footer cannot be written
    try:
        with log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(text)
    except OSError as e:
        logger.warning("Cannot write build log %s: %s", log_path, e)


def run_buildx(
    request: BuildRequest,
    builder: BuilderHandle,
    cache: CacheRef,
    log_dir: Path,
    push: bool = True,
    docker_bin: str = "docker",
    timeout: int | None = None,
    env_override: dict[str, str] | None = None,
) -> BuildxResult:
    """Execute a single-platform buildx build.

    Args:
        request: BuildRequest to build.
        builder: Builder to run on.
        cache: Cache endpoints for this build.
        log_dir: Directory for the build log and metadata file.
        push: Push the image after building.
        docker_bin: Docker CLI executable.
        timeout: Build timeout in seconds (None = no timeout).
        env_override: Environment overrides (the registry session).

    Returns:
        BuildxResult with execution details.

    Raises:
        BuildError: If the build cannot be started or times out.
    """
    platform = request.target_platform
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise BuildError(
            f"Cannot create log directory {log_dir}: {e}",
            platform=platform,
            code="execution_error",
        ) from e
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    log_path = log_dir / f"{platform.slug}-{stamp}.log"
    metadata_file = log_dir / f"{platform.slug}-{stamp}.metadata.json"

    cmd = compose_buildx_command(
        request=request,
        builder=builder,
        cache=cache,
        metadata_file=metadata_file,
        push=push,
        docker_bin=docker_bin,
    )
    cmd_str = shlex.join(cmd)
    logger.info("Building %s: %s", platform.docker_platform, cmd_str)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    started_at = datetime.now(timezone.utc)
    try:
        with log_path.open("w", encoding="utf-8") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Platform: {platform.docker_platform}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            result = subprocess.run(
                cmd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=env,
                check=False,
            )
        exit_code = result.returncode
    except subprocess.TimeoutExpired as e:
        _append_log(log_path, f"\n# TIMEOUT after {timeout} seconds\n")
        raise BuildError(
            f"Build for {platform.docker_platform} timed out after {timeout} seconds",
            platform=platform,
            exit_code=-1,
            log_path=str(log_path),
            code="build_timeout",
        ) from e
    except OSError as e:
        raise BuildError(
            f"Failed to execute build: {e}",
            platform=platform,
            log_path=str(log_path),
            code="execution_error",
        ) from e

    finished_at = datetime.now(timezone.utc)
    duration = (finished_at - started_at).total_seconds()
    _append_log(
        log_path,
        f"\n# Finished: {finished_at.isoformat()}\n"
        f"# Exit code: {exit_code}\n"
        f"# Duration: {duration:.1f}s\n",
    )

    success = exit_code == 0
    error_message: str | None = None
    push_failed = False
    if not success:
        try:
            log_text = log_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Cannot read build log %s: %s", log_path, e)
            log_text = ""
        error_message = summarize_failure(log_text, exit_code)
        push_failed = push and is_push_failure(log_text)
        logger.error(
            "%s for %s: %s. See log: %s",
            "Push failed" if push_failed else "Build failed",
            platform.docker_platform,
            error_message,
            log_path,
        )

    return BuildxResult(
        success=success,
        exit_code=exit_code,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
        image_digest=read_metadata_digest(metadata_file) if success else None,
        push_failed=push_failed,
        error_message=error_message,
    )


__all__ = [
    "BuildxResult",
    "compose_buildx_command",
    "error_lines",
    "is_push_failure",
    "read_metadata_digest",
    "run_buildx",
    "summarize_failure",
]
