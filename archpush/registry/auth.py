"""Registry authentication.

This module handles:
- Probing the registry API to validate credentials before any build
- Classifying failures (invalid credentials, network, rate limiting)
- Logging the docker CLI in to a run-scoped config directory
- Retrying rate-limited logins with exponential backoff

The access token is held as a pydantic ``SecretStr``; it is passed to
``docker login`` on stdin only and never logged. The run-scoped docker
config directory lives on a tmpfs and is deleted when the session is
closed.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import httpx
from pydantic import SecretStr

from archpush.errors import AuthError, AuthFailureReason, CommandError, ProvisionError
from archpush.host.provision import PROC_MOUNTS, tmpfs_size_bytes
from archpush.runner import run_command

logger = logging.getLogger(__name__)

DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", "registry-1.docker.io")
DOCKER_HUB_API = "https://registry-1.docker.io"

CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')

# Preferred tmpfs for the session's docker config
SHM_DIR = Path("/dev/shm")

_INVALID_MARKERS = ("unauthorized", "incorrect username or password", "denied")
_RATE_LIMIT_MARKERS = ("toomanyrequests", "too many requests", "rate limit")


@dataclass(frozen=True)
class Credential:
    """Registry username and access token."""

    username: str
    token: SecretStr


@dataclass
class AuthSession:
    """An authenticated registry session for the current run.

    Attributes:
        registry: Registry host the session is bound to.
        username: Authenticated user.
        config_dir: Run-scoped docker config directory holding the login.
        created_at: When the session was established.
    """

    registry: str
    username: str
    config_dir: Path
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def env(self) -> dict[str, str]:
        """Environment overrides that make docker use this session."""
        return {"DOCKER_CONFIG": str(self.config_dir)}

    def close(self) -> None:
        """Discard the stored login."""
        shutil.rmtree(self.config_dir, ignore_errors=True)

    def __enter__(self) -> AuthSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def registry_api_url(registry: str) -> str:
    """Return the base URL of the registry's HTTP API."""
    if registry in DOCKER_HUB_ALIASES:
        return DOCKER_HUB_API
    if registry.startswith(("http://", "https://")):
        return registry.rstrip("/")
    return f"https://{registry}"


def parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    """Parse a ``WWW-Authenticate`` header.

    Returns:
        Tuple of (scheme, params), e.g. ('bearer', {'realm': ..., 'service': ...}).
    """
    scheme, _, rest = header.strip().partition(" ")
    return scheme.lower(), dict(CHALLENGE_PARAM_RE.findall(rest))


def _classify_status(response: httpx.Response, registry: str) -> None:
    """Raise AuthError for a failed probe response."""
    if response.status_code == 429:
        raise AuthError(
            f"Registry {registry} rate limited the login",
            reason=AuthFailureReason.RATE_LIMITED,
        )
    if response.status_code in (401, 403):
        raise AuthError(
            f"Registry {registry} rejected the credentials",
            reason=AuthFailureReason.INVALID_CREDENTIALS,
        )
    if response.status_code >= 400:
        raise AuthError(
            f"Registry {registry} returned HTTP {response.status_code}",
            reason=AuthFailureReason.NETWORK,
        )


def verify_credentials(
    client: httpx.Client,
    registry: str,
    credentials: Credential,
) -> None:
    """Validate credentials against the registry API.

    Follows the standard ``/v2/`` challenge: a Bearer challenge is answered
    by requesting a token from the realm with basic auth, a Basic challenge
    by repeating the probe with basic auth.

    Raises:
        AuthError: If the registry rejects the credentials, rate limits the
            request, or cannot be reached.
    """
    base_url = registry_api_url(registry)
    auth = (credentials.username, credentials.token.get_secret_value())

    try:
        probe = client.get(f"{base_url}/v2/")
        if probe.status_code == 200:
            return
        if probe.status_code != 401:
            _classify_status(probe, registry)
            return

        scheme, params = parse_challenge(probe.headers.get("www-authenticate", ""))
        if scheme == "bearer" and params.get("realm"):
            query = {"account": credentials.username}
            if params.get("service"):
                query["service"] = params["service"]
            response = client.get(params["realm"], params=query, auth=auth)
        else:
            response = client.get(f"{base_url}/v2/", auth=auth)
    except httpx.HTTPError as e:
        raise AuthError(
            f"Cannot reach registry {registry}: {e}",
            reason=AuthFailureReason.NETWORK,
        ) from e

    _classify_status(response, registry)


def classify_login_output(output: str) -> AuthFailureReason:
    """Map ``docker login`` error output to a failure reason."""
    lowered = output.lower()
    if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return AuthFailureReason.RATE_LIMITED
    if any(marker in lowered for marker in _INVALID_MARKERS):
        return AuthFailureReason.INVALID_CREDENTIALS
    return AuthFailureReason.NETWORK


def docker_login(
    registry: str,
    credentials: Credential,
    config_dir: Path,
    docker_bin: str = "docker",
) -> None:
    """Log the docker CLI in, storing the login under ``config_dir``.

    Raises:
        AuthError: If ``docker login`` fails.
    """
    try:
        run_command(
            [
                docker_bin,
                "--config",
                str(config_dir),
                "login",
                registry,
                "--username",
                credentials.username,
                "--password-stdin",
            ],
            input_text=credentials.token.get_secret_value(),
            redact=True,
        )
    except CommandError as e:
        raise AuthError(
            f"docker login to {registry} failed: {e.output or e}",
            reason=classify_login_output(e.output or str(e)),
        ) from e


def memory_backed_dir(
    candidates: list[Path] | None = None,
    mounts_path: Path = PROC_MOUNTS,
) -> Path | None:
    """Return a writable tmpfs directory for session secrets, if any.

    ``/dev/shm`` is tried first, then ``$XDG_RUNTIME_DIR``.
    """
    if candidates is None:
        candidates = [SHM_DIR]
        runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
        if runtime_dir:
            candidates.append(Path(runtime_dir))
    for candidate in candidates:
        if tmpfs_size_bytes(candidate, mounts_path) is None:
            continue
        if candidate.is_dir() and os.access(candidate, os.W_OK | os.X_OK):
            return candidate
    return None


def authenticate(
    registry: str,
    credentials: Credential,
    docker_bin: str = "docker",
    client: httpx.Client | None = None,
    timeout: float = 30,
    docker_config_home: Path | None = None,
    secrets_dir: Path | None = None,
) -> AuthSession:
    """Validate credentials and open a session for the rest of the run.

    The docker login is stored in a directory under ``secrets_dir`` so the
    token never reaches persistent storage.

    Args:
        registry: Registry host.
        credentials: Username and token.
        docker_bin: Docker CLI executable.
        client: Optional HTTPX client (one is created if not given).
        timeout: Probe timeout in seconds.
        docker_config_home: Docker config directory holding buildx builder
            state (defaults to ~/.docker).
        secrets_dir: Memory-backed directory for the session's docker
            config (defaults to memory_backed_dir()).

    Returns:
        AuthSession used by every push in the run.

    Raises:
        AuthError: With reason invalid_credentials, network or rate_limited.
        ProvisionError: If the host has no memory-backed filesystem.
    """
    if secrets_dir is None:
        secrets_dir = memory_backed_dir()
        if secrets_dir is None:
            raise ProvisionError(
                "No writable tmpfs for the registry login "
                "(tried /dev/shm and $XDG_RUNTIME_DIR)",
                step="session_config",
            )

    logger.info("Authenticating to %s as %s", registry, credentials.username)

    if client is None:
        with httpx.Client(timeout=timeout, follow_redirects=True) as owned:
            verify_credentials(owned, registry, credentials)
    else:
        verify_credentials(client, registry, credentials)

    config_dir = Path(tempfile.mkdtemp(prefix="archpush_docker_", dir=secrets_dir))
    link_buildx_state(config_dir, docker_config_home)
    try:
        docker_login(registry, credentials, config_dir, docker_bin=docker_bin)
    except AuthError:
        shutil.rmtree(config_dir, ignore_errors=True)
        raise

    logger.info("Authenticated to %s", registry)
    return AuthSession(
        registry=registry, username=credentials.username, config_dir=config_dir
    )


def link_buildx_state(config_dir: Path, docker_config_home: Path | None = None) -> None:
    """Expose existing buildx builder state inside a session config directory.

    buildx keeps its builder instances under ``$DOCKER_CONFIG/buildx``; the
    builder acquired earlier in the run must stay visible once builds run
    with the session's ``DOCKER_CONFIG``.
    """
    home = docker_config_home or Path.home() / ".docker"
    buildx_dir = home / "buildx"
    if buildx_dir.is_dir():
        (config_dir / "buildx").symlink_to(buildx_dir, target_is_directory=True)


def backoff_delays(retries: int, initial: float) -> Iterator[float]:
    """Yield exponential backoff delays: initial, 2*initial, 4*initial..."""
    delay = initial
    for _ in range(retries):
        yield delay
        delay *= 2


def authenticate_with_retry(
    registry: str,
    credentials: Credential,
    retries: int = 3,
    backoff_seconds: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
    docker_bin: str = "docker",
    client: httpx.Client | None = None,
    timeout: float = 30,
    docker_config_home: Path | None = None,
    secrets_dir: Path | None = None,
) -> AuthSession:
    """Authenticate, retrying only when the registry rate limits us.

    Invalid credentials and network failures surface immediately.

    Raises:
        AuthError: The last error once retries are exhausted, or the first
            non-retryable one.
    """
    delays = backoff_delays(retries, backoff_seconds)
    while True:
        try:
            return authenticate(
                registry,
                credentials,
                docker_bin=docker_bin,
                client=client,
                timeout=timeout,
                docker_config_home=docker_config_home,
                secrets_dir=secrets_dir,
            )
        except AuthError as e:
            if not e.retryable:
                raise
            delay = next(delays, None)
            if delay is None:
                raise
            logger.warning("Login rate limited, retrying in %.1fs", delay)
            sleep(delay)


__all__ = [
    "AuthSession",
    "Credential",
    "authenticate",
    "authenticate_with_retry",
    "backoff_delays",
    "classify_login_output",
    "docker_login",
    "link_buildx_state",
    "memory_backed_dir",
    "parse_challenge",
    "registry_api_url",
    "verify_credentials",
]
