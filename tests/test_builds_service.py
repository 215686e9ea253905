"""Tests for the build service.

buildx is replaced by a fake at the run_buildx seam that exports a local
cache and succeeds or fails per platform, so orchestration, cache
promotion and failure isolation run against a real CacheStore.
"""

from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from archpush.builder.service import BuilderHandle
from archpush.builds.models import RunReport
from archpush.builds.runner import BuildxResult
from archpush.builds.service import build_and_publish, plan_requests, publish_platform
from archpush.cache.store import INDEX_FILE, CacheStore
from archpush.definition import RunDefinition
from archpush.errors import BuildError
from archpush.trigger import Trigger
from archpush.types import DriverKind, Platform, TriggerKind

ALL_PLATFORMS = (Platform.ARMV7, Platform.AARCH64, Platform.AMD64)


class FakeBuildx:
    """Stand-in for run_buildx.

    Attributes:
        outcomes: Per-platform outcome: 'ok', 'build', 'push' or 'timeout'.
        calls: (platform, cache) for every invocation, in order.
    """

    def __init__(self, outcomes: dict[Platform, str] | None = None) -> None:
        self.outcomes = outcomes or {}
        self.calls: list = []

    def __call__(self, request, builder, cache, log_dir, push=True, **kwargs):
        platform = request.target_platform
        self.calls.append((platform, cache, kwargs))
        outcome = self.outcomes.get(platform, "ok")
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"{platform.slug}.log"
        log_path.write_text("build output\n")

        if outcome == "timeout":
            raise BuildError(
                "timed out",
                platform=platform,
                exit_code=-1,
                log_path=str(log_path),
                code="build_timeout",
            )

        # buildx exports cache layers even when a later step fails
        cache.write_path.mkdir(parents=True, exist_ok=True)
        (cache.write_path / INDEX_FILE).write_text("{}")

        now = datetime.now(timezone.utc)
        return BuildxResult(
            success=outcome == "ok",
            exit_code=0 if outcome == "ok" else 1,
            log_path=log_path,
            started_at=now,
            finished_at=now,
            command="docker buildx build",
            image_digest=f"sha256:{platform.value}" if outcome == "ok" else None,
            push_failed=outcome == "push",
            error_message=None if outcome == "ok" else f"ERROR: {outcome} failed",
        )


@pytest.fixture
def context(tmp_path: Path) -> Path:
    root = tmp_path / "ctx"
    root.mkdir()
    (root / "Dockerfile").write_text("FROM alpine\n")
    (root / "app.py").write_text("print('hi')\n")
    return root


@pytest.fixture
def store(tmp_path: Path) -> CacheStore:
    return CacheStore(tmp_path / "cache")


@pytest.fixture
def builder() -> BuilderHandle:
    return BuilderHandle(
        name="archpush",
        driver=DriverKind.DOCKER_CONTAINER,
        platforms=tuple(p.docker_platform for p in ALL_PLATFORMS),
    )


@pytest.fixture
def requests_(context, store):
    definition = RunDefinition(
        repository="pathfinder",
        context=context,
        dockerfile=context / "Dockerfile",
    )
    trigger = Trigger(kind=TriggerKind.TAG_PUSH, ref_name="v2.3.0")
    return plan_requests(definition, trigger, "acme/pathfinder", store)


def _run(requests_, builder, tmp_path, fake, **kwargs):
    with patch("archpush.builds.service.run_buildx", side_effect=fake):
        return build_and_publish(
            requests_, builder, None, log_dir=tmp_path / "logs", **kwargs
        )


class TestPlanRequests:
    """Tests for plan_requests."""

    def test_one_request_per_platform(self, requests_, store):
        assert [r.target_platform for r in requests_] == list(ALL_PLATFORMS)
        assert all(r.cache_ref is store for r in requests_)

    def test_shared_tags(self, requests_):
        for r in requests_:
            assert r.tags == ("acme/pathfinder:latest", "acme/pathfinder:v2.3.0")

    def test_ref_equal_to_floating_tag(self, context, store):
        definition = RunDefinition(repository="pathfinder", context=context)
        trigger = Trigger(kind=TriggerKind.MANUAL, ref_name="latest")
        with pytest.raises(ValueError):
            plan_requests(definition, trigger, "acme/pathfinder", store)


class TestBuildAndPublish:
    """Tests for build_and_publish."""

    def test_all_platforms_succeed(self, requests_, builder, tmp_path):
        """Scenario: every platform builds and pushes."""
        results = _run(requests_, builder, tmp_path, FakeBuildx())

        assert len(results) == 3
        assert all(r.success for r in results)
        assert [r.platform for r in results] == list(ALL_PLATFORMS)
        assert results[0].image_digest == "sha256:armv7"
        assert results[0].pushed_tags == [
            "acme/pathfinder:latest",
            "acme/pathfinder:v2.3.0",
        ]

    def test_failure_is_isolated(self, requests_, builder, tmp_path):
        """Scenario: one platform fails, later platforms still run."""
        fake = FakeBuildx({Platform.AARCH64: "build"})
        results = _run(requests_, builder, tmp_path, fake)

        assert len(fake.calls) == 3
        assert [r.success for r in results] == [True, False, True]
        failed = results[1]
        assert failed.error_code == "build_failed"
        assert failed.pushed_tags == []
        assert failed.image_digest is None
        assert failed.log_path is not None

        report = RunReport("v2.3.0", "acme/pathfinder", results)
        assert report.exit_code == 1
        assert report.floating_tag_platform is Platform.AMD64

    def test_push_failure_classified(self, requests_, builder, tmp_path):
        results = _run(requests_, builder, tmp_path, FakeBuildx({Platform.AMD64: "push"}))
        assert results[2].success is False
        assert results[2].error_code == "push_failed"

    def test_timeout_does_not_stop_run(self, requests_, builder, tmp_path):
        fake = FakeBuildx({Platform.ARMV7: "timeout"})
        results = _run(requests_, builder, tmp_path, fake)
        assert results[0].error_code == "build_timeout"
        assert results[1].success and results[2].success

    def test_all_fail(self, requests_, builder, tmp_path):
        """Every request still yields exactly one result."""
        fake = FakeBuildx({p: "build" for p in ALL_PLATFORMS})
        results = _run(requests_, builder, tmp_path, fake)
        assert len(results) == len(requests_)
        assert not any(r.success for r in results)

    def test_cache_promoted_even_on_failure(self, requests_, builder, store, tmp_path):
        """A failed build's cache export still becomes the current entry."""
        _run(requests_, builder, tmp_path, FakeBuildx({Platform.ARMV7: "build"}))
        entry = store.current(Platform.ARMV7)
        assert entry is not None
        info = next(e for e in store.entries() if e.platform == "linux/arm/v7")
        assert info.build_succeeded is False
        assert info.inputs_digest.startswith("sha256:")

    def test_later_platforms_read_earlier_cache(self, requests_, builder, store, tmp_path):
        """Platform N's cache write is visible to platform N+1."""
        fake = FakeBuildx()
        _run(requests_, builder, tmp_path, fake)

        _, first_cache, _ = fake.calls[0]
        _, third_cache, _ = fake.calls[2]
        assert first_cache.read_paths == ()
        assert len(third_cache.read_paths) == 2

    def test_second_run_reuses_cache(self, requests_, builder, store, tmp_path):
        """Scenario: a rerun imports the previous run's entries."""
        _run(requests_, builder, tmp_path, FakeBuildx())
        previous = store.current(Platform.ARMV7)
        fake = FakeBuildx()
        _run(requests_, builder, tmp_path, fake)

        _, first_cache, _ = fake.calls[0]
        assert first_cache.read_paths[0] == previous
        assert store.current(Platform.ARMV7) != previous

    def test_shared_tag_warning(self, requests_, builder, tmp_path, caplog):
        with caplog.at_level("WARNING", logger="archpush.builds.service"):
            _run(requests_, builder, tmp_path, FakeBuildx())
        assert "last successful one" in caplog.text

    def test_inputs_recording_can_be_disabled(self, requests_, builder, store, tmp_path):
        _run(requests_, builder, tmp_path, FakeBuildx(), record_inputs=False)
        assert all(e.inputs_digest is None for e in store.entries())


class TestPublishPlatform:
    """Tests for publish_platform."""

    def test_session_env_passed(self, requests_, builder, tmp_path):
        class Session:
            env = {"DOCKER_CONFIG": "/tmp/session"}

        fake = FakeBuildx()
        with patch("archpush.builds.service.run_buildx", side_effect=fake):
            result = publish_platform(
                requests_[0], builder, Session(), read_from=[], log_dir=tmp_path / "logs"
            )

        assert result.success
        assert fake.calls[0][2]["env_override"] == {"DOCKER_CONFIG": "/tmp/session"}

    def test_no_push(self, requests_, builder, tmp_path):
        fake = FakeBuildx()
        with patch("archpush.builds.service.run_buildx", side_effect=fake):
            result = publish_platform(
                requests_[0], builder, None, read_from=[], log_dir=tmp_path / "logs", push=False
            )
        assert result.success
        assert result.pushed_tags == []


class TestRunBoundary:
    """Failures outside buildx itself must not cost the remaining platforms."""

    def test_undecodable_dockerignore(self, requests_, builder, store, context, tmp_path):
        """An unreadable .dockerignore only drops the inputs digest."""
        (context / ".dockerignore").write_bytes(b"\xff\xfe bad\n")
        results = _run(requests_, builder, tmp_path, FakeBuildx())

        assert len(results) == 3
        assert all(r.success for r in results)
        assert all(e.inputs_digest is None for e in store.entries())

    def test_unusable_log_dir(self, requests_, builder, tmp_path):
        """A log directory that cannot be created fails each platform, not the run."""
        log_dir = tmp_path / "logs"
        log_dir.write_text("not a directory")

        with patch("subprocess.run") as mock_run:
            mock_run.return_value.returncode = 0
            results = build_and_publish(requests_, builder, None, log_dir=log_dir)

        assert len(results) == 3
        assert all(r.error_code == "execution_error" for r in results)
        mock_run.assert_not_called()
