"""Tests for build request and publish result models."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from archpush.builds.models import (
    BuildRequest,
    PublishResult,
    RunReport,
    floating_tag_owner,
)
from archpush.cache.store import CacheStore
from archpush.types import Platform, PublishStatus

TAGS = ("acme/pathfinder:latest", "acme/pathfinder:v2.3.0")


def _request(tags=TAGS, platform=Platform.AMD64) -> BuildRequest:
    return BuildRequest(
        source_context=Path("."),
        dockerfile_path=Path("Dockerfile"),
        target_platform=platform,
        tags=tags,
        cache_ref=CacheStore(Path("/tmp/cache")),
    )


class TestBuildRequest:
    """Tests for BuildRequest invariants."""

    def test_valid(self):
        request = _request()
        assert request.version_tags == ("acme/pathfinder:v2.3.0",)

    def test_empty_tags(self):
        with pytest.raises(ValueError, match="must not be empty"):
            _request(tags=())

    def test_missing_floating_tag(self):
        with pytest.raises(ValueError, match="latest"):
            _request(tags=("acme/pathfinder:v2.3.0",))

    def test_missing_version_tag(self):
        with pytest.raises(ValueError, match="version-specific"):
            _request(tags=("acme/pathfinder:latest",))

    def test_immutable(self):
        request = _request()
        with pytest.raises(AttributeError):
            request.tags = ()  # type: ignore[misc]


class TestPublishResult:
    """Tests for PublishResult."""

    def test_status(self):
        assert PublishResult(Platform.AMD64, success=True).status is PublishStatus.SUCCEEDED
        assert PublishResult(Platform.AMD64, success=False).status is PublishStatus.FAILED

    def test_to_dict(self):
        started = datetime(2024, 3, 1, tzinfo=timezone.utc)
        result = PublishResult(
            platform=Platform.ARMV7,
            success=True,
            image_digest="sha256:abc",
            pushed_tags=list(TAGS),
            started_at=started,
        )
        data = result.to_dict()
        assert data["platform"] == "armv7"
        assert data["docker_platform"] == "linux/arm/v7"
        assert data["status"] == "succeeded"
        assert data["pushed_tags"] == list(TAGS)
        assert data["started_at"] == started.isoformat()
        assert data["finished_at"] is None


class TestRunReport:
    """Tests for RunReport aggregation."""

    def _results(self, *outcomes: bool) -> list[PublishResult]:
        platforms = [Platform.ARMV7, Platform.AARCH64, Platform.AMD64]
        return [PublishResult(p, success=ok) for p, ok in zip(platforms, outcomes)]

    def test_all_succeeded(self):
        report = RunReport("v1", "acme/pathfinder", self._results(True, True, True))
        assert report.success is True
        assert report.exit_code == 0
        assert report.failed_platforms == []
        assert report.floating_tag_platform is Platform.AMD64

    def test_one_failed(self):
        report = RunReport("v1", "acme/pathfinder", self._results(True, False, True))
        assert report.success is False
        assert report.exit_code == 1
        assert report.failed_platforms == [Platform.AARCH64]

    def test_floating_tag_owner_is_last_success(self):
        """When the last platform fails, the tag keeps an earlier image."""
        results = self._results(True, True, False)
        assert floating_tag_owner(results) is Platform.AARCH64

    def test_no_success_no_owner(self):
        assert floating_tag_owner(self._results(False, False, False)) is None

    def test_to_dict(self):
        report = RunReport("v1", "acme/pathfinder", self._results(True, False, True))
        data = report.to_dict()
        assert data["success"] is False
        assert data["exit_code"] == 1
        assert data["floating_tag_platform"] == "amd64"
        assert len(data["results"]) == 3
