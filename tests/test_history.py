"""Tests for run history persistence.

Uses an in-memory SQLite database.
"""

from datetime import datetime, timezone

import pytest

from archpush.builds.models import PublishResult, RunReport
from archpush.db import create_all_tables, get_engine, get_session_factory
from archpush.history.models import PublishRecord, RunRecord
from archpush.history.service import list_runs, record_run, resolve_tag
from archpush.types import Platform

IMAGE = "acme/pathfinder"


@pytest.fixture
def session():
    """Create an in-memory database session."""
    engine = get_engine("sqlite:///:memory:")
    create_all_tables(engine)
    factory = get_session_factory(engine)
    with factory() as session:
        yield session


def _report(ref: str, outcomes: dict[Platform, bool]) -> RunReport:
    now = datetime.now(timezone.utc)
    results = []
    for platform, ok in outcomes.items():
        results.append(
            PublishResult(
                platform=platform,
                success=ok,
                image_digest=f"sha256:{ref}-{platform.value}" if ok else None,
                pushed_tags=[f"{IMAGE}:latest", f"{IMAGE}:{ref}"] if ok else [],
                error_code=None if ok else "build_failed",
                started_at=now,
                finished_at=now,
            )
        )
    return RunReport(ref, IMAGE, results, started_at=now, finished_at=now)


class TestRecordRun:
    """Tests for record_run."""

    def test_persists_run_and_publishes(self, session):
        run = record_run(
            session,
            _report("v1.0", {Platform.ARMV7: True, Platform.AMD64: False}),
        )

        assert run.id is not None
        assert run.success is False
        assert run.floating_tag_platform == "armv7"
        assert [p.platform for p in run.publishes] == ["armv7", "amd64"]
        assert run.publishes[0].is_succeeded()
        assert run.publishes[1].error_code == "build_failed"
        assert session.query(PublishRecord).count() == 2

    def test_timestamps_stored(self, session):
        run = record_run(session, _report("v1.0", {Platform.AMD64: True}))
        session.commit()
        stored = session.get(RunRecord, run.id)
        assert stored.started_at is not None
        assert stored.recorded_at is not None


class TestListRuns:
    """Tests for list_runs."""

    def test_newest_first(self, session):
        record_run(session, _report("v1.0", {Platform.AMD64: True}))
        record_run(session, _report("v1.1", {Platform.AMD64: True}))
        runs = list_runs(session)
        assert [r.ref_name for r in runs] == ["v1.1", "v1.0"]

    def test_filters(self, session):
        record_run(session, _report("v1.0", {Platform.AMD64: True}))
        record_run(session, _report("v1.1", {Platform.AMD64: True}))
        assert [r.ref_name for r in list_runs(session, ref_name="v1.0")] == ["v1.0"]
        assert list_runs(session, image_name="other/image") == []
        assert len(list_runs(session, limit=1)) == 1


class TestResolveTag:
    """Tests for resolve_tag."""

    def test_latest_is_last_successful_platform(self, session):
        """Shared tags resolve to the last platform pushed."""
        record_run(
            session,
            _report(
                "v1.0",
                {Platform.ARMV7: True, Platform.AARCH64: True, Platform.AMD64: True},
            ),
        )
        record = resolve_tag(session, IMAGE, "latest")
        assert record.platform == "amd64"
        assert record.image_digest == "sha256:v1.0-amd64"

    def test_failed_last_platform(self, session):
        """A failed last platform leaves the tag on an earlier image."""
        record_run(
            session,
            _report("v1.0", {Platform.ARMV7: True, Platform.AMD64: False}),
        )
        assert resolve_tag(session, IMAGE, "v1.0").platform == "armv7"

    def test_newer_run_wins(self, session):
        record_run(session, _report("v1.0", {Platform.AMD64: True}))
        record_run(session, _report("v1.1", {Platform.AMD64: True}))
        assert resolve_tag(session, IMAGE, "latest").image_digest == "sha256:v1.1-amd64"
        assert resolve_tag(session, IMAGE, "v1.0").image_digest == "sha256:v1.0-amd64"

    def test_platform_filter(self, session):
        record_run(
            session,
            _report("v1.0", {Platform.ARMV7: True, Platform.AMD64: True}),
        )
        record = resolve_tag(session, IMAGE, "latest", platform=Platform.ARMV7)
        assert record.image_digest == "sha256:v1.0-armv7"

    def test_unknown_tag(self, session):
        record_run(session, _report("v1.0", {Platform.AMD64: True}))
        assert resolve_tag(session, IMAGE, "v9.9") is None
