"""Run history service.

This module provides the run history API:
- record_run(): Persist a RunReport
- list_runs(): Recent runs with optional filters
- resolve_tag(): Digest a published tag points at

Every platform of a run pushes the same tags, so a tag resolves to the
most recent successful push of that tag, optionally per platform.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from archpush.builds.models import RunReport
from archpush.builds.tags import split_image_ref
from archpush.history.models import PublishRecord, RunRecord
from archpush.types import Platform, PublishStatus

logger = logging.getLogger(__name__)


def _naive(value: datetime | None) -> datetime | None:
    # SQLite DateTime columns do not keep tzinfo
    return value.replace(tzinfo=None) if value is not None else None


def record_run(session: Session, report: RunReport) -> RunRecord:
    """Persist a run report and its publish results.

    Args:
        session: Database session.
        report: Completed run report.

    Returns:
        Created RunRecord (flushed, with id assigned).
    """
    owner = report.floating_tag_platform
    run = RunRecord(
        image_name=report.image_name,
        ref_name=report.ref_name,
        success=report.success,
        floating_tag_platform=owner.value if owner else None,
        started_at=_naive(report.started_at),
        finished_at=_naive(report.finished_at),
    )
    for position, result in enumerate(report.results):
        run.publishes.append(
            PublishRecord(
                position=position,
                platform=result.platform.value,
                status=result.status.value,
                image_digest=result.image_digest,
                pushed_tags=list(result.pushed_tags),
                error_code=result.error_code,
                error_detail=result.error_detail,
                log_path=result.log_path,
                started_at=_naive(result.started_at),
                finished_at=_naive(result.finished_at),
            )
        )
    session.add(run)
    session.flush()
    logger.debug("Recorded run %d for %s:%s", run.id, run.image_name, run.ref_name)
    return run


def list_runs(
    session: Session,
    image_name: str | None = None,
    ref_name: str | None = None,
    limit: int = 20,
) -> list[RunRecord]:
    """List runs, newest first.

    Args:
        session: Database session.
        image_name: Filter by image repository.
        ref_name: Filter by triggering reference.
        limit: Maximum results to return.

    Returns:
        List of RunRecord instances.
    """
    stmt = select(RunRecord)

    if image_name is not None:
        stmt = stmt.where(RunRecord.image_name == image_name)
    if ref_name is not None:
        stmt = stmt.where(RunRecord.ref_name == ref_name)

    stmt = stmt.order_by(RunRecord.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


def resolve_tag(
    session: Session,
    image_name: str,
    tag: str,
    platform: Platform | None = None,
) -> PublishRecord | None:
    """Find the publish a tag currently resolves to.

    Args:
        session: Database session.
        image_name: Image repository without tag.
        tag: Tag name (e.g. 'latest' or 'v2.3.0').
        platform: Restrict to one platform's pushes.

    Returns:
        The most recent successful PublishRecord that pushed the tag,
        or None if the tag was never pushed.
    """
    stmt = (
        select(PublishRecord)
        .join(RunRecord)
        .where(
            RunRecord.image_name == image_name,
            PublishRecord.status == PublishStatus.SUCCEEDED.value,
        )
    )
    if platform is not None:
        stmt = stmt.where(PublishRecord.platform == platform.value)
    stmt = stmt.order_by(RunRecord.id.desc(), PublishRecord.position.desc())

    # pushed_tags is a JSON list; match in Python to stay backend-neutral
    for record in session.execute(stmt).scalars():
        tag_names = {split_image_ref(ref)[1] for ref in record.pushed_tags or []}
        if tag in tag_names:
            return record
    return None


__all__ = ["list_runs", "record_run", "resolve_tag"]
