"""Run history ORM models.

A RunRecord is one invocation of the release pipeline; it owns one
PublishRecord per requested platform.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from archpush.db import Base
from archpush.types import PublishStatus


class RunRecord(Base):
    """ORM model for a release run.

    Attributes:
        id: Primary key.
        image_name: Image repository the run published to.
        ref_name: Triggering reference (the immutable tag).
        success: Whether every platform published.
        floating_tag_platform: Platform the shared tags resolved to.
        started_at: Run start time.
        finished_at: Run finish time.
        recorded_at: Time the record was written.
    """

    __tablename__ = "runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    image_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    ref_name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    floating_tag_platform: Mapped[str | None] = mapped_column(
        String(20), nullable=True
    )

    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    publishes: Mapped[list["PublishRecord"]] = relationship(
        "PublishRecord",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="PublishRecord.position",
    )

    def __repr__(self) -> str:
        """Return string representation of RunRecord."""
        return (
            f"<RunRecord(id={self.id}, image='{self.image_name}', "
            f"ref='{self.ref_name}', success={self.success})>"
        )


class PublishRecord(Base):
    """ORM model for one platform's publish within a run.

    Attributes:
        id: Primary key.
        run_id: Foreign key to RunRecord.
        position: Build order within the run (0-based).
        platform: Platform value (armv7, aarch64, amd64).
        status: succeeded or failed.
        image_digest: Digest of the pushed image.
        pushed_tags: Full image references pushed.
        error_code: Stable failure code.
        error_detail: Failure description.
        log_path: Build log file.
    """

    __tablename__ = "publishes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("runs.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    platform: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PublishStatus.FAILED.value
    )
    image_digest: Mapped[str | None] = mapped_column(String(128), nullable=True)
    pushed_tags: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True, default=list
    )

    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    run: Mapped["RunRecord"] = relationship("RunRecord", back_populates="publishes")

    __table_args__ = (Index("ix_publishes_platform_status", "platform", "status"),)

    def __repr__(self) -> str:
        """Return string representation of PublishRecord."""
        return (
            f"<PublishRecord(id={self.id}, run_id={self.run_id}, "
            f"platform='{self.platform}', status='{self.status}')>"
        )

    def is_succeeded(self) -> bool:
        """Check if this publish succeeded."""
        return self.status == PublishStatus.SUCCEEDED.value


__all__ = ["PublishRecord", "RunRecord"]
