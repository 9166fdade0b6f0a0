"""AutomationJob model — queue of origination-fee jobs for the browser worker."""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, Text, Integer, Numeric, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database import Base


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {JobStatus.COMPLETED.value, JobStatus.FAILED.value}


class AutomationJob(Base):
    __tablename__ = "automation_jobs"
    __table_args__ = (
        Index("idx_automation_jobs_status", "status"),
        Index("idx_automation_jobs_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    matter_id: Mapped[str] = mapped_column(Text, nullable=False)
    client_participant_id: Mapped[str] = mapped_column(Text, nullable=False)
    # Staff name exactly as it appears in the Actionstep dropdown
    referrer_name: Mapped[str] = mapped_column(Text, nullable=False)
    origination_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.PENDING.value, server_default=JobStatus.PENDING.value
    )
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, server_default="3")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    logs = relationship("AutomationLog", back_populates="job", lazy="selectin")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
