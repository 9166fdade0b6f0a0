"""AutomationLog model — append-only audit trail of automation attempts."""

import enum
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, Text, Integer, ForeignKey, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database import Base


class LogAction(str, enum.Enum):
    JOB_QUEUED = "job_queued"
    FEE_SET = "origination_fee_set"
    ALREADY_SET = "already_set"
    FAILED = "failed"
    RETRY = "retry"


class LogStatus(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


class TriggeredBy(str, enum.Enum):
    ZAPIER = "zapier"
    MANUAL = "manual"
    RETRY = "retry"
    AUTOMATION = "automation"


class AutomationLog(Base):
    __tablename__ = "automation_logs"
    __table_args__ = (
        Index("idx_automation_logs_created", "created_at"),
        Index("idx_automation_logs_matter", "matter_id"),
        Index("idx_automation_logs_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("automation_jobs.id"), nullable=True
    )
    matter_id: Mapped[str] = mapped_column(Text, nullable=False)
    client_participant_id: Mapped[str] = mapped_column(Text, nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=True)
    error_details: Mapped[str] = mapped_column(Text, nullable=True)
    triggered_by: Mapped[str] = mapped_column(
        String(20), default=TriggeredBy.ZAPIER.value, server_default=TriggeredBy.ZAPIER.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )

    job = relationship("AutomationJob", back_populates="logs")
