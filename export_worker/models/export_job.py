from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from export_worker.models.base import Base, TimestampMixin, UUIDMixin

QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"


class ExportJob(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "export_jobs"

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Status: queued, processing, completed, failed
    status: Mapped[str] = mapped_column(String(50), default=QUEUED, index=True)
    progress: Mapped[int] = mapped_column(Integer, default=0)

    # Declared output geometry
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    fps: Mapped[int] = mapped_column(Integer, default=30)
    duration: Mapped[float] = mapped_column(Float, default=0.0)  # seconds

    # Output
    download_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def input_key(self) -> str:
        return f"{self.user_id}/{self.id}/timeline.json"

    @property
    def output_key(self) -> str:
        return f"{self.user_id}/{self.id}/export.mp4"

    def __repr__(self) -> str:
        return f"<ExportJob {self.id} ({self.status})>"
