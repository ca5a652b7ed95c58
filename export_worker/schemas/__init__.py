from export_worker.schemas.export_job import (
    ExportJobResponse,
    ExportJobStatus,
    ExportRequest,
    WorkerHealth,
)
from export_worker.schemas.timeline import (
    MediaAsset,
    MediaElement,
    ProjectSettings,
    TextElement,
    TimelineDocument,
    Track,
    calculate_timeline_duration,
)

__all__ = [
    "ExportJobResponse",
    "ExportJobStatus",
    "ExportRequest",
    "WorkerHealth",
    "ProjectSettings",
    "Track",
    "MediaElement",
    "TextElement",
    "MediaAsset",
    "TimelineDocument",
    "calculate_timeline_duration",
]
