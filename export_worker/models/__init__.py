from export_worker.models.base import Base
from export_worker.models.export_job import ExportJob

__all__ = [
    "Base",
    "ExportJob",
]
