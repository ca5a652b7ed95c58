from export_worker.services.asset_fetcher import AssetMaterializer
from export_worker.services.job_store import ExportJobStore
from export_worker.services.storage_service import (
    GCSStorageService,
    LocalStorageService,
    StorageService,
    get_input_storage,
    get_output_storage,
)
from export_worker.services.submission import ExportSubmissionService

__all__ = [
    "AssetMaterializer",
    "ExportJobStore",
    "ExportSubmissionService",
    "GCSStorageService",
    "LocalStorageService",
    "StorageService",
    "get_input_storage",
    "get_output_storage",
]
