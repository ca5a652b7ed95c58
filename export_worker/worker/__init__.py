from export_worker.worker.orchestrator import ExportOrchestrator

__all__ = ["ExportOrchestrator"]
