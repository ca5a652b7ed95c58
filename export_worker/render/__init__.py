from export_worker.render.compiler import (
    CompileResult,
    CompilerOptions,
    ElementOutcome,
    ElementStatus,
    GraphTrace,
    TimelineCompiler,
    compile_document,
    compile_timeline,
)
from export_worker.render.engine import FFmpegRunner
from export_worker.render.progress import ProgressParser, compute_progress

__all__ = [
    "TimelineCompiler",
    "CompilerOptions",
    "CompileResult",
    "GraphTrace",
    "ElementOutcome",
    "ElementStatus",
    "compile_timeline",
    "compile_document",
    "FFmpegRunner",
    "ProgressParser",
    "compute_progress",
]
