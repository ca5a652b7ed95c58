"""Custom exceptions for the export worker.

Every failure that ends a job is an ``ExportWorkerError`` carrying a
machine-readable code. The orchestrator stores ``to_error_message()`` in the
job's ``error_message`` column so the owner can see what went wrong.
"""


class ExportWorkerError(Exception):
    """Base exception for all export worker errors."""

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        super().__init__(self.message)

    def to_error_message(self) -> str:
        return f"{self.code}: {self.message}"


# =============================================================================
# Input errors
# =============================================================================


class InputFetchError(ExportWorkerError):
    """The job's timeline document is missing or unreadable."""

    code = "INPUT_FETCH_FAILED"
    message = "Failed to fetch timeline document"


class TimelineParseError(ExportWorkerError):
    """The job's input is not a timeline document at all."""

    code = "INVALID_TIMELINE"
    message = "Timeline document is invalid"


class AssetMaterializationError(ExportWorkerError):
    """A referenced media asset could not be fetched or decoded."""

    code = "ASSET_FETCH_FAILED"
    message = "Failed to materialize media asset"

    def __init__(self, message: str | None = None, *, media_id: str | None = None):
        self.media_id = media_id
        if message and media_id:
            message = f"{message} (media_id={media_id})"
        super().__init__(message)


class TransientAssetReferenceError(AssetMaterializationError):
    """An asset still points at an in-browser ``blob:`` handle.

    The submitting client must resolve these to durable URLs before the job is
    created, so seeing one here means the upstream contract was broken.
    """

    code = "TRANSIENT_ASSET_REFERENCE"
    message = "Asset locator is a transient in-browser reference"


# =============================================================================
# Render errors
# =============================================================================


class EngineExecutionError(ExportWorkerError):
    """ffmpeg could not be spawned or exited non-zero."""

    code = "ENGINE_FAILED"
    message = "FFmpeg execution failed"

    def __init__(self, message: str | None = None, *, returncode: int | None = None):
        self.returncode = returncode
        super().__init__(message)


class RenderTimeoutError(EngineExecutionError):
    """ffmpeg ran past the configured deadline and was killed."""

    code = "RENDER_TIMEOUT"
    message = "Render exceeded the configured deadline"


class UploadError(ExportWorkerError):
    """The rendered file could not be published to output storage."""

    code = "UPLOAD_FAILED"
    message = "Failed to upload rendered video"
