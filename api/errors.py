"""Failure taxonomy for the ingest pipeline."""


class AdmissionSkip(Exception):
    """A storage event the pipeline intentionally ignores. Not a failure."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class PipelineError(Exception):
    stage = "unknown"


class FetchError(PipelineError):
    stage = "Fetching"


class CodecError(PipelineError):
    stage = "Transcoding"

    def __init__(self, message: str, *, reason: str = "engine_failed", stderr: str = ""):
        super().__init__(message)
        self.reason = reason
        self.stderr = stderr


class RewriteError(PipelineError):
    stage = "Rewriting"


class PublishError(PipelineError):
    stage = "Publishing"


class CatalogError(PipelineError):
    stage = "CatalogWriting"


class CatalogConflictError(CatalogError):
    """A record for this artifact id already exists."""


class CleanupError(PipelineError):
    """Logged only; never replaces the job's real outcome."""

    stage = "Cleaning"


class JobTimeoutError(PipelineError):
    """The per-job wall-clock budget ran out."""
