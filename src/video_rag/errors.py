"""Error taxonomy for the video RAG pipeline.

Every failure the pipeline can surface to a caller is a ``VideoRAGError``
subclass. The orchestrator tags each error with the pipeline stage that
produced it (``error.stage``) and re-raises it unchanged.
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .schemas import PipelineState


class VideoRAGError(Exception):
    """Base class for all pipeline failures."""

    kind = "error"

    def __init__(self, message: str, stage: "PipelineState | None" = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        return self.message


class ConfigurationMissing(VideoRAGError):
    """Required credentials are absent from the environment."""

    kind = "configuration_missing"

    def __init__(self, missing: Sequence[str]):
        self.missing = list(missing)
        super().__init__(
            f"Missing required environment variable(s): {', '.join(self.missing)}"
        )


class InvalidReference(VideoRAGError):
    """The video reference is not a URL from a supported video platform."""

    kind = "invalid_reference"


class SubmissionRejected(VideoRAGError):
    """The scraping service declined to start the job."""

    kind = "submission_rejected"


class NoCaptionsAvailable(VideoRAGError):
    """The finished job produced no transcript for the video."""

    kind = "no_captions_available"


class JobFailed(VideoRAGError):
    """The remote job reported a terminal failure."""

    kind = "job_failed"

    def __init__(self, reason: str, job_id: str | None = None):
        self.reason = reason
        self.job_id = job_id
        prefix = f"Transcript job {job_id} failed" if job_id else "Transcript job failed"
        super().__init__(f"{prefix}: {reason}")


class PollTimeout(VideoRAGError):
    """The job did not reach a terminal state within the wait budget."""

    kind = "poll_timeout"

    def __init__(self, job_id: str, waited_seconds: float):
        self.job_id = job_id
        self.waited_seconds = waited_seconds
        super().__init__(
            f"Transcript job {job_id} did not finish within {waited_seconds:.0f}s"
        )


class UploadRejected(VideoRAGError):
    """The knowledge store refused the transcript document."""

    kind = "upload_rejected"


class NoIndexProvided(VideoRAGError):
    """A question was asked against zero artifact handles."""

    kind = "no_index_provided"


class GenerationFailed(VideoRAGError):
    """The generative endpoint could not produce a grounded answer."""

    kind = "generation_failed"


class NetworkExhausted(VideoRAGError):
    """All retry attempts for a request failed with transient errors."""

    kind = "network_exhausted"

    def __init__(self, message: str, last_error: BaseException | str | None = None):
        self.last_error = last_error
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)


class InvalidJobTransition(RuntimeError):
    """A job or pipeline run was moved along an edge its state machine forbids."""
