"""Pydantic schemas and state machines for the video RAG pipeline."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import InvalidJobTransition

# Floor for status polling against the scraping service.
MIN_POLL_INTERVAL_SECONDS = 2.0


class VideoReference(BaseModel):
    """A validated video URL and the video id extracted from it."""

    model_config = ConfigDict(frozen=True)

    url: str
    video_id: str


class JobStatus(str, Enum):
    """Lifecycle of one asynchronous transcript extraction job."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_JOB_STATUSES

    @classmethod
    def from_remote(cls, remote_status: str | None) -> "JobStatus":
        """Map an Apify run status string onto the job lifecycle.

        Unknown or missing statuses are treated as still running so that the
        poll loop, not a parsing quirk, decides when to give up.
        """
        return _REMOTE_JOB_STATUSES.get((remote_status or "").upper(), cls.RUNNING)


_TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.TIMED_OUT}
)

_REMOTE_JOB_STATUSES = {
    "READY": JobStatus.PENDING,
    "RUNNING": JobStatus.RUNNING,
    "TIMING-OUT": JobStatus.RUNNING,
    "ABORTING": JobStatus.RUNNING,
    "SUCCEEDED": JobStatus.SUCCEEDED,
    "FAILED": JobStatus.FAILED,
    "ABORTED": JobStatus.FAILED,
    "TIMED-OUT": JobStatus.FAILED,
}


class TranscriptJob(BaseModel):
    """One submitted transcript extraction job.

    The status only changes through ``transition``, which refuses to leave a
    terminal state.
    """

    job_id: str
    video: VideoReference
    status: JobStatus = JobStatus.PENDING
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status_message: str | None = None

    def transition(self, new_status: JobStatus, message: str | None = None) -> None:
        """Move the job to ``new_status``.

        Args:
            new_status: Status observed by the latest poll.
            message: Optional remote status message to keep for error reporting.

        Raises:
            InvalidJobTransition: If the job is already in a terminal state.
        """
        if self.status.is_terminal and new_status != self.status:
            raise InvalidJobTransition(
                f"Job {self.job_id} is {self.status.value}; cannot move to {new_status.value}"
            )
        self.status = new_status
        if message:
            self.status_message = message


class Transcript(BaseModel):
    """Transcript text extracted by a finished job.

    Title and channel are best effort and may be empty.
    """

    model_config = ConfigDict(frozen=True)

    video_id: str
    text: str = Field(min_length=1)
    title: str = ""
    channel_name: str = ""


class ArtifactHandle(BaseModel):
    """Durable identifier of a transcript registered with the knowledge store."""

    model_config = ConfigDict(frozen=True)

    name: str  # e.g. files/abc123
    uri: str
    display_name: str = ""
    mime_type: str = "text/plain"


class Citation(BaseModel):
    """Pointer from a span of the answer back to its supporting source."""

    start_index: int | None = None
    end_index: int | None = None
    uri: str | None = None
    excerpt: str = ""


class Answer(BaseModel):
    """Grounded answer text and its citations, in the order returned."""

    text: str
    citations: list[Citation] = Field(default_factory=list)


class QueryResult(BaseModel):
    """Result of the index-then-ask operation."""

    handle: ArtifactHandle
    answer: Answer


class RetryPolicy(BaseModel):
    """Timeout and backoff settings for one HTTP request."""

    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    backoff_max_seconds: float = Field(default=30.0, ge=0)
    jitter_ratio: float = Field(default=0.1, ge=0, le=1)


class PollPolicy(BaseModel):
    """Interval and overall wait budget for polling a remote job."""

    model_config = ConfigDict(frozen=True)

    interval_seconds: float = Field(default=5.0, ge=MIN_POLL_INTERVAL_SECONDS)
    max_wait_seconds: float = Field(default=300.0, gt=0)

    @model_validator(mode="after")
    def _wait_covers_one_interval(self) -> "PollPolicy":
        if self.max_wait_seconds < self.interval_seconds:
            raise ValueError("max_wait_seconds must be at least interval_seconds")
        return self


class PipelineState(str, Enum):
    """States of one pipeline run."""

    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    UPLOADING = "uploading"
    QUERYING = "querying"
    DONE = "done"
    FAILED = "failed"


_PIPELINE_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.SUBMITTING, PipelineState.QUERYING}),
    PipelineState.SUBMITTING: frozenset({PipelineState.POLLING}),
    PipelineState.POLLING: frozenset({PipelineState.UPLOADING}),
    PipelineState.UPLOADING: frozenset({PipelineState.QUERYING, PipelineState.DONE}),
    PipelineState.QUERYING: frozenset({PipelineState.DONE}),
    PipelineState.DONE: frozenset(),
    PipelineState.FAILED: frozenset(),
}


class PipelineRun(BaseModel):
    """State of a single pipeline run.

    A fresh run is created for every orchestrator operation, so nothing is
    shared between runs for different videos.
    """

    video: VideoReference | None = None
    state: PipelineState = PipelineState.IDLE
    history: list[PipelineState] = Field(default_factory=lambda: [PipelineState.IDLE])
    failed_stage: PipelineState | None = None
    error: str | None = None

    def advance(self, new_state: PipelineState) -> None:
        """Move to ``new_state`` along an allowed edge."""
        if new_state not in _PIPELINE_TRANSITIONS[self.state]:
            raise InvalidJobTransition(
                f"Pipeline cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: Exception) -> None:
        """Absorb the run into FAILED, remembering which stage failed."""
        if self.state in (PipelineState.DONE, PipelineState.FAILED):
            raise InvalidJobTransition(f"Pipeline already {self.state.value}")
        self.failed_stage = self.state
        self.error = str(error)
        self.state = PipelineState.FAILED
        self.history.append(PipelineState.FAILED)
