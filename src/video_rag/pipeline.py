"""Main pipeline orchestrator for indexing videos and answering questions about them."""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from src.utils.logging import get_logger

from .config import VideoRAGConfig, get_config
from .errors import GenerationFailed, VideoRAGError
from .http_gateway import HttpGateway
from .knowledge_store import KnowledgeStoreClient
from .schemas import Answer, ArtifactHandle, PipelineRun, PipelineState, QueryResult
from .transcript_service import TranscriptJobClient
from .video_url import parse_video_reference

logger = get_logger(__name__)


class PipelineOrchestrator:
    """Orchestrates the transcript job and knowledge store stages.

    Each public operation is one pipeline run that moves through
    SUBMITTING, POLLING, UPLOADING and (for questions) QUERYING before DONE.
    A failure in any stage is tagged with that stage, moves the run to
    FAILED, and is re-raised unchanged; no partial result is returned and no
    stage is retried at this level.
    """

    def __init__(
        self,
        config: VideoRAGConfig | None = None,
        gateway: HttpGateway | None = None,
        transcript_client: TranscriptJobClient | None = None,
        knowledge_store: KnowledgeStoreClient | None = None,
    ):
        """Initialize orchestrator with all required clients.

        Args:
            config: Configuration object. If None, loads from environment.
            gateway: Shared HTTP executor. If None, one is created.
            transcript_client: Transcript job client override.
            knowledge_store: Knowledge store client override.

        Raises:
            ConfigurationMissing: If either API key is absent. Raised before
                any client is created.
        """
        self.config = config or get_config()
        self.config.require_credentials()

        self.gateway = gateway or HttpGateway()
        self.transcript_client = transcript_client or TranscriptJobClient(
            self.config, self.gateway
        )
        self.knowledge_store = knowledge_store or KnowledgeStoreClient(
            self.config, self.gateway
        )
        self.last_run: PipelineRun | None = None

        logger.info("pipeline_initialized", model=self.config.gemini_model)

    async def __aenter__(self) -> "PipelineOrchestrator":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.gateway.aclose()

    async def index_video(self, video_url: str) -> ArtifactHandle:
        """Fetch the transcript of ``video_url`` and register it.

        Returns:
            Handle of the uploaded transcript. Every call produces a new,
            independent handle.
        """
        run = self._start_run("index")
        handle = await self._index(run, video_url)
        self._finish(run)
        return handle

    async def ask_about_video(self, video_url: str, question: str) -> Answer:
        """Index ``video_url`` and answer ``question`` about it.

        The video is always re-indexed; handles are not persisted between
        invocations.
        """
        result = await self.query(video_url, question)
        return result.answer

    async def query(self, video_url: str, question: str) -> QueryResult:
        """Index ``video_url``, answer ``question``, and return both results."""
        run = self._start_run("query")
        self._check_question(run, question)
        handle = await self._index(run, video_url)

        with self._stage(run, PipelineState.QUERYING):
            answer = await self.knowledge_store.ask(question, [handle])

        self._finish(run)
        return QueryResult(handle=handle, answer=answer)

    async def ask(self, question: str, handles: Sequence[ArtifactHandle]) -> Answer:
        """Answer ``question`` against handles obtained earlier in this process."""
        run = self._start_run("ask")
        with self._stage(run, PipelineState.QUERYING):
            answer = await self.knowledge_store.ask(question, handles)
        self._finish(run)
        return answer

    async def _index(self, run: PipelineRun, video_url: str) -> ArtifactHandle:
        with self._stage(run, PipelineState.SUBMITTING):
            run.video = parse_video_reference(video_url)
            job = await self.transcript_client.submit(run.video)

        with self._stage(run, PipelineState.POLLING):
            transcript = await self.transcript_client.await_completion(job)

        with self._stage(run, PipelineState.UPLOADING):
            return await self.knowledge_store.upload(transcript)

    def _check_question(self, run: PipelineRun, question: str) -> None:
        """Reject a blank question before any stage does network work."""
        if question and question.strip():
            return
        with self._stage(run, PipelineState.QUERYING):
            raise GenerationFailed("Question must not be empty")

    def _start_run(self, operation: str) -> PipelineRun:
        run = PipelineRun()
        self.last_run = run
        logger.info("pipeline_started", operation=operation)
        return run

    def _finish(self, run: PipelineRun) -> None:
        run.advance(PipelineState.DONE)
        logger.info(
            "pipeline_completed",
            video_id=run.video.video_id if run.video else None,
            stages=[state.value for state in run.history],
        )

    @contextmanager
    def _stage(self, run: PipelineRun, state: PipelineState) -> Iterator[None]:
        """Run one stage, tagging any pipeline error with ``state``."""
        run.advance(state)
        logger.info("pipeline_stage_started", stage=state.value)
        try:
            yield
        except VideoRAGError as e:
            if e.stage is None:
                e.stage = state
            run.fail(e)
            logger.error(
                "pipeline_stage_failed",
                stage=state.value,
                error_kind=e.kind,
                error=str(e),
            )
            raise
        except Exception as e:
            run.fail(e)
            logger.exception(
                "pipeline_stage_crashed",
                stage=state.value,
                error_type=type(e).__name__,
            )
            raise
