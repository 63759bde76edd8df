"""Knowledge store service for registering transcripts and asking grounded questions via Gemini."""

import asyncio
import json
import time
from collections.abc import Callable, Sequence
from typing import Any

import httpx

from src.utils.logging import get_logger

from .config import VideoRAGConfig
from .errors import GenerationFailed, NoIndexProvided, UploadRejected
from .http_gateway import HttpGateway, SleepFunc
from .schemas import Answer, ArtifactHandle, Citation, Transcript

logger = get_logger(__name__)

ANSWER_PROMPT = (
    "Based on the content of the attached video transcript, please answer the "
    "following question: {question}\n\n"
    "Provide a detailed and accurate answer based solely on the information in "
    "the transcript."
)

# Finish reasons that mean the model refused or was stopped before answering.
BLOCKED_FINISH_REASONS = frozenset(
    {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"}
)


def build_document(transcript: Transcript) -> str:
    """Render a transcript as a plain-text document with a short context header.

    Examples:
        >>> t = Transcript(video_id="abc", text="Hello.", title="Intro")
        >>> build_document(t)
        'Title: Intro\\n\\nHello.'
    """
    header = []
    if transcript.title:
        header.append(f"Title: {transcript.title}")
    if transcript.channel_name:
        header.append(f"Channel: {transcript.channel_name}")
    if not header:
        return transcript.text
    return "\n".join(header) + "\n\n" + transcript.text


class KnowledgeStoreClient:
    """Client for the Gemini File API and grounded generation.

    Uploaded transcripts become artifact handles (file names and URIs) that
    later questions are grounded in. Retrieval and ranking over the file
    content happen entirely on the remote side; this client only shapes
    requests and unpacks responses.
    """

    def __init__(
        self,
        config: VideoRAGConfig,
        gateway: HttpGateway,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize knowledge store client with configuration.

        Args:
            config: Configuration object with Gemini credentials and model.
            gateway: Shared retrying HTTP executor.
            sleep: Coroutine used to wait while an upload is processed.
            clock: Monotonic clock bounding that wait.
        """
        self.config = config
        self.gateway = gateway
        self.retry_policy = config.retry_policy()
        self.file_poll_policy = config.file_poll_policy()
        self._sleep = sleep
        self._clock = clock
        self._base_url = config.gemini_base_url.rstrip("/")
        self._headers = {"x-goog-api-key": config.gemini_api_key}
        logger.info(
            "knowledge_store_initialized",
            model=config.gemini_model,
            api_key_present=bool(config.gemini_api_key),
        )

    async def upload(self, transcript: Transcript) -> ArtifactHandle:
        """Register ``transcript`` as a queryable text file.

        Args:
            transcript: Transcript produced by the transcript job.

        Returns:
            ArtifactHandle of the uploaded file, once it is ACTIVE.

        Raises:
            UploadRejected: If the document is empty, refused, or fails processing.
            NetworkExhausted: If the service stays unreachable.
        """
        if not transcript.text.strip():
            raise UploadRejected("Transcript text is empty; nothing to upload")

        document = build_document(transcript)

        display_name = f"youtube_transcript_{transcript.video_id}.txt"
        logger.info(
            "transcript_uploading",
            video_id=transcript.video_id,
            display_name=display_name,
            characters=len(document),
        )

        request = self.gateway.build_request(
            "POST",
            f"{self._base_url}/upload/v1beta/files",
            self.retry_policy,
            headers={**self._headers, "X-Goog-Upload-Protocol": "multipart"},
            data={"metadata": json.dumps({"file": {"display_name": display_name}})},
            files={"file": (display_name, document.encode("utf-8"), "text/plain")},
        )
        response = await self.gateway.execute(request, self.retry_policy)

        if not response.is_success:
            logger.error(
                "transcript_upload_rejected",
                video_id=transcript.video_id,
                status_code=response.status_code,
            )
            raise UploadRejected(
                f"Upload was rejected with status {response.status_code}: "
                f"{_error_detail(response)}"
            )

        body = _json_body(response)
        file_info = body.get("file") if isinstance(body, dict) else None
        if not isinstance(file_info, dict) or not file_info.get("name") or not file_info.get("uri"):
            raise UploadRejected("Upload response did not describe the stored file")

        handle = ArtifactHandle(
            name=file_info["name"],
            uri=file_info["uri"],
            display_name=file_info.get("displayName") or display_name,
            mime_type=file_info.get("mimeType") or "text/plain",
        )
        logger.info(
            "transcript_uploaded",
            video_id=transcript.video_id,
            file_name=handle.name,
            state=file_info.get("state"),
        )

        if file_info.get("state", "ACTIVE") != "ACTIVE":
            await self._await_active(handle)
        return handle

    async def ask(self, question: str, handles: Sequence[ArtifactHandle]) -> Answer:
        """Ask ``question`` grounded in the files behind ``handles``.

        Args:
            question: Natural-language question; must not be blank.
            handles: One or more artifact handles from ``upload``.

        Returns:
            Answer text and the citations the model attached to it.

        Raises:
            NoIndexProvided: If ``handles`` is empty. No request is sent.
            GenerationFailed: If the question is blank or no answer is produced.
            NetworkExhausted: If the service stays unreachable.
        """
        if not handles:
            raise NoIndexProvided("At least one indexed transcript is required to answer")
        if not question or not question.strip():
            raise GenerationFailed("Question must not be empty")

        logger.info("question_asking", handles=len(handles), model=self.config.gemini_model)

        parts: list[dict[str, Any]] = [{"text": ANSWER_PROMPT.format(question=question.strip())}]
        parts.extend(
            {"fileData": {"mimeType": handle.mime_type, "fileUri": handle.uri}}
            for handle in handles
        )
        request = self.gateway.build_request(
            "POST",
            f"{self._base_url}/v1beta/models/{self.config.gemini_model}:generateContent",
            self.retry_policy,
            headers=self._headers,
            json={"contents": [{"role": "user", "parts": parts}]},
        )
        response = await self.gateway.execute(request, self.retry_policy)

        if not response.is_success:
            logger.error("generation_rejected", status_code=response.status_code)
            raise GenerationFailed(
                f"Generation failed with status {response.status_code}: "
                f"{_error_detail(response)}"
            )

        answer = parse_answer(_json_body(response))
        logger.info(
            "question_answered",
            characters=len(answer.text),
            citations=len(answer.citations),
        )
        return answer

    async def _await_active(self, handle: ArtifactHandle) -> None:
        """Wait until an uploaded file leaves the PROCESSING state."""
        policy = self.file_poll_policy
        started = self._clock()

        while True:
            remaining = policy.max_wait_seconds - (self._clock() - started)
            await self._sleep(max(0.0, min(policy.interval_seconds, remaining)))

            request = self.gateway.build_request(
                "GET",
                f"{self._base_url}/v1beta/{handle.name}",
                self.retry_policy,
                headers=self._headers,
            )
            response = await self.gateway.execute(request, self.retry_policy)
            if not response.is_success:
                raise UploadRejected(
                    f"Could not read state of {handle.name}: status {response.status_code}"
                )

            body = _json_body(response)
            state = body.get("state") if isinstance(body, dict) else None
            logger.debug("file_state_fetched", file_name=handle.name, state=state)

            if state == "ACTIVE":
                return
            if state == "FAILED":
                raise UploadRejected(f"Processing of {handle.name} failed")
            if self._clock() - started >= policy.max_wait_seconds:
                raise UploadRejected(
                    f"{handle.name} was still {state or 'processing'} after "
                    f"{policy.max_wait_seconds:.0f}s"
                )


def parse_answer(body: Any) -> Answer:
    """Unpack a generateContent response into an Answer.

    Raises:
        GenerationFailed: If the prompt was blocked or no usable text came back.
    """
    if not isinstance(body, dict):
        raise GenerationFailed("Generation response was not valid JSON")

    block_reason = (body.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise GenerationFailed(f"Question was blocked: {block_reason}")

    candidates = body.get("candidates") or []
    if not candidates:
        raise GenerationFailed("No answer generated")

    candidate = candidates[0]
    finish_reason = candidate.get("finishReason")
    if finish_reason in BLOCKED_FINISH_REASONS:
        raise GenerationFailed(f"Answer was withheld: {finish_reason}")

    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(part.get("text") or "" for part in parts if isinstance(part, dict))
    if not text.strip():
        raise GenerationFailed("No answer generated")

    # Citation offsets count UTF-8 bytes; a zero startIndex is omitted on the wire.
    encoded = text.encode("utf-8")
    citations = []
    for source in (candidate.get("citationMetadata") or {}).get("citationSources") or []:
        end = source.get("endIndex")
        start = source.get("startIndex")
        if start is None and end is not None:
            start = 0
        excerpt = ""
        if start is not None and end is not None:
            excerpt = encoded[start:end].decode("utf-8", "replace")
        citations.append(
            Citation(start_index=start, end_index=end, uri=source.get("uri"), excerpt=excerpt)
        )

    return Answer(text=text, citations=citations)


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from a Google API error body."""
    body = _json_body(response)
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text[:200] or response.reason_phrase
