"""Transcript service for extracting video transcripts via an Apify actor run."""

import asyncio
import time
from collections.abc import Callable
from typing import Any

import httpx

from src.utils.logging import get_logger

from .config import VideoRAGConfig
from .errors import JobFailed, NoCaptionsAvailable, PollTimeout, SubmissionRejected
from .http_gateway import HttpGateway, SleepFunc
from .schemas import JobStatus, PollPolicy, Transcript, TranscriptJob, VideoReference
from .video_url import parse_video_reference

logger = get_logger(__name__)


class TranscriptJobClient:
    """Client for the asynchronous transcript scraping job.

    This client submits a scrape run for one video URL, polls the run until
    it reaches a terminal state or the wait budget runs out, and extracts the
    transcript from the run's dataset. Transient network failures are retried
    by the shared HttpGateway; terminal remote outcomes are not.
    """

    def __init__(
        self,
        config: VideoRAGConfig,
        gateway: HttpGateway,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize transcript job client with configuration.

        Args:
            config: Configuration object with Apify credentials and settings.
            gateway: Shared retrying HTTP executor.
            sleep: Coroutine used to wait between status polls.
            clock: Monotonic clock used to enforce the poll deadline.
        """
        self.config = config
        self.gateway = gateway
        self.retry_policy = config.retry_policy()
        self.poll_policy = config.poll_policy()
        self._sleep = sleep
        self._clock = clock
        self._base_url = config.apify_base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {config.apify_api_key}"}
        logger.info(
            "transcript_client_initialized",
            actor_id=config.apify_actor_id,
            api_key_present=bool(config.apify_api_key),
        )

    async def submit(self, video_url: str | VideoReference) -> TranscriptJob:
        """Start a scrape run for ``video_url``.

        Args:
            video_url: Video URL to extract the transcript of, or a reference
                that was already validated.

        Returns:
            TranscriptJob in PENDING state carrying the remote run id.

        Raises:
            InvalidReference: If the URL is not a supported video URL. No
                request is sent in that case.
            SubmissionRejected: If the service declines the run.
            NetworkExhausted: If the service stays unreachable.
        """
        video = (
            video_url
            if isinstance(video_url, VideoReference)
            else parse_video_reference(video_url)
        )

        logger.info("job_submitting", video_id=video.video_id)
        request = self.gateway.build_request(
            "POST",
            f"{self._base_url}/v2/acts/{self.config.apify_actor_id}/runs",
            self.retry_policy,
            headers=self._headers,
            json={"startUrls": [{"url": video.url}], "maxResults": 1},
        )
        response = await self.gateway.execute(request, self.retry_policy)

        if not response.is_success:
            logger.error(
                "job_submission_rejected",
                video_id=video.video_id,
                status_code=response.status_code,
            )
            raise SubmissionRejected(
                f"Transcript job was rejected with status {response.status_code}: "
                f"{_error_detail(response)}"
            )

        data = _json_data(response)
        job_id = data.get("id") if isinstance(data, dict) else None
        if not job_id:
            raise SubmissionRejected("Transcript job response did not include a run id")

        job = TranscriptJob(
            job_id=job_id,
            video=video,
            status=JobStatus.from_remote(data.get("status")),
        )
        logger.info(
            "job_submitted",
            video_id=video.video_id,
            job_id=job.job_id,
            status=job.status.value,
        )
        return job

    async def fetch_status(self, job: TranscriptJob) -> JobStatus:
        """Fetch the run status once and apply it to ``job``.

        Raises:
            JobFailed: If the service no longer knows the run.
            NetworkExhausted: If the service stays unreachable.
        """
        request = self.gateway.build_request(
            "GET",
            f"{self._base_url}/v2/actor-runs/{job.job_id}",
            self.retry_policy,
            headers=self._headers,
        )
        response = await self.gateway.execute(request, self.retry_policy)

        if not response.is_success:
            raise JobFailed(
                f"status request returned {response.status_code}: {_error_detail(response)}",
                job_id=job.job_id,
            )

        data = _json_data(response)
        if not isinstance(data, dict) or not data.get("status"):
            logger.warning(
                "job_status_unreadable",
                job_id=job.job_id,
                status_code=response.status_code,
                body=response.text[:200],
            )
        remote_status = data.get("status") if isinstance(data, dict) else None
        message = data.get("statusMessage") if isinstance(data, dict) else None
        status = JobStatus.from_remote(remote_status)
        job.transition(status, message=message or remote_status)

        logger.debug(
            "job_status_fetched",
            job_id=job.job_id,
            remote_status=remote_status,
            status=status.value,
        )
        return status

    async def await_completion(
        self, job: TranscriptJob, poll_policy: PollPolicy | None = None
    ) -> Transcript:
        """Poll ``job`` until it finishes and return its transcript.

        Each iteration sleeps one interval and then fetches the status, so a
        job that succeeds after ``k`` non-terminal polls costs ``k + 1`` status
        requests. The sleep is clipped to the remaining budget, and once the
        budget has elapsed the job is marked TIMED_OUT and abandoned; the
        remote run may keep going unobserved.

        Args:
            job: Job returned by ``submit``.
            poll_policy: Interval and max wait; defaults to the configured one.

        Returns:
            Transcript of the video.

        Raises:
            JobFailed: If the run ends in a failed, aborted or timed-out state.
            PollTimeout: If the wait budget elapses first.
            NoCaptionsAvailable: If the run succeeded without a transcript.
            NetworkExhausted: If the service stays unreachable.
        """
        policy = poll_policy or self.poll_policy
        started = self._clock()
        polls = 0

        logger.info(
            "job_polling_started",
            job_id=job.job_id,
            interval_seconds=policy.interval_seconds,
            max_wait_seconds=policy.max_wait_seconds,
        )

        while True:
            remaining = policy.max_wait_seconds - (self._clock() - started)
            await self._sleep(max(0.0, min(policy.interval_seconds, remaining)))

            status = await self.fetch_status(job)
            polls += 1

            if status is JobStatus.SUCCEEDED:
                break
            if status is JobStatus.FAILED:
                logger.error(
                    "job_failed",
                    job_id=job.job_id,
                    polls=polls,
                    reason=job.status_message,
                )
                raise JobFailed(job.status_message or "remote job failed", job_id=job.job_id)

            waited = self._clock() - started
            if waited >= policy.max_wait_seconds:
                job.transition(JobStatus.TIMED_OUT)
                logger.error("job_poll_timeout", job_id=job.job_id, polls=polls, waited=waited)
                raise PollTimeout(job.job_id, waited)

        logger.info(
            "job_succeeded",
            job_id=job.job_id,
            polls=polls,
            waited=self._clock() - started,
        )
        return await self._fetch_dataset(job)

    async def fetch_transcript(
        self, video_url: str, poll_policy: PollPolicy | None = None
    ) -> Transcript:
        """Submit a job for ``video_url`` and wait for its transcript."""
        job = await self.submit(video_url)
        return await self.await_completion(job, poll_policy)

    async def _fetch_dataset(self, job: TranscriptJob) -> Transcript:
        """Read the transcript from the finished run's dataset."""
        request = self.gateway.build_request(
            "GET",
            f"{self._base_url}/v2/actor-runs/{job.job_id}/dataset/items",
            self.retry_policy,
            headers=self._headers,
            params={"format": "json", "clean": "true"},
        )
        response = await self.gateway.execute(request, self.retry_policy)

        if not response.is_success:
            raise JobFailed(
                f"dataset request returned {response.status_code}: {_error_detail(response)}",
                job_id=job.job_id,
            )

        try:
            items = response.json()
        except ValueError as e:
            raise JobFailed("dataset response was not valid JSON", job_id=job.job_id) from e

        if not isinstance(items, list) or not items or not isinstance(items[0], dict):
            logger.warning("transcript_unavailable", job_id=job.job_id, video_id=job.video.video_id)
            raise NoCaptionsAvailable(
                f"No transcript found for video {job.video.video_id}. "
                "The video might not have captions."
            )

        item = items[0]
        text = (item.get("text") or "").strip()
        if not text:
            logger.warning("transcript_unavailable", job_id=job.job_id, video_id=job.video.video_id)
            raise NoCaptionsAvailable(
                f"No transcript text found for video {job.video.video_id}"
            )

        transcript = Transcript(
            video_id=job.video.video_id,
            text=text,
            title=item.get("title") or "",
            channel_name=item.get("channelName") or "",
        )
        logger.info(
            "transcript_fetched",
            video_id=transcript.video_id,
            title=transcript.title,
            channel=transcript.channel_name,
            characters=len(transcript.text),
        )
        return transcript


def _json_data(response: httpx.Response) -> Any:
    """Return the ``data`` envelope of an Apify response, or None."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("data") if isinstance(body, dict) else None


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from an Apify error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text[:200] or response.reason_phrase
