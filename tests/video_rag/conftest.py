"""Fake Apify and Gemini services shared by the video RAG tests."""

import json
import re

import httpx
import pytest

from src.video_rag.config import VideoRAGConfig
from src.video_rag.http_gateway import HttpGateway
from src.video_rag.knowledge_store import KnowledgeStoreClient
from src.video_rag.pipeline import PipelineOrchestrator
from src.video_rag.transcript_service import TranscriptJobClient

RUST_CAPTIONS = "Rust is a systems language focused on safety."
GEMINI_HOST = "generativelanguage.googleapis.com"

_FILE_PART_RE = re.compile(r"Content-Type: text/plain\r\n\r\n(.*?)\r\n--", re.DOTALL)


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeApify:
    """In-memory stand-in for the Apify actor run API.

    ``statuses`` are returned by successive status polls; the last one
    repeats forever.
    """

    def __init__(self) -> None:
        self.statuses = ["SUCCEEDED"]
        self.status_message: str | None = None
        self.items: list[dict] = [
            {
                "title": "Why Rust?",
                "channelName": "Systems Weekly",
                "text": RUST_CAPTIONS,
            }
        ]
        self.submit_status = 201
        self.runs = 0
        self.status_fetches = 0
        self.submitted_urls: list[str] = []
        self.requests: list[httpx.Request] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/runs"):
            if self.submit_status >= 400:
                return httpx.Response(
                    self.submit_status,
                    json={"error": {"message": "Monthly usage hard limit exceeded"}},
                )
            self.runs += 1
            self.submitted_urls.append(json.loads(request.content)["startUrls"][0]["url"])
            return httpx.Response(
                201, json={"data": {"id": f"run-{self.runs}", "status": "READY"}}
            )

        if path.endswith("/dataset/items"):
            return httpx.Response(200, json=self.items)

        if path.startswith("/v2/actor-runs/"):
            status = self.statuses[min(self.status_fetches, len(self.statuses) - 1)]
            self.status_fetches += 1
            data = {"id": path.rsplit("/", 1)[-1], "status": status}
            if self.status_message:
                data["statusMessage"] = self.status_message
            return httpx.Response(200, json={"data": data})

        return httpx.Response(404, json={"error": {"message": "Not found"}})


class FakeGemini:
    """In-memory stand-in for the Gemini File API and generateContent.

    Generated answers quote the uploaded documents they are grounded in.
    """

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self.upload_status = 200
        self.upload_state = "ACTIVE"
        self.file_states: list[str] = ["ACTIVE"]
        self.file_state_fetches = 0
        self.generate_response: dict | None = None
        self.generate_requests: list[dict] = []
        self.requests: list[httpx.Request] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/upload/v1beta/files":
            if self.upload_status >= 400:
                return httpx.Response(
                    self.upload_status, json={"error": {"message": "File too large"}}
                )
            name = f"files/file-{len(self.files) + 1}"
            match = _FILE_PART_RE.search(request.content.decode("utf-8"))
            self.files[name] = match.group(1) if match else ""
            return httpx.Response(
                200,
                json={
                    "file": {
                        "name": name,
                        "uri": f"https://{GEMINI_HOST}/v1beta/{name}",
                        "mimeType": "text/plain",
                        "state": self.upload_state,
                    }
                },
            )

        if path.endswith(":generateContent"):
            body = json.loads(request.content)
            self.generate_requests.append(body)
            if self.generate_response is not None:
                return httpx.Response(200, json=self.generate_response)
            return self._grounded_answer(body)

        if path.startswith("/v1beta/files/"):
            state = self.file_states[min(self.file_state_fetches, len(self.file_states) - 1)]
            self.file_state_fetches += 1
            return httpx.Response(200, json={"name": path[len("/v1beta/"):], "state": state})

        return httpx.Response(404, json={"error": {"message": "Not found"}})

    def _grounded_answer(self, body: dict) -> httpx.Response:
        uris = [
            part["fileData"]["fileUri"]
            for part in body["contents"][0]["parts"]
            if "fileData" in part
        ]
        names = [uri.split("/v1beta/", 1)[-1] for uri in uris]
        if any(name not in self.files for name in names):
            return httpx.Response(
                400, json={"error": {"message": "File not found or not accessible"}}
            )

        prefix = "The transcript says: "
        quoted = " ".join(self.files[name] for name in names)
        text = prefix + quoted
        return httpx.Response(
            200,
            json={
                "candidates": [
                    {
                        "content": {"parts": [{"text": text}], "role": "model"},
                        "finishReason": "STOP",
                        "citationMetadata": {
                            "citationSources": [
                                {
                                    "startIndex": len(prefix.encode()),
                                    "endIndex": len(text.encode()),
                                    "uri": uris[0],
                                }
                            ]
                        },
                    }
                ]
            },
        )


class FakeServices:
    """Routes requests to the fake Apify or Gemini service by host."""

    def __init__(self) -> None:
        self.apify = FakeApify()
        self.gemini = FakeGemini()
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == GEMINI_HOST:
            return self.gemini.handle(request)
        return self.apify.handle(request)

    @property
    def request_count(self) -> int:
        return len(self.apify.requests) + len(self.gemini.requests)


@pytest.fixture
def config() -> VideoRAGConfig:
    """Create test configuration with both credentials present."""
    return VideoRAGConfig(
        apify_api_key="apify-test-key",
        apify_base_url="https://api.apify.com",
        apify_actor_id="streamers~youtube-scraper",
        gemini_api_key="gemini-test-key",
        gemini_base_url=f"https://{GEMINI_HOST}",
        gemini_model="gemini-2.0-flash",
        poll_interval_seconds=5,
        poll_max_wait_seconds=300,
        file_poll_interval_seconds=2,
        file_max_wait_seconds=30,
        http_timeout_seconds=10,
        http_max_attempts=3,
        http_backoff_base_seconds=1,
        http_backoff_multiplier=2,
        http_backoff_max_seconds=30,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def gateway(services: FakeServices, clock: FakeClock) -> HttpGateway:
    """Gateway whose client talks to the fake services."""
    return HttpGateway(httpx.AsyncClient(transport=services.transport), sleep=clock.sleep)


@pytest.fixture
def transcript_client(
    config: VideoRAGConfig, gateway: HttpGateway, clock: FakeClock
) -> TranscriptJobClient:
    return TranscriptJobClient(config, gateway, sleep=clock.sleep, clock=clock)


@pytest.fixture
def knowledge_store(
    config: VideoRAGConfig, gateway: HttpGateway, clock: FakeClock
) -> KnowledgeStoreClient:
    return KnowledgeStoreClient(config, gateway, sleep=clock.sleep, clock=clock)


@pytest.fixture
def orchestrator(
    config: VideoRAGConfig,
    gateway: HttpGateway,
    transcript_client: TranscriptJobClient,
    knowledge_store: KnowledgeStoreClient,
) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        config,
        gateway=gateway,
        transcript_client=transcript_client,
        knowledge_store=knowledge_store,
    )
