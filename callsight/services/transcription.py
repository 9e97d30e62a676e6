import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from callsight.config import settings
from callsight.errors import AudioValidationError, EngineError, PipelineError, TransportTimeoutError
from callsight.services.audio_fetcher import AudioFetcher
from callsight.services.audio_validator import validate_audio

logger = logging.getLogger(__name__)

JobState = Literal["queued", "processing", "completed", "error"]

AGENT_ROLE = "Agent"
CUSTOMER_ROLE = "Customer"


@dataclass
class JobStatus:
    id: str
    status: JobState
    payload: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class Utterance:
    speaker: str
    role: str
    text: str
    start: int
    end: int
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "speaker": self.speaker,
            "role": self.role,
            "text": self.text,
            "start": self.start,
            "end": self.end,
            "confidence": self.confidence,
        }


@dataclass
class Transcript:
    """A completed transcription job reduced to the fields the pipeline stores."""
    job_id: str
    text: str
    utterances: List[Utterance]
    sentiment: List[Dict[str, Any]]
    entities: List[Dict[str, Any]]
    summary: Optional[str]
    audio_duration: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Transcript":
        roles: Dict[str, str] = {}
        utterances = []
        for item in payload.get("utterances") or []:
            speaker = str(item.get("speaker") or "")
            # First speaker heard is taken to be the agent who placed the call.
            if speaker not in roles:
                roles[speaker] = AGENT_ROLE if not roles else CUSTOMER_ROLE
            utterances.append(
                Utterance(
                    speaker=speaker,
                    role=roles[speaker],
                    text=item.get("text") or "",
                    start=int(item.get("start") or 0),
                    end=int(item.get("end") or 0),
                    confidence=float(item.get("confidence") or 0.0),
                )
            )
        sentiment = [
            {
                "text": s.get("text"),
                "sentiment": s.get("sentiment"),
                "confidence": s.get("confidence"),
                "speaker": s.get("speaker"),
                "start": s.get("start"),
                "end": s.get("end"),
            }
            for s in payload.get("sentiment_analysis_results") or []
        ]
        return cls(
            job_id=str(payload.get("id") or ""),
            text=payload.get("text") or "",
            utterances=utterances,
            sentiment=sentiment,
            entities=list(payload.get("entities") or []),
            summary=payload.get("summary"),
            audio_duration=payload.get("audio_duration"),
        )


_transient = retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)

# POSTs create uploads and billed jobs; only retry when the request never left.
_unsent = retry(
    retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)


class AssemblyAIClient:
    """Thin async wrapper over the AssemblyAI v2 REST API."""

    def __init__(self, api_key: str, base_url: str = "https://api.assemblyai.com/v2",
                 timeout: float = 60, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"authorization": api_key},
            timeout=httpx.Timeout(timeout, connect=15),
            transport=transport,
        )
        # Probes go to our own media endpoint, so they must not carry the API key.
        self._probe_client = httpx.AsyncClient(timeout=15, transport=transport, follow_redirects=True)

    async def aclose(self):
        await self._client.aclose()
        await self._probe_client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        send = self._send if method == "GET" else self._send_once
        try:
            response = await send(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"AssemblyAI {method} {url} timed out: {e}") from e
        except httpx.TransportError as e:
            raise EngineError(f"AssemblyAI {method} {url} failed: {e}") from e
        if response.status_code >= 400:
            raise EngineError(f"AssemblyAI {method} {url} returned {response.status_code}: {response.text[:300]}")
        return response.json()

    @_transient
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        return await self._client.request(method, url, **kwargs)

    @_unsent
    async def _send_once(self, method: str, url: str, **kwargs) -> httpx.Response:
        return await self._client.request(method, url, **kwargs)

    async def upload(self, data: bytes) -> str:
        body = await self._request(
            "POST", "/upload", content=data, headers={"content-type": "application/octet-stream"}
        )
        upload_url = body.get("upload_url")
        if not upload_url:
            raise EngineError("AssemblyAI upload returned no upload_url")
        return upload_url

    async def submit(self, audio_url: str, options: Dict[str, Any]) -> str:
        body = await self._request("POST", "/transcript", json={"audio_url": audio_url, **options})
        job_id = body.get("id")
        if not job_id:
            raise EngineError(f"AssemblyAI submit returned no job id: {body}")
        return job_id

    async def get_status(self, job_id: str) -> JobStatus:
        body = await self._request("GET", f"/transcript/{job_id}")
        return JobStatus(id=job_id, status=body.get("status", "queued"), payload=body, error=body.get("error"))

    async def probe(self, url: str) -> bool:
        """HEAD-requests an audio URL to check the engine will be able to fetch it."""
        try:
            response = await self._probe_client.head(url)
        except httpx.HTTPError as e:
            logger.warning(f"Direct URL probe failed: {e}")
            return False
        return response.status_code < 400


def build_submit_options(speakers_expected: int = 2, word_boost: Optional[List[str]] = None) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "speech_model": "best",
        "speaker_labels": True,
        "speakers_expected": speakers_expected,
        "summarization": True,
        "summary_model": "conversational",
        "summary_type": "paragraph",
        "sentiment_analysis": True,
        "entity_detection": True,
        "auto_highlights": True,
        "punctuate": True,
        "format_text": True,
        "filter_profanity": False,
    }
    if word_boost:
        options["word_boost"] = list(word_boost)
        options["boost_param"] = "default"
    return options


class TranscriptionService:
    """
    Gets one call's recording transcribed.

    When a direct media link can be produced and the engine can reach it, the
    engine fetches the audio itself. Otherwise the recording is downloaded,
    validated and uploaded. Either way the job is then polled to completion.
    """

    def __init__(
        self,
        engine: AssemblyAIClient,
        fetcher: AudioFetcher,
        link_builder: Optional[Callable[[str], Optional[str]]] = None,
        poll_interval: float = 5,
        max_poll_attempts: int = 120,
        speakers_expected: int = 2,
        word_boost: Optional[List[str]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.engine = engine
        self.fetcher = fetcher
        self.link_builder = link_builder
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.options = build_submit_options(speakers_expected, word_boost)
        self.sleep = sleep

    async def transcribe(self, contact_id: str, recording_location: str) -> Transcript:
        job_id = await self._submit_direct(contact_id, recording_location)
        if job_id is None:
            job_id = await self._submit_uploaded(contact_id, recording_location)
        return await self.wait_for_completion(contact_id, job_id)

    async def _submit_direct(self, contact_id: str, recording_location: str) -> Optional[str]:
        if self.link_builder is None:
            return None
        url = self.link_builder(recording_location)
        if not url:
            return None
        if not await self.engine.probe(url):
            logger.info(f"[{contact_id}] Direct URL not reachable, falling back to upload.")
            return None
        try:
            job_id = await self.engine.submit(url, self.options)
        except PipelineError as e:
            logger.warning(f"[{contact_id}] Direct URL submission failed ({e}), falling back to upload.")
            return None
        logger.info(f"[{contact_id}] Submitted direct URL, job {job_id}")
        return job_id

    async def _submit_uploaded(self, contact_id: str, recording_location: str) -> str:
        audio = await self.fetcher.fetch(recording_location)
        verdict = validate_audio(audio.data, audio.path)
        if not verdict.valid:
            raise AudioValidationError(f"{audio.path}: {verdict.reason}", verdict)
        if not verdict.confident:
            logger.warning(f"[{contact_id}] {verdict.reason} (header {verdict.header_hex[:32]})")
        upload_url = await self.engine.upload(audio.data)
        job_id = await self.engine.submit(upload_url, self.options)
        logger.info(f"[{contact_id}] Uploaded {audio.size} bytes ({verdict.detected_type}), job {job_id}")
        return job_id

    async def wait_for_completion(self, contact_id: str, job_id: str) -> Transcript:
        for attempt in range(1, self.max_poll_attempts + 1):
            status = await self.engine.get_status(job_id)
            if status.status == "completed":
                logger.info(f"[{contact_id}] Transcription {job_id} completed after {attempt} polls")
                return Transcript.from_payload(status.payload)
            if status.status == "error":
                raise EngineError(f"Transcription {job_id} failed: {status.error or 'unknown error'}")
            if attempt % 12 == 0:
                logger.info(f"[{contact_id}] Transcription {job_id} still {status.status} (poll {attempt}/{self.max_poll_attempts})")
            await self.sleep(self.poll_interval)
        raise TransportTimeoutError(
            f"Transcription {job_id} not finished after {self.max_poll_attempts} polls"
        )


def get_assemblyai_client() -> AssemblyAIClient:
    settings.require("ASSEMBLYAI_API_KEY")
    return AssemblyAIClient(
        api_key=settings.ASSEMBLYAI_API_KEY,
        base_url=settings.ASSEMBLYAI_BASE_URL,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
