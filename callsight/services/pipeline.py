import logging
from dataclasses import dataclass

from callsight import database
from callsight.config import settings
from callsight.services.audio_fetcher import AudioFetcher
from callsight.services.call_logs import CallLogSource
from callsight.services.categorization import Categorizer, OpenAICategorizationEngine
from callsight.services.discovery import MissingWorkDiscoverer
from callsight.services.media_links import MediaLinkSigner
from callsight.services.orchestrator import BatchOrchestrator, PipelineCallProcessor
from callsight.services.path_resolver import PathResolver
from callsight.services.persistence import PersistenceWriter
from callsight.services.processing_lock import ProcessingLock, get_processing_lock
from callsight.services.query_agent import CallQueryAgent
from callsight.services.record_store import TranscriptionRecordStore
from callsight.services.sftp_store import SftpFileStore, get_sftp_store
from callsight.services.transcription import AssemblyAIClient, TranscriptionService, get_assemblyai_client

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Every collaborator of the batch pipeline, wired once per process."""
    store: TranscriptionRecordStore
    call_logs: CallLogSource
    lock: ProcessingLock
    discoverer: MissingWorkDiscoverer
    sftp: SftpFileStore
    fetcher: AudioFetcher
    engine: AssemblyAIClient
    signer: MediaLinkSigner
    transcriber: TranscriptionService
    categorizer: Categorizer
    orchestrator: BatchOrchestrator
    query_agent: CallQueryAgent

    async def close(self):
        await self.engine.aclose()
        await self.sftp.close()


def build_pipeline() -> Pipeline:
    store = TranscriptionRecordStore(database.make_sessionmaker(database.get_results_engine()))
    call_logs = CallLogSource(database.make_sessionmaker(database.get_call_log_engine()), settings.CALL_LOG_TABLE)
    lock = get_processing_lock()
    discoverer = MissingWorkDiscoverer(call_logs, store, lock)

    sftp = get_sftp_store()
    resolver = PathResolver(
        root=settings.SFTP_RECORDINGS_ROOT,
        tenant_prefixes=settings.SFTP_TENANT_PREFIXES,
        lookback_days=settings.DATE_FALLBACK_DAYS,
    )
    fetcher = AudioFetcher(
        sftp,
        resolver,
        stat_timeout=settings.STAT_TIMEOUT_SECONDS,
        download_base_timeout=settings.DOWNLOAD_BASE_TIMEOUT_SECONDS,
        download_seconds_per_mb=settings.DOWNLOAD_SECONDS_PER_MB,
        download_max_timeout=settings.DOWNLOAD_MAX_TIMEOUT_SECONDS,
        min_bytes=settings.MIN_RECORDING_BYTES,
    )

    engine = get_assemblyai_client()
    signer = MediaLinkSigner(settings.API_KEY, settings.PUBLIC_BASE_URL, settings.MEDIA_LINK_TTL_SECONDS)
    transcriber = TranscriptionService(
        engine,
        fetcher,
        link_builder=signer.build_url if settings.PUBLIC_BASE_URL else None,
        poll_interval=settings.POLL_INTERVAL_SECONDS,
        max_poll_attempts=settings.POLL_MAX_ATTEMPTS,
        speakers_expected=settings.SPEAKERS_EXPECTED,
        word_boost=settings.WORD_BOOST,
    )
    categorizer = Categorizer(
        OpenAICategorizationEngine(settings.CATEGORISATION_MODEL, settings.CATEGORISATION_TIMEOUT_SECONDS),
        timeout=settings.CATEGORISATION_TIMEOUT_SECONDS,
    )
    processor = PipelineCallProcessor(transcriber, categorizer, PersistenceWriter(store))
    orchestrator = BatchOrchestrator(
        processor,
        store,
        lock,
        discoverer=discoverer,
        batch_size=max(3, min(5, settings.BATCH_SIZE)),
        batch_delay=settings.BATCH_DELAY_SECONDS,
        max_cycles=settings.MAX_CYCLES,
    )
    logger.info(
        f"Pipeline ready (batch size {settings.BATCH_SIZE}, delay {settings.BATCH_DELAY_SECONDS}s, "
        f"direct URL {'on' if settings.PUBLIC_BASE_URL else 'off'})"
    )
    return Pipeline(
        store=store,
        call_logs=call_logs,
        lock=lock,
        discoverer=discoverer,
        sftp=sftp,
        fetcher=fetcher,
        engine=engine,
        signer=signer,
        transcriber=transcriber,
        categorizer=categorizer,
        orchestrator=orchestrator,
        query_agent=CallQueryAgent(model=settings.QUERY_MODEL, timeout=settings.QUERY_TIMEOUT_SECONDS),
    )


_pipeline_instance = None

def get_pipeline() -> Pipeline:
    """
    Returns a singleton Pipeline initialized from settings.
    """
    global _pipeline_instance
    if _pipeline_instance is None:
        _pipeline_instance = build_pipeline()
    return _pipeline_instance


async def close_pipeline():
    global _pipeline_instance
    if _pipeline_instance is not None:
        await _pipeline_instance.close()
        _pipeline_instance = None
