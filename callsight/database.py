import datetime
import logging
from typing import Optional
from urllib.parse import urlparse
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from callsight.config import settings

logger = logging.getLogger(__name__)


def _normalize_async_db_url(url: str) -> str:
    # Ensure async driver scheme
    if url.startswith("postgresql+psycopg2://"):
        url = "postgresql+asyncpg://" + url.split("://", 1)[1]
    elif url.startswith("postgres://"):
        url = "postgresql+asyncpg://" + url.split("://", 1)[1]
    elif url.startswith("postgresql://") and "+" not in url.split("://", 1)[0]:
        url = "postgresql+asyncpg://" + url.split("://", 1)[1]
    elif url.startswith("sqlite://"):
        url = "sqlite+aiosqlite://" + url.split("://", 1)[1]

    if url.startswith("postgresql+asyncpg://"):
        # asyncpg rejects libpq-only query args such as sslmode and channel_binding
        url = urlparse(url)._replace(query="").geturl()
    return url


def build_engine(raw_url: str) -> AsyncEngine:
    """Creates an async engine, enabling SSL for remote Postgres hosts."""
    async_url = _normalize_async_db_url(raw_url)
    connect_args = {}
    if async_url.startswith("postgresql+asyncpg://"):
        host = (urlparse(async_url).hostname or "").lower()
        ssl_disabled = "sslmode=disable" in raw_url.lower()
        if not (ssl_disabled or host in ("localhost", "127.0.0.1")):
            connect_args = {"ssl": True}
    return create_async_engine(async_url, pool_pre_ping=True, connect_args=connect_args)


_results_engine: Optional[AsyncEngine] = None
_call_log_engine: Optional[AsyncEngine] = None


def get_results_engine() -> AsyncEngine:
    global _results_engine
    if _results_engine is None:
        settings.require("DATABASE_URL")
        _results_engine = build_engine(settings.DATABASE_URL)
    return _results_engine


def get_call_log_engine() -> AsyncEngine:
    global _call_log_engine
    if _call_log_engine is None:
        settings.require("CALL_LOG_DATABASE_URL")
        if settings.CALL_LOG_DATABASE_URL == settings.DATABASE_URL:
            _call_log_engine = get_results_engine()
        else:
            _call_log_engine = build_engine(settings.CALL_LOG_DATABASE_URL)
    return _call_log_engine


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    pass

# --- Database Models ---

class CallRecord(Base):
    __tablename__ = "call_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contact_id = Column(String, unique=True, nullable=False, index=True)
    recording_location = Column(String)
    agent_username = Column(String, index=True)
    initiation_timestamp = Column(DateTime(timezone=True), index=True)
    queue_name = Column(String)
    disposition_title = Column(String)
    campaign_name = Column(String)
    campaign_id = Column(String)
    customer_cli = Column(String)
    agent_hold_time = Column(Integer, nullable=True)
    total_hold_time = Column(Integer, nullable=True)
    time_in_queue = Column(Integer, nullable=True)
    call_duration = Column(Text)  # JSON: {"minutes": m, "seconds": s}
    transcript_text = Column(Text)
    speaker_data = Column(Text)  # JSON list of utterances
    sentiment_analysis = Column(Text)  # JSON list
    entities = Column(Text)  # JSON list
    call_summary = Column(Text, nullable=True)
    primary_category = Column(String, index=True)
    categories = Column(Text)  # JSON list of 1-3 labels
    satisfaction_score = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

# --- Utility to create tables ---

async def create_db_and_tables(engine: Optional[AsyncEngine] = None):
    engine = engine or get_results_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engines():
    global _results_engine, _call_log_engine
    for engine in {id(e): e for e in (_results_engine, _call_log_engine) if e is not None}.values():
        await engine.dispose()
    _results_engine = None
    _call_log_engine = None
