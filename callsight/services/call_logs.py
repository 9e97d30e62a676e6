import datetime
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.ext.asyncio import async_sessionmaker

from callsight.services.path_resolver import is_valid_recording_location

logger = logging.getLogger(__name__)

# Dialler outcomes that never produce a conversation worth transcribing.
EXCLUDED_DISPOSITIONS = [
    "No Answer - No Voicemail Available",
    "No Answer - Voicemail Available",
    "Engaged",
    "Done",
    "Invalid Endpoint",
]

CALL_LOG_COLUMNS = (
    "contact_id, recording_location, agent_username, initiation_timestamp, queue_name, "
    "disposition_title, campaign_name, campaign_id, customer_cli, total_call_time, "
    "agent_hold_time, total_hold_time, time_in_queue"
)

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def to_seconds(value: Any) -> Optional[int]:
    """Normalises an interval-ish value (timedelta, number, "hh:mm:ss", {"minutes", "seconds"}) to seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime.timedelta):
        return int(value.total_seconds())
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, Mapping):
        hours = int(value.get("hours") or 0)
        minutes = int(value.get("minutes") or 0)
        seconds = int(value.get("seconds") or 0)
        return hours * 3600 + minutes * 60 + seconds
    if isinstance(value, str):
        parts = value.strip().split(":")
        try:
            numbers = [float(p) for p in parts]
        except ValueError:
            return None
        total = 0.0
        for number in numbers:
            total = total * 60 + number
        return int(total)
    return None


def to_datetime(value: Any) -> Optional[datetime.datetime]:
    if value is None or isinstance(value, datetime.datetime):
        return value
    if isinstance(value, str):
        return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    return None


@dataclass
class CallLogRecord:
    """
    One dialler call as reported in the call-log database. Read-only.

    Attributes:
        contact_id: Unique id assigned by the dialler.
        recording_location: Raw recording path or file name; may be missing or junk.
        total_call_seconds: Call length in seconds, if known.
    """
    contact_id: str
    recording_location: Optional[str] = None
    agent_username: Optional[str] = None
    initiation_timestamp: Optional[datetime.datetime] = None
    queue_name: Optional[str] = None
    disposition_title: Optional[str] = None
    campaign_name: Optional[str] = None
    campaign_id: Optional[str] = None
    customer_cli: Optional[str] = None
    total_call_seconds: Optional[int] = None
    agent_hold_time: Optional[int] = None
    total_hold_time: Optional[int] = None
    time_in_queue: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CallLogRecord":
        campaign_id = row.get("campaign_id")
        return cls(
            contact_id=str(row["contact_id"]),
            recording_location=row.get("recording_location"),
            agent_username=row.get("agent_username"),
            initiation_timestamp=to_datetime(row.get("initiation_timestamp")),
            queue_name=row.get("queue_name"),
            disposition_title=row.get("disposition_title"),
            campaign_name=row.get("campaign_name"),
            campaign_id=str(campaign_id) if campaign_id is not None else None,
            customer_cli=row.get("customer_cli"),
            total_call_seconds=to_seconds(row.get("total_call_time")),
            agent_hold_time=to_seconds(row.get("agent_hold_time")),
            total_hold_time=to_seconds(row.get("total_hold_time")),
            time_in_queue=to_seconds(row.get("time_in_queue")),
        )

    @property
    def is_transcribable(self) -> bool:
        return is_valid_recording_location(self.recording_location)

    @property
    def call_duration(self) -> Optional[dict]:
        if self.total_call_seconds is None:
            return None
        return {"minutes": self.total_call_seconds // 60, "seconds": self.total_call_seconds % 60}

    def to_dict(self) -> dict:
        return {
            "contact_id": self.contact_id,
            "recording_location": self.recording_location,
            "agent_username": self.agent_username,
            "initiation_timestamp": self.initiation_timestamp.isoformat() if self.initiation_timestamp else None,
            "queue_name": self.queue_name,
            "disposition_title": self.disposition_title,
            "campaign_name": self.campaign_name,
            "campaign_id": self.campaign_id,
            "customer_cli": self.customer_cli,
            "total_call_time": self.call_duration,
            "agent_hold_time": self.agent_hold_time,
            "total_hold_time": self.total_hold_time,
            "time_in_queue": self.time_in_queue,
        }


@dataclass
class DateRange:
    start: datetime.date
    end: datetime.date

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError("Start date must be before or equal to end date")

    @classmethod
    def parse(cls, start: Optional[str], end: Optional[str], fallback_days: int = 7,
              today: Optional[datetime.date] = None) -> "DateRange":
        """Parses ISO dates; missing bounds default to the last `fallback_days` days."""
        today = today or datetime.date.today()
        try:
            end_date = datetime.date.fromisoformat(end[:10]) if end else today
            start_date = datetime.date.fromisoformat(start[:10]) if start else end_date - datetime.timedelta(days=fallback_days)
        except ValueError:
            raise ValueError("Invalid date format, expected YYYY-MM-DD")
        return cls(start=start_date, end=end_date)

    def bounds(self) -> tuple:
        """Inclusive start, exclusive end, as UTC datetimes."""
        start = datetime.datetime.combine(self.start, datetime.time.min, tzinfo=datetime.timezone.utc)
        end = datetime.datetime.combine(self.end + datetime.timedelta(days=1), datetime.time.min,
                                        tzinfo=datetime.timezone.utc)
        return start, end


class CallLogSource:
    """Read-only queries against the dialler's call log."""

    def __init__(self, sessionmaker: async_sessionmaker, table: str = "reporting.contact_log"):
        if not _TABLE_NAME_RE.match(table):
            raise ValueError(f"Invalid call log table name: {table!r}")
        self.sessionmaker = sessionmaker
        self.table = table

    async def fetch(self, date_range: DateRange, limit: Optional[int] = None) -> List[CallLogRecord]:
        """Answered calls in range with an agent and disposition, most recent first."""
        start, end = date_range.bounds()
        sql = f"""
            SELECT {CALL_LOG_COLUMNS}
            FROM {self.table}
            WHERE initiation_timestamp >= :start
              AND initiation_timestamp < :end
              AND agent_username IS NOT NULL
              AND disposition_title IS NOT NULL
              AND disposition_title NOT IN :excluded
            ORDER BY initiation_timestamp DESC
        """
        if limit:
            sql += " LIMIT :limit"
        stmt = text(sql).bindparams(
            bindparam("start", type_=DateTime(timezone=True)),
            bindparam("end", type_=DateTime(timezone=True)),
            bindparam("excluded", expanding=True),
        ).columns(initiation_timestamp=DateTime(timezone=True))
        params = {"start": start, "end": end, "excluded": EXCLUDED_DISPOSITIONS}
        if limit:
            params["limit"] = limit
        async with self.sessionmaker() as session:
            result = await session.execute(stmt, params)
            rows = result.mappings().all()
        logger.info(f"Fetched {len(rows)} call logs for {date_range.start}..{date_range.end}")
        return [CallLogRecord.from_row(row) for row in rows]

    async def fetch_by_ids(self, contact_ids: Sequence[str]) -> List[CallLogRecord]:
        if not contact_ids:
            return []
        stmt = text(
            f"""
            SELECT {CALL_LOG_COLUMNS}
            FROM {self.table}
            WHERE contact_id IN :ids
            ORDER BY initiation_timestamp DESC
            """
        ).bindparams(bindparam("ids", expanding=True)).columns(initiation_timestamp=DateTime(timezone=True))
        async with self.sessionmaker() as session:
            result = await session.execute(stmt, {"ids": list(contact_ids)})
            rows = result.mappings().all()
        return [CallLogRecord.from_row(row) for row in rows]
