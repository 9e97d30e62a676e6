import logging
from typing import Any, Dict, Iterable, List, Literal, Optional, Set

from sqlalchemy import select, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import async_sessionmaker

from callsight.database import CallRecord, utcnow

logger = logging.getLogger(__name__)

EXISTENCE_BATCH_SIZE = 100

_UPSERT_BUILDERS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class TranscriptionRecordStore:
    """Durable per-call results, keyed by contact_id."""

    def __init__(self, sessionmaker: async_sessionmaker):
        self.sessionmaker = sessionmaker

    async def exists(self, contact_id: str) -> bool:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(CallRecord.id).where(CallRecord.contact_id == contact_id).limit(1)
            )
            return result.first() is not None

    async def existing_ids(self, contact_ids: Iterable[str]) -> Set[str]:
        """Subset of `contact_ids` that already have a record, queried in batches of 100."""
        ids = list(dict.fromkeys(contact_ids))
        found: Set[str] = set()
        async with self.sessionmaker() as session:
            for i in range(0, len(ids), EXISTENCE_BATCH_SIZE):
                batch = ids[i:i + EXISTENCE_BATCH_SIZE]
                result = await session.execute(
                    select(CallRecord.contact_id).where(CallRecord.contact_id.in_(batch))
                )
                found.update(result.scalars().all())
        return found

    async def get(self, contact_id: str) -> Optional[CallRecord]:
        async with self.sessionmaker() as session:
            result = await session.execute(select(CallRecord).where(CallRecord.contact_id == contact_id))
            return result.scalar_one_or_none()

    async def get_many(self, contact_ids: Iterable[str]) -> List[CallRecord]:
        ids = list(dict.fromkeys(contact_ids))
        records: List[CallRecord] = []
        async with self.sessionmaker() as session:
            for i in range(0, len(ids), EXISTENCE_BATCH_SIZE):
                result = await session.execute(
                    select(CallRecord).where(CallRecord.contact_id.in_(ids[i:i + EXISTENCE_BATCH_SIZE]))
                )
                records.extend(result.scalars().all())
        return records

    async def recent(self, limit: int = 100, offset: int = 0) -> List[CallRecord]:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(CallRecord)
                .order_by(CallRecord.initiation_timestamp.desc(), CallRecord.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self.sessionmaker() as session:
            result = await session.execute(select(func.count(CallRecord.id)))
            return int(result.scalar_one())

    async def upsert(self, values: Dict[str, Any]) -> Literal["insert", "update"]:
        """
        Writes one record with a single INSERT ... ON CONFLICT (contact_id) DO UPDATE.

        Returns whether a row for the contact existed beforehand. The existence
        check is informational only; the write itself is atomic.
        """
        contact_id = values["contact_id"]
        now = utcnow()
        async with self.sessionmaker() as session:
            dialect = session.get_bind().dialect.name
            builder = _UPSERT_BUILDERS.get(dialect)
            if builder is None:
                raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")

            existed = (
                await session.execute(select(CallRecord.id).where(CallRecord.contact_id == contact_id))
            ).first() is not None

            insert_values = {**values, "created_at": now, "updated_at": now}
            update_values = {k: v for k, v in values.items() if k != "contact_id"}
            update_values["updated_at"] = now

            stmt = builder(CallRecord).values(**insert_values)
            stmt = stmt.on_conflict_do_update(index_elements=[CallRecord.contact_id], set_=update_values)
            await session.execute(stmt)
            await session.commit()
        logger.info(f"[{contact_id}] Record {'updated' if existed else 'inserted'}.")
        return "update" if existed else "insert"
