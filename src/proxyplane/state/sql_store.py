from __future__ import annotations

import json
from datetime import datetime, timezone

import structlog
from sqlalchemy import JSON, DateTime, String, Text, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from proxyplane.core.errors import StateError
from proxyplane.graph.expressions import InstanceKey
from proxyplane.state.models import StateRecord

logger = structlog.get_logger()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class StateRow(Base):
    __tablename__ = "state_records"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)


class SqlStateStore:
    """Transactional state store backed by SQLAlchemy (one row per key)."""

    def __init__(self, database_url: str, *, engine: AsyncEngine | None = None) -> None:
        self._engine = engine or create_async_engine(database_url, future=True)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)
        self._initialised = False

    async def _init(self) -> None:
        if self._initialised:
            return
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StateError(f"Cannot initialise state database: {e}") from e
        self._initialised = True

    async def get(self, key: InstanceKey) -> StateRecord | None:
        await self._init()
        async with self._session_factory() as session:
            row = await session.get(StateRow, str(key))
            return StateRecord.from_dict(row.payload) if row else None

    async def put(self, record: StateRecord) -> None:
        await self._init()
        payload = record.to_dict()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(StateRow, str(record.key))
                    if row is None:
                        row = StateRow(key=str(record.key))
                        session.add(row)
                    row.fingerprint = record.fingerprint
                    row.payload = payload
                    row.summary = json.dumps(sorted(record.attributes))
                    row.updated_at = _now()
        except SQLAlchemyError as e:
            raise StateError(f"Cannot write state record {record.key}: {e}") from e
        logger.debug("state_record_written", key=str(record.key))

    async def delete(self, key: InstanceKey) -> None:
        await self._init()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(delete(StateRow).where(StateRow.key == str(key)))
        except SQLAlchemyError as e:
            raise StateError(f"Cannot remove state record {key}: {e}") from e
        logger.debug("state_record_removed", key=str(key))

    async def list(self) -> list[StateRecord]:
        await self._init()
        async with self._session_factory() as session:
            result = await session.execute(select(StateRow).order_by(StateRow.updated_at))
            return [StateRecord.from_dict(row.payload) for row in result.scalars()]

    async def close(self) -> None:
        await self._engine.dispose()
