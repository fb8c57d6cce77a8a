"""PostgreSQL execution record store (SQLAlchemy async + asyncpg).

Single-flight is enforced by the database: claims are an
``INSERT .. ON CONFLICT .. DO UPDATE .. WHERE status <> 'running'`` upsert and
reclaims are a conditional ``UPDATE .. WHERE status = 'running' AND
updated_at < :stale_before``; both report success through ``RETURNING``.
Each claim issues a fresh ``run_token``; a finish that names a token is
applied only while the row still carries it, under ``SELECT .. FOR UPDATE``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, func, select, update
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from hourglass.db import Base
from hourglass.records.models import (
    DispatchMode,
    ExecutionRecord,
    ExecutionStatus,
    IllegalTransitionError,
    StaleRunError,
    StoreUnavailableError,
    check_transition,
)
from hourglass.records.store import ExecutionRecordStore, finished_record, new_run_token

logger = logging.getLogger(__name__)


class ExecutionRecordORM(Base):
    """Latest-run state per (tenant, activity, site)."""

    __tablename__ = "execution_records"
    __table_args__ = (
        UniqueConstraint("tenant_id", "activity_key", "site_id", name="uq_execution_records_key"),
        {"comment": "Latest execution state per activity and site"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        default=uuid.uuid4,
        primary_key=True,
    )
    activity_key: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    site_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    run_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    run_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )


_TABLE = ExecutionRecordORM.__table__
_RUNNING = ExecutionStatus.RUNNING.value


def _to_record(row: Any) -> ExecutionRecord:
    """Convert an ORM instance or a RETURNING mapping into an ExecutionRecord."""
    get = row.get if isinstance(row, dict) or hasattr(row, "keys") else lambda k: getattr(row, k)
    mode = get("mode")
    return ExecutionRecord(
        activity_key=get("activity_key"),
        site_id=get("site_id"),
        status=ExecutionStatus(get("status")),
        updated_at=get("updated_at"),
        created_at=get("created_at"),
        last_run_at=get("last_run_at"),
        next_run_at=get("next_run_at"),
        retry_count=int(get("retry_count") or 0),
        error_message=get("error_message"),
        run_id=get("run_id"),
        mode=DispatchMode(mode) if mode else None,
        run_token=get("run_token"),
    )


class SQLExecutionRecordStore(ExecutionRecordStore):
    """Execution record store backed by the ``execution_records`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        tenant_id: str = "default",
    ) -> None:
        normalized = tenant_id.strip() if isinstance(tenant_id, str) else ""
        if not normalized:
            raise ValueError("tenant_id must be a non-empty string")
        self._session_factory = session_factory
        self._tenant_id = normalized

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"execution record store unavailable: {exc}") from exc

    def _key_clause(self, activity_key: str, site_id: str) -> Any:
        return (
            (_TABLE.c.tenant_id == self._tenant_id)
            & (_TABLE.c.activity_key == activity_key)
            & (_TABLE.c.site_id == site_id)
        )

    async def get(self, activity_key: str, site_id: str) -> ExecutionRecord | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(ExecutionRecordORM).where(
                    ExecutionRecordORM.tenant_id == self._tenant_id,
                    ExecutionRecordORM.activity_key == activity_key,
                    ExecutionRecordORM.site_id == site_id,
                )
            )
            row = result.scalar_one_or_none()
            return _to_record(row) if row is not None else None

    async def _upsert_unless_running(
        self,
        activity_key: str,
        site_id: str,
        *,
        now: datetime,
        values: dict[str, Any],
    ) -> ExecutionRecord | None:
        insert_stmt = pg_insert(_TABLE).values(
            id=uuid.uuid4(),
            tenant_id=self._tenant_id,
            activity_key=activity_key,
            site_id=site_id,
            retry_count=0,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[_TABLE.c.tenant_id, _TABLE.c.activity_key, _TABLE.c.site_id],
            set_={**values, "updated_at": now},
            where=_TABLE.c.status != _RUNNING,
        ).returning(*_TABLE.c)
        async with self._transaction() as session:
            row = (await session.execute(stmt)).mappings().first()
        return _to_record(row) if row is not None else None

    async def claim(
        self,
        activity_key: str,
        site_id: str,
        *,
        now: datetime,
        mode: DispatchMode = DispatchMode.NORMAL,
        run_id: str | None = None,
    ) -> ExecutionRecord | None:
        return await self._upsert_unless_running(
            activity_key,
            site_id,
            now=now,
            values={
                "status": _RUNNING,
                "next_run_at": None,
                "error_message": None,
                "mode": mode.value,
                "run_id": run_id,
                "run_token": new_run_token(),
            },
        )

    async def mark_pending(
        self,
        activity_key: str,
        site_id: str,
        *,
        now: datetime,
        next_run_at: datetime | None,
    ) -> ExecutionRecord | None:
        return await self._upsert_unless_running(
            activity_key,
            site_id,
            now=now,
            values={"status": ExecutionStatus.PENDING.value, "next_run_at": next_run_at},
        )

    async def attach_run_id(
        self,
        activity_key: str,
        site_id: str,
        run_id: str,
        *,
        now: datetime,
    ) -> ExecutionRecord | None:
        stmt = (
            update(_TABLE)
            .where(self._key_clause(activity_key, site_id) & (_TABLE.c.status == _RUNNING))
            .values(run_id=run_id, updated_at=now)
            .returning(*_TABLE.c)
        )
        async with self._transaction() as session:
            row = (await session.execute(stmt)).mappings().first()
        return _to_record(row) if row is not None else None

    async def finish(
        self,
        activity_key: str,
        site_id: str,
        status: ExecutionStatus,
        *,
        now: datetime,
        error_message: str | None = None,
        run_token: str | None = None,
    ) -> ExecutionRecord:
        async with self._transaction() as session:
            result = await session.execute(
                select(ExecutionRecordORM)
                .where(
                    ExecutionRecordORM.tenant_id == self._tenant_id,
                    ExecutionRecordORM.activity_key == activity_key,
                    ExecutionRecordORM.site_id == site_id,
                )
                .with_for_update()
            )
            row = result.scalar_one_or_none()
            current = _to_record(row) if row is not None else None
            check_transition(
                activity_key,
                site_id,
                current.status if current is not None else None,
                status,
            )
            if row is None or current is None:
                raise IllegalTransitionError(activity_key, site_id, None, status)
            if run_token is not None and current.run_token != run_token:
                raise StaleRunError(activity_key, site_id, status)
            record = finished_record(current, status, now=now, error_message=error_message)
            row.status = record.status.value
            row.last_run_at = record.last_run_at
            row.retry_count = record.retry_count
            row.error_message = record.error_message
            row.updated_at = record.updated_at
        return record

    async def reclaim_stale(
        self,
        activity_key: str,
        site_id: str,
        *,
        now: datetime,
        stale_before: datetime,
        error_message: str,
    ) -> ExecutionRecord | None:
        stmt = (
            update(_TABLE)
            .where(
                self._key_clause(activity_key, site_id)
                & (_TABLE.c.status == _RUNNING)
                & (_TABLE.c.updated_at < stale_before)
            )
            .values(
                status=ExecutionStatus.FAILED.value,
                last_run_at=now,
                retry_count=_TABLE.c.retry_count + 1,
                error_message=error_message,
                updated_at=now,
            )
            .returning(*_TABLE.c)
        )
        async with self._transaction() as session:
            row = (await session.execute(stmt)).mappings().first()
        return _to_record(row) if row is not None else None

    async def list_records(
        self,
        *,
        status: ExecutionStatus | None = None,
        activity_key: str | None = None,
        limit: int | None = None,
    ) -> list[ExecutionRecord]:
        stmt = select(ExecutionRecordORM).where(ExecutionRecordORM.tenant_id == self._tenant_id)
        if status is not None:
            stmt = stmt.where(ExecutionRecordORM.status == status.value)
        if activity_key is not None:
            stmt = stmt.where(ExecutionRecordORM.activity_key == activity_key)
        stmt = stmt.order_by(ExecutionRecordORM.updated_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._transaction() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(row) for row in rows]

    async def list_running(
        self,
        *,
        updated_before: datetime | None = None,
    ) -> list[ExecutionRecord]:
        stmt = select(ExecutionRecordORM).where(
            ExecutionRecordORM.tenant_id == self._tenant_id,
            ExecutionRecordORM.status == _RUNNING,
        )
        if updated_before is not None:
            stmt = stmt.where(ExecutionRecordORM.updated_at < updated_before)
        async with self._transaction() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(row) for row in rows]
