"""Meeting repository -- async CRUD over the meetings table.

Provides MeetingRepository with the session_factory callable pattern:
each method opens its own AsyncSession from the factory, so the
repository can be built once at startup and shared across requests.

Handles conversion between MeetingModel rows and Meeting schemas.

Writes that place a meeting in a time slot (insert, and updates touching
date or times) take a transaction-scoped Postgres advisory lock for the
calendar day, re-run the overlap query and write in the same transaction,
so two processes cannot book overlapping slots.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import AsyncGenerator, Callable
from typing import Any

import structlog
from sqlalchemy import Select, delete, select, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from src.fitcoach.meetings.errors import ConflictError
from src.fitcoach.meetings.models import MeetingModel
from src.fitcoach.meetings.schemas import (
    Meeting,
    MeetingOwner,
    MeetingStatus,
    MeetingWithOwner,
)

logger = structlog.get_logger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {"title", "description", "date", "start_time", "end_time", "status"}
)
_SLOT_FIELDS = frozenset({"date", "start_time", "end_time"})

# First key of the two-int advisory lock; the second is the day ordinal
_SLOT_LOCK_NAMESPACE = 4654


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        user_id=model.user_id,
        title=model.title,
        description=model.description or "",
        date=model.date,
        start_time=model.start_time,
        end_time=model.end_time,
        status=MeetingStatus(model.status),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_meeting_with_owner(model: MeetingModel) -> MeetingWithOwner:
    """Convert MeetingModel (with eagerly loaded owner) to MeetingWithOwner."""
    owner = None
    if model.owner is not None:
        owner = MeetingOwner(
            id=model.owner.id,
            first_name=model.owner.first_name,
            last_name=model.owner.last_name,
            email=model.owner.email,
        )
    return MeetingWithOwner(
        **_model_to_meeting(model).model_dump(),
        owner=owner,
    )


# ── Slot Guard ──────────────────────────────────────────────────────────────


def _overlap_query(
    date: dt.date, start_time: str, end_time: str, exclude_id: int | None = None
) -> Select:
    stmt = select(MeetingModel).where(
        MeetingModel.date == date,
        MeetingModel.start_time < end_time,
        MeetingModel.end_time > start_time,
    )
    if exclude_id is not None:
        stmt = stmt.where(MeetingModel.id != exclude_id)
    return stmt


async def _claim_slot(
    session: AsyncSession,
    date: dt.date,
    start_time: str,
    end_time: str,
    exclude_id: int | None = None,
) -> None:
    """Lock the day for the rest of the transaction and fail on overlap.

    Raises:
        ConflictError: If another meeting intersects [start_time, end_time).
    """
    await session.execute(
        text("SELECT pg_advisory_xact_lock(:namespace, :day)"),
        {"namespace": _SLOT_LOCK_NAMESPACE, "day": date.toordinal()},
    )
    result = await session.execute(_overlap_query(date, start_time, end_time, exclude_id))
    conflicts = result.scalars().all()
    if conflicts:
        raise ConflictError(len(conflicts))


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async persistence for meetings.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def insert(
        self,
        owner_id: int,
        title: str,
        description: str,
        date: dt.date,
        start_time: str,
        end_time: str,
    ) -> Meeting:
        """Persist a new pending meeting if its slot is still free.

        Raises:
            ConflictError: If the slot overlaps an existing meeting.
        """
        async for session in self._session_factory():
            await _claim_slot(session, date, start_time, end_time)
            model = MeetingModel(
                user_id=owner_id,
                title=title,
                description=description,
                date=date,
                start_time=start_time,
                end_time=end_time,
                status=MeetingStatus.PENDING.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def get(self, meeting_id: int) -> Meeting | None:
        async for session in self._session_factory():
            model = await session.get(MeetingModel, meeting_id)
            if model is None:
                return None
            return _model_to_meeting(model)

    async def get_with_owner(self, meeting_id: int) -> MeetingWithOwner | None:
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .options(joinedload(MeetingModel.owner))
                .where(MeetingModel.id == meeting_id)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting_with_owner(model)

    async def find_overlapping(
        self,
        date: dt.date,
        start_time: str,
        end_time: str,
        exclude_id: int | None = None,
    ) -> list[Meeting]:
        """Meetings on ``date`` whose half-open interval intersects [start, end).

        Times are zero-padded "HH:MM" so string comparison is chronological.

        Args:
            date: Calendar day to search.
            start_time: Candidate start (inclusive).
            end_time: Candidate end (exclusive).
            exclude_id: Meeting to ignore, used when re-checking an update.
        """
        async for session in self._session_factory():
            result = await session.execute(
                _overlap_query(date, start_time, end_time, exclude_id)
            )
            return [_model_to_meeting(m) for m in result.scalars().all()]

    async def update(self, meeting_id: int, fields: dict[str, Any]) -> Meeting:
        """Apply a partial update.

        When date or times change, the merged slot is re-checked for overlap
        in the same transaction as the write.

        Raises:
            ValueError: If meeting not found or a field is not updatable.
            ConflictError: If the new slot overlaps another meeting.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        async for session in self._session_factory():
            model = await session.get(MeetingModel, meeting_id)
            if model is None:
                raise ValueError(f"Meeting not found: id={meeting_id}")
            if _SLOT_FIELDS & fields.keys():
                await _claim_slot(
                    session,
                    fields.get("date", model.date),
                    fields.get("start_time", model.start_time),
                    fields.get("end_time", model.end_time),
                    exclude_id=meeting_id,
                )

            for key, value in fields.items():
                setattr(model, key, value)
            model.updated_at = dt.datetime.now(dt.timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def delete(self, meeting_id: int) -> bool:
        """Delete a meeting. Returns True if a row was removed."""
        async for session in self._session_factory():
            result = await session.execute(
                delete(MeetingModel).where(MeetingModel.id == meeting_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def list_by_owner(self, owner_id: int) -> list[Meeting]:
        """Owner's meetings ordered by date, then start time."""
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .where(MeetingModel.user_id == owner_id)
                .order_by(MeetingModel.date, MeetingModel.start_time, MeetingModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_meeting(m) for m in result.scalars().all()]

    async def list_all_with_owner(self) -> list[MeetingWithOwner]:
        """All meetings with owner identity, ordered by date, then start time."""
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .options(joinedload(MeetingModel.owner))
                .order_by(MeetingModel.date, MeetingModel.start_time, MeetingModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_meeting_with_owner(m) for m in result.scalars().all()]
