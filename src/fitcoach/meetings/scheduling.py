"""Meeting scheduling -- validation, overlap detection, ownership checks.

MeetingScheduler is the only component in the meetings domain that guards
a real invariant: no two meetings may occupy overlapping time on the same
date, regardless of owner. Intervals are half-open, so a meeting ending at
11:00 and another starting at 11:00 do not conflict.

Persistence goes through a repository with the MeetingRepository interface;
every repository call is bounded by a caller-side timeout and failures are
surfaced as DependencyError. The repository checks overlap and writes in one
step; writes for the same day are also serialized within the process.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar
from zoneinfo import ZoneInfo

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

from src.fitcoach.core.identity import Caller, can_manage
from src.fitcoach.core.locks import KeyedLock
from src.fitcoach.core.monitoring import meeting_conflicts_total
from src.fitcoach.meetings.errors import (
    AuthorizationError,
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
)
from src.fitcoach.meetings.schemas import (
    Meeting,
    MeetingCreate,
    MeetingStatus,
    MeetingUpdate,
    MeetingWithOwner,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


# ── Time Helpers ────────────────────────────────────────────────────────────


def normalize_clock(value: str) -> str:
    """Normalize a time-of-day string to zero-padded "HH:MM".

    Accepts "H:MM", "HH:MM" and "HH:MM:SS" (seconds are dropped).

    Raises:
        ValidationError: If the value is not a valid time of day.
    """
    match = _CLOCK_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    return f"{hours:02d}:{minutes:02d}"


def parse_date(value: str) -> dt.date:
    """Parse a YYYY-MM-DD calendar day."""
    try:
        return dt.date.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD") from None


def to_minutes(clock: str) -> int:
    hours, minutes = clock.split(":")
    return int(hours) * 60 + int(minutes)


def intervals_overlap(
    start_a: str, end_a: str, start_b: str, end_b: str
) -> bool:
    """Half-open interval intersection on "HH:MM" strings.

    [start_a, end_a) and [start_b, end_b) overlap iff each starts before
    the other ends. Touching boundaries do not overlap.
    """
    return to_minutes(start_a) < to_minutes(end_b) and to_minutes(end_a) > to_minutes(start_b)


# ── Persistence Contract ────────────────────────────────────────────────────


class MeetingStore(Protocol):
    """Persistence operations consumed by MeetingScheduler.

    ``insert`` and slot-changing ``update`` calls must check overlap and
    write atomically, raising ConflictError when the slot is taken.
    """

    async def insert(
        self,
        owner_id: int,
        title: str,
        description: str,
        date: dt.date,
        start_time: str,
        end_time: str,
    ) -> Meeting: ...

    async def get(self, meeting_id: int) -> Meeting | None: ...

    async def get_with_owner(self, meeting_id: int) -> MeetingWithOwner | None: ...

    async def find_overlapping(
        self,
        date: dt.date,
        start_time: str,
        end_time: str,
        exclude_id: int | None = None,
    ) -> list[Meeting]: ...

    async def update(self, meeting_id: int, fields: dict[str, Any]) -> Meeting: ...

    async def delete(self, meeting_id: int) -> bool: ...

    async def list_by_owner(self, owner_id: int) -> list[Meeting]: ...

    async def list_all_with_owner(self) -> list[MeetingWithOwner]: ...


class MeetingStartNotifier(Protocol):
    async def send_meeting_start(
        self,
        recipient_email: str,
        meeting_title: str,
        join_link: str,
        start_time: str,
        end_time: str,
        date: str,
    ) -> None: ...


# ── Scheduler ───────────────────────────────────────────────────────────────


class MeetingScheduler:
    """Create, update, delete and re-status meetings with overlap checks.

    Args:
        repository: Object implementing the MeetingStore protocol.
        query_timeout: Seconds to wait for any single repository call.
        timezone_name: IANA zone the "HH:MM" strings are local to.
        reject_past: When True, meetings may not start before now.
        public_app_url: Base URL for public join links.
        now: Clock returning an aware datetime (injectable for tests).
    """

    def __init__(
        self,
        repository: MeetingStore,
        *,
        query_timeout: float = 10.0,
        timezone_name: str = "Asia/Kolkata",
        reject_past: bool = False,
        public_app_url: str = "",
        now: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self._repo = repository
        self._query_timeout = query_timeout
        self._tz = ZoneInfo(timezone_name)
        self._reject_past = reject_past
        self._public_app_url = public_app_url.rstrip("/")
        self._now = now or (lambda: dt.datetime.now(self._tz))
        self._day_locks = KeyedLock()

    # ── Internal helpers ────────────────────────────────────────────────

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a repository call with a timeout, mapping failures to DependencyError."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._query_timeout)
        except asyncio.TimeoutError:
            logger.error("meeting.store_timeout", operation=operation, timeout=self._query_timeout)
            raise DependencyError("Meeting store did not respond in time") from None
        except SQLAlchemyError as exc:
            logger.error("meeting.store_failed", operation=operation, error=str(exc), exc_info=True)
            raise DependencyError("Meeting store is unavailable") from None

    async def _apply(
        self,
        meeting_id: int,
        changes: dict[str, Any],
        slot: tuple[dt.date, str, str] | None = None,
    ) -> Meeting:
        """Write ``changes``; ``slot`` is the merged interval when times change."""
        try:
            if slot is None:
                return await self._call("update", self._repo.update(meeting_id, changes))
            return await self._guarded_write(
                "update", *slot, lambda: self._repo.update(meeting_id, changes)
            )
        except ValueError:
            # Deleted between lookup and write
            raise NotFoundError() from None

    async def _get_owned(self, caller: Caller, meeting_id: int) -> Meeting:
        meeting = await self._call("get", self._repo.get(meeting_id))
        if meeting is None:
            raise NotFoundError()
        if not can_manage(caller, meeting.user_id):
            logger.warning(
                "meeting.access_denied",
                meeting_id=meeting_id,
                caller_id=caller.id,
                owner_id=meeting.user_id,
            )
            raise AuthorizationError()
        return meeting

    def _validate_interval(self, date: dt.date, start_time: str, end_time: str) -> None:
        if to_minutes(end_time) <= to_minutes(start_time):
            raise ValidationError("End time must be after start time")
        if self._reject_past:
            starts_at = dt.datetime.combine(
                date, dt.time.fromisoformat(start_time), tzinfo=self._tz
            )
            if starts_at < self._now():
                raise ValidationError("Cannot schedule meetings in the past")

    async def _guarded_write(
        self,
        operation: str,
        date: dt.date,
        start_time: str,
        end_time: str,
        write: Callable[[], Awaitable[Meeting]],
    ) -> Meeting:
        """Run a slot-placing write while holding this process's lock for the day.

        The repository re-checks overlap inside the write's own transaction;
        the day lock keeps concurrent requests in one process from racing
        between that check and the write.
        """
        async with self._day_locks.hold(date):
            try:
                return await self._call(operation, write())
            except ConflictError as exc:
                meeting_conflicts_total.labels(operation=operation).inc()
                logger.info(
                    "meeting.slot_conflict",
                    operation=operation,
                    date=date.isoformat(),
                    start_time=start_time,
                    end_time=end_time,
                    conflicts=exc.conflicts,
                )
                raise

    # ── Operations ──────────────────────────────────────────────────────

    async def create(self, caller: Caller, data: MeetingCreate) -> Meeting:
        """Schedule a new pending meeting owned by the caller.

        Raises:
            ValidationError: Missing or malformed title/date/start/end.
            ConflictError: The slot overlaps an existing meeting that day.
        """
        title = data.title.strip() if data.title else ""
        if not (title and data.date and data.start_time and data.end_time):
            raise ValidationError("Title, date, start time, and end time are required")
        try:
            owner_id = int(caller.id)
        except ValueError:
            raise AuthorizationError("Guest users cannot schedule meetings") from None

        date = parse_date(data.date)
        start_time = normalize_clock(data.start_time)
        end_time = normalize_clock(data.end_time)
        self._validate_interval(date, start_time, end_time)

        meeting = await self._guarded_write(
            "create",
            date,
            start_time,
            end_time,
            lambda: self._repo.insert(
                owner_id=owner_id,
                title=title,
                description=data.description or "",
                date=date,
                start_time=start_time,
                end_time=end_time,
            ),
        )
        logger.info(
            "meeting.created",
            meeting_id=meeting.id,
            owner_id=owner_id,
            date=date.isoformat(),
            start_time=start_time,
            end_time=end_time,
        )
        return meeting

    async def update(self, caller: Caller, meeting_id: int, data: MeetingUpdate) -> Meeting:
        """Apply a partial update; re-checks overlap when any time field changes.

        The overlap check runs against the merged interval (supplied fields
        over stored ones) and excludes the meeting itself.
        """
        meeting = await self._get_owned(caller, meeting_id)
        changes: dict[str, Any] = {}
        slot: tuple[dt.date, str, str] | None = None

        if data.title is not None:
            if not data.title.strip():
                raise ValidationError("Title cannot be empty")
            changes["title"] = data.title.strip()
        if data.description is not None:
            changes["description"] = data.description

        if data.has_time_fields():
            date = parse_date(data.date) if data.date is not None else meeting.date
            start_time = (
                normalize_clock(data.start_time)
                if data.start_time is not None
                else meeting.start_time
            )
            end_time = (
                normalize_clock(data.end_time) if data.end_time is not None else meeting.end_time
            )
            self._validate_interval(date, start_time, end_time)
            slot = (date, start_time, end_time)
            if data.date is not None:
                changes["date"] = date
            if data.start_time is not None:
                changes["start_time"] = start_time
            if data.end_time is not None:
                changes["end_time"] = end_time

        if not changes:
            return meeting

        updated = await self._apply(meeting.id, changes, slot)
        logger.info("meeting.updated", meeting_id=meeting.id, fields=sorted(changes))
        return updated

    async def delete(self, caller: Caller, meeting_id: int) -> None:
        meeting = await self._get_owned(caller, meeting_id)
        await self._call("delete", self._repo.delete(meeting.id))
        logger.info("meeting.deleted", meeting_id=meeting.id, caller_id=caller.id)

    async def set_status(self, caller: Caller, meeting_id: int, status: str | None) -> Meeting:
        """Move a meeting to any status in the flat set.

        The value is validated before the meeting is looked up, so an invalid
        status is a 400 even for unknown ids.
        """
        try:
            new_status = MeetingStatus.parse(status)
        except ValueError as exc:
            raise ValidationError(str(exc)) from None

        meeting = await self._get_owned(caller, meeting_id)
        updated = await self._apply(meeting.id, {"status": new_status.value})
        logger.info(
            "meeting.status_changed",
            meeting_id=meeting.id,
            from_status=meeting.status.value,
            to_status=new_status.value,
        )
        return updated

    async def get(self, caller: Caller, meeting_id: int) -> Meeting:
        return await self._get_owned(caller, meeting_id)

    async def get_public(self, meeting_id: int) -> Meeting:
        """Unauthenticated lookup backing public join links."""
        meeting = await self._call("get", self._repo.get(meeting_id))
        if meeting is None:
            raise NotFoundError()
        return meeting

    async def list_by_owner(self, owner_id: int) -> list[Meeting]:
        return await self._call("list_by_owner", self._repo.list_by_owner(owner_id))

    async def list_all(self) -> list[MeetingWithOwner]:
        return await self._call("list_all", self._repo.list_all_with_owner())

    # ── Notifications ───────────────────────────────────────────────────

    def join_link(self, meeting_id: int) -> str:
        return f"{self._public_app_url}/meetings/join/{meeting_id}"

    async def notify_start(
        self,
        caller: Caller,
        meeting_id: int,
        notifier: MeetingStartNotifier,
        recipient_email: str | None = None,
    ) -> str:
        """Send the meeting-start notification and return the recipient.

        Fire-and-forget from the store's point of view: a delivery failure
        is reported as DependencyError but nothing is rolled back.
        """
        meeting = await self._get_owned(caller, meeting_id)
        if recipient_email is None:
            detailed = await self._call("get_with_owner", self._repo.get_with_owner(meeting.id))
            if detailed is None or detailed.owner is None:
                raise ValidationError("No recipient email available for this meeting")
            recipient_email = detailed.owner.email

        link = self.join_link(meeting.id)
        try:
            await notifier.send_meeting_start(
                recipient_email=recipient_email,
                meeting_title=meeting.title,
                join_link=link,
                start_time=meeting.start_time,
                end_time=meeting.end_time,
                date=meeting.date.isoformat(),
            )
        except httpx.HTTPError as exc:
            logger.error(
                "meeting.notification_failed",
                meeting_id=meeting.id,
                error=str(exc),
                exc_info=True,
            )
            raise DependencyError("Failed to send meeting notification") from None

        logger.info("meeting.notification_sent", meeting_id=meeting.id, join_link=link)
        return recipient_email
