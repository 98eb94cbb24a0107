"""Unit tests for MeetingScheduler and the time helpers.

Uses the InMemoryMeetingRepository test double from conftest. Covers:
- Half-open overlap detection (global across owners, per date)
- Self-exclusion when re-checking an update
- Case-insensitive status updates with unrestricted transitions
- Ownership checks (owner or ADMIN)
- Timeout and database failures surfacing as DependencyError
- Meeting-start notification recipient selection and failure mapping
"""

from __future__ import annotations

import asyncio
import datetime as dt
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from src.fitcoach.core.identity import Caller, Role, guest_caller
from src.fitcoach.meetings.errors import (
    AuthorizationError,
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
)
from src.fitcoach.meetings.scheduling import (
    MeetingScheduler,
    intervals_overlap,
    normalize_clock,
    parse_date,
)
from src.fitcoach.meetings.schemas import MeetingCreate, MeetingStatus, MeetingUpdate

from conftest import CLIENT_ID, OTHER_CLIENT_ID, TRAINER_ID, InMemoryMeetingRepository

TRAINER = Caller(id=str(TRAINER_ID), role=Role.ADMIN, name="Tara Coach")
ALICE = Caller(id=str(CLIENT_ID), role=Role.USER, name="Alice Client")
BOB = Caller(id=str(OTHER_CLIENT_ID), role=Role.USER, name="Bob Client")


def _slot(start: str, end: str, date: str = "2025-06-10", title: str = "Session") -> MeetingCreate:
    return MeetingCreate(title=title, date=date, start_time=start, end_time=end)


# ── Time Helpers ─────────────────────────────────────────────────────────────


class TestTimeHelpers:
    """Tests for clock normalization and interval overlap."""

    @pytest.mark.parametrize(
        "raw,expected",
        [("9:05", "09:05"), ("09:05", "09:05"), ("23:59", "23:59"), ("10:30:45", "10:30")],
    )
    def test_normalize_clock_accepts_common_forms(self, raw, expected):
        assert normalize_clock(raw) == expected

    @pytest.mark.parametrize("raw", ["24:00", "10:60", "1030", "ten", ""])
    def test_normalize_clock_rejects_invalid(self, raw):
        with pytest.raises(ValidationError):
            normalize_clock(raw)

    def test_parse_date_rejects_other_formats(self):
        assert parse_date("2025-06-10") == dt.date(2025, 6, 10)
        with pytest.raises(ValidationError):
            parse_date("10/06/2025")

    def test_touching_intervals_do_not_overlap(self):
        assert intervals_overlap("10:00", "11:00", "11:00", "12:00") is False
        assert intervals_overlap("11:00", "12:00", "10:00", "11:00") is False

    @pytest.mark.parametrize(
        "start,end",
        [("10:30", "11:30"), ("09:30", "10:01"), ("10:15", "10:45"), ("09:00", "12:00")],
    )
    def test_intersecting_intervals_overlap(self, start, end):
        assert intervals_overlap("10:00", "11:00", start, end) is True


# ── Create ───────────────────────────────────────────────────────────────────


class TestCreate:
    """Tests for MeetingScheduler.create."""

    @pytest.mark.asyncio
    async def test_create_defaults_to_pending(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("9:00", "10:00"))

        assert meeting.status is MeetingStatus.PENDING
        assert meeting.user_id == CLIENT_ID
        assert meeting.start_time == "09:00"
        assert meeting.date == dt.date(2025, 6, 10)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["title", "date", "start_time", "end_time"])
    async def test_create_requires_fields(self, scheduler, missing):
        data = _slot("10:00", "11:00").model_copy(update={missing: None})
        with pytest.raises(ValidationError) as exc_info:
            await scheduler.create(ALICE, data)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_create_rejects_blank_title(self, scheduler, meeting_repo):
        with pytest.raises(ValidationError) as exc_info:
            await scheduler.create(ALICE, _slot("10:00", "11:00", title="   "))
        assert "required" in exc_info.value.message
        assert meeting_repo.meetings == {}

    @pytest.mark.asyncio
    async def test_create_strips_title(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00", title="  Core  "))
        assert meeting.title == "Core"

    @pytest.mark.asyncio
    async def test_create_rejects_end_not_after_start(self, scheduler):
        with pytest.raises(ValidationError):
            await scheduler.create(ALICE, _slot("11:00", "11:00"))
        with pytest.raises(ValidationError):
            await scheduler.create(ALICE, _slot("11:00", "10:00"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "start,end",
        [("10:30", "11:30"), ("09:30", "10:30"), ("10:15", "10:45"), ("09:00", "12:00")],
    )
    async def test_overlapping_create_conflicts(self, scheduler, start, end):
        await scheduler.create(ALICE, _slot("10:00", "11:00"))

        with pytest.raises(ConflictError) as exc_info:
            await scheduler.create(ALICE, _slot(start, end))

        assert exc_info.value.conflicts == 1
        assert exc_info.value.status_code == 400
        assert exc_info.value.to_detail()["conflicts"] == 1

    @pytest.mark.asyncio
    async def test_overlap_is_checked_across_owners(self, scheduler):
        """Two different people can never hold the same slot."""
        await scheduler.create(ALICE, _slot("10:00", "11:00"))
        with pytest.raises(ConflictError):
            await scheduler.create(BOB, _slot("10:30", "11:30"))

    @pytest.mark.asyncio
    async def test_same_slot_on_another_date_is_free(self, scheduler):
        await scheduler.create(ALICE, _slot("10:00", "11:00"))
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00", date="2025-06-11"))
        assert meeting.date == dt.date(2025, 6, 11)

    @pytest.mark.asyncio
    async def test_conflict_counts_every_overlapping_meeting(self, scheduler):
        await scheduler.create(ALICE, _slot("10:00", "11:00"))
        await scheduler.create(BOB, _slot("11:00", "12:00"))

        with pytest.raises(ConflictError) as exc_info:
            await scheduler.create(ALICE, _slot("10:30", "11:30"))
        assert exc_info.value.conflicts == 2

    @pytest.mark.asyncio
    async def test_guest_cannot_create(self, scheduler):
        with pytest.raises(AuthorizationError):
            await scheduler.create(guest_caller(), _slot("10:00", "11:00"))

    @pytest.mark.asyncio
    async def test_past_meetings_rejected_when_enabled(self, meeting_repo):
        now = dt.datetime(2025, 6, 10, 12, 0, tzinfo=dt.timezone(dt.timedelta(hours=5, minutes=30)))
        strict = MeetingScheduler(meeting_repo, reject_past=True, now=lambda: now)

        with pytest.raises(ValidationError):
            await strict.create(ALICE, _slot("10:00", "11:00"))
        meeting = await strict.create(ALICE, _slot("13:00", "14:00"))
        assert meeting.start_time == "13:00"


# ── Update ───────────────────────────────────────────────────────────────────


class TestUpdate:
    """Tests for MeetingScheduler.update."""

    @pytest.mark.asyncio
    async def test_update_excludes_own_interval(self, scheduler):
        """Shifting a meeting into its own old slot is not a conflict."""
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))

        updated = await scheduler.update(
            ALICE, meeting.id, MeetingUpdate(start_time="10:30", end_time="11:30")
        )

        assert (updated.start_time, updated.end_time) == ("10:30", "11:30")

    @pytest.mark.asyncio
    async def test_update_into_other_meeting_conflicts(self, scheduler):
        await scheduler.create(BOB, _slot("12:00", "13:00"))
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))

        with pytest.raises(ConflictError):
            await scheduler.update(
                ALICE, meeting.id, MeetingUpdate(start_time="11:30", end_time="12:30")
            )

    @pytest.mark.asyncio
    async def test_update_checks_merged_interval(self, scheduler):
        """Changing only end_time re-checks overlap using the stored start_time."""
        await scheduler.create(BOB, _slot("11:00", "12:00"))
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))

        with pytest.raises(ConflictError):
            await scheduler.update(ALICE, meeting.id, MeetingUpdate(end_time="11:15"))

    @pytest.mark.asyncio
    async def test_update_date_only_moves_meeting(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        updated = await scheduler.update(ALICE, meeting.id, MeetingUpdate(date="2025-06-12"))
        assert updated.date == dt.date(2025, 6, 12)
        assert updated.start_time == "10:00"

    @pytest.mark.asyncio
    async def test_update_title_skips_overlap_check(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        updated = await scheduler.update(ALICE, meeting.id, MeetingUpdate(title="Leg day"))
        assert updated.title == "Leg day"

    @pytest.mark.asyncio
    async def test_update_by_non_owner_forbidden(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        with pytest.raises(AuthorizationError):
            await scheduler.update(BOB, meeting.id, MeetingUpdate(title="Mine now"))

    @pytest.mark.asyncio
    async def test_admin_may_update_any_meeting(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        updated = await scheduler.update(TRAINER, meeting.id, MeetingUpdate(title="Checked"))
        assert updated.title == "Checked"

    @pytest.mark.asyncio
    async def test_update_unknown_meeting(self, scheduler):
        with pytest.raises(NotFoundError):
            await scheduler.update(ALICE, 999, MeetingUpdate(title="x"))


# ── Status, Delete, Reads ────────────────────────────────────────────────────


class TestStatusAndDelete:
    """Tests for set_status, delete and the read operations."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["COMPLETE", "Complete", "complete"])
    async def test_set_status_is_case_insensitive(self, scheduler, raw):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        updated = await scheduler.set_status(ALICE, meeting.id, raw)
        assert updated.status is MeetingStatus.COMPLETE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["done", "", None])
    async def test_set_status_rejects_unknown_values(self, scheduler, raw):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        with pytest.raises(ValidationError):
            await scheduler.set_status(ALICE, meeting.id, raw)

    @pytest.mark.asyncio
    async def test_invalid_status_wins_over_unknown_meeting(self, scheduler):
        with pytest.raises(ValidationError):
            await scheduler.set_status(ALICE, 999, "done")

    @pytest.mark.asyncio
    async def test_any_status_may_follow_any_other(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        for status in ("cancel", "complete", "pending", "cancel"):
            meeting = await scheduler.set_status(ALICE, meeting.id, status)
        assert meeting.status is MeetingStatus.CANCEL

    @pytest.mark.asyncio
    async def test_delete_frees_the_slot(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        await scheduler.delete(ALICE, meeting.id)

        again = await scheduler.create(BOB, _slot("10:00", "11:00"))
        assert again.id != meeting.id

    @pytest.mark.asyncio
    async def test_delete_by_non_owner_forbidden(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        with pytest.raises(AuthorizationError):
            await scheduler.delete(BOB, meeting.id)

    @pytest.mark.asyncio
    async def test_list_by_owner_is_ordered(self, scheduler):
        await scheduler.create(ALICE, _slot("15:00", "16:00"))
        await scheduler.create(ALICE, _slot("08:00", "09:00", date="2025-06-11"))
        await scheduler.create(ALICE, _slot("09:00", "10:00"))
        await scheduler.create(BOB, _slot("12:00", "13:00"))

        meetings = await scheduler.list_by_owner(CLIENT_ID)

        assert [(m.date.day, m.start_time) for m in meetings] == [
            (10, "09:00"),
            (10, "15:00"),
            (11, "08:00"),
        ]

    @pytest.mark.asyncio
    async def test_list_all_includes_owner(self, scheduler):
        await scheduler.create(BOB, _slot("12:00", "13:00"))
        meetings = await scheduler.list_all()
        assert meetings[0].owner.email == "bob@example.com"

    @pytest.mark.asyncio
    async def test_get_public_ignores_ownership(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        assert (await scheduler.get_public(meeting.id)).id == meeting.id
        with pytest.raises(NotFoundError):
            await scheduler.get_public(999)


# ── End-to-End Scenario ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_back_to_back_booking_scenario(scheduler):
    """10:00-11:00 booked; 10:30-11:30 conflicts; 11:00-12:00 fits."""
    first = await scheduler.create(ALICE, _slot("10:00", "11:00"))

    with pytest.raises(ConflictError) as exc_info:
        await scheduler.create(BOB, _slot("10:30", "11:30"))
    assert exc_info.value.conflicts >= 1

    third = await scheduler.create(BOB, _slot("11:00", "12:00"))
    assert third.id != first.id
    assert third.start_time == "11:00"


# ── Concurrent Booking ───────────────────────────────────────────────────────


class YieldingMeetingRepository(InMemoryMeetingRepository):
    """Suspends inside the overlap query, like a real database round trip."""

    async def find_overlapping(self, *args, **kwargs):
        await asyncio.sleep(0.01)
        return await super().find_overlapping(*args, **kwargs)


@pytest.fixture
def yielding_scheduler():
    return MeetingScheduler(YieldingMeetingRepository())


class TestConcurrentBooking:
    """Overlap check and write happen as one step per calendar day."""

    @pytest.mark.asyncio
    async def test_simultaneous_creates_book_slot_once(self, yielding_scheduler):
        results = await asyncio.gather(
            yielding_scheduler.create(ALICE, _slot("10:00", "11:00")),
            yielding_scheduler.create(BOB, _slot("10:00", "11:00")),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(conflicts) == 1
        assert len(await yielding_scheduler.list_all()) == 1

    @pytest.mark.asyncio
    async def test_simultaneous_reschedules_into_same_slot(self, yielding_scheduler):
        first = await yielding_scheduler.create(ALICE, _slot("08:00", "09:00"))
        second = await yielding_scheduler.create(BOB, _slot("12:00", "13:00"))
        target = MeetingUpdate(start_time="10:00", end_time="11:00")

        results = await asyncio.gather(
            yielding_scheduler.update(ALICE, first.id, target),
            yielding_scheduler.update(BOB, second.id, target),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        starts = sorted(m.start_time for m in await yielding_scheduler.list_all())
        assert starts.count("10:00") == 1

    @pytest.mark.asyncio
    async def test_different_days_do_not_block_each_other(self, yielding_scheduler):
        results = await asyncio.gather(
            yielding_scheduler.create(ALICE, _slot("10:00", "11:00", date="2025-06-10")),
            yielding_scheduler.create(BOB, _slot("10:00", "11:00", date="2025-06-11")),
        )
        assert {m.date for m in results} == {dt.date(2025, 6, 10), dt.date(2025, 6, 11)}


# ── Dependency Failures ──────────────────────────────────────────────────────


class TestDependencyFailures:
    """Repository stalls and errors become DependencyError."""

    @pytest.mark.asyncio
    async def test_slow_overlap_query_times_out(self, meeting_repo):
        async def stall(*args, **kwargs):
            await asyncio.sleep(1)
            return []

        meeting_repo.find_overlapping = stall
        fast = MeetingScheduler(meeting_repo, query_timeout=0.01)

        with pytest.raises(DependencyError) as exc_info:
            await fast.create(ALICE, _slot("10:00", "11:00"))
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_database_error_maps_to_dependency_error(self, meeting_repo):
        meeting_repo.list_by_owner = AsyncMock(
            side_effect=OperationalError("SELECT 1", {}, Exception("connection refused"))
        )
        scheduler = MeetingScheduler(meeting_repo)

        with pytest.raises(DependencyError) as exc_info:
            await scheduler.list_by_owner(CLIENT_ID)
        assert "connection refused" not in exc_info.value.message


# ── Notifications ────────────────────────────────────────────────────────────


class TestNotifyStart:
    """Tests for MeetingScheduler.notify_start."""

    @pytest.mark.asyncio
    async def test_defaults_recipient_to_owner(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00", title="Mobility"))
        notifier = AsyncMock()

        recipient = await scheduler.notify_start(TRAINER, meeting.id, notifier)

        assert recipient == "alice@example.com"
        notifier.send_meeting_start.assert_awaited_once_with(
            recipient_email="alice@example.com",
            meeting_title="Mobility",
            join_link=f"https://app.fitcoach.test/meetings/join/{meeting.id}",
            start_time="10:00",
            end_time="11:00",
            date="2025-06-10",
        )

    @pytest.mark.asyncio
    async def test_explicit_recipient(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        notifier = AsyncMock()

        recipient = await scheduler.notify_start(
            ALICE, meeting.id, notifier, recipient_email="coach@example.com"
        )

        assert recipient == "coach@example.com"

    @pytest.mark.asyncio
    async def test_delivery_failure_is_dependency_error(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        notifier = AsyncMock()
        notifier.send_meeting_start.side_effect = httpx.ConnectError("relay down")

        with pytest.raises(DependencyError):
            await scheduler.notify_start(ALICE, meeting.id, notifier)

        # Nothing is rolled back
        assert (await scheduler.get(ALICE, meeting.id)).status is MeetingStatus.PENDING

    @pytest.mark.asyncio
    async def test_non_owner_cannot_notify(self, scheduler):
        meeting = await scheduler.create(ALICE, _slot("10:00", "11:00"))
        with pytest.raises(AuthorizationError):
            await scheduler.notify_start(BOB, meeting.id, AsyncMock())
