"""Shared fixtures: in-memory test doubles and a FastAPI test app.

Provides:
- InMemoryMeetingRepository / InMemoryAccountRepository (no database)
- FakeClock for deterministic liveness and presence timestamps
- Room components wired to an InMemoryRoomStore
- A FastAPI app with the auth and meetings routers and services on app.state
- Bearer-header factories for admin, client and guest callers
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.fitcoach.api.v1.auth import router as auth_router
from src.fitcoach.api.v1.meetings import router as meetings_router
from src.fitcoach.core.identity import Role
from src.fitcoach.core.security import create_access_token
from src.fitcoach.meetings.errors import ConflictError
from src.fitcoach.meetings.rooms.liveness import ConnectionLivenessTracker
from src.fitcoach.meetings.rooms.presence import PresenceRegistry
from src.fitcoach.meetings.rooms.signaling import SignalingRelay
from src.fitcoach.meetings.rooms.store import InMemoryRoomStore
from src.fitcoach.meetings.scheduling import MeetingScheduler
from src.fitcoach.meetings.schemas import Meeting, MeetingOwner, MeetingWithOwner
from src.fitcoach.schemas.auth import UserRecord
from src.fitcoach.services.accounts import EmailAlreadyRegistered

TRAINER_ID = 1
CLIENT_ID = 2
OTHER_CLIENT_ID = 3
T0_MS = 1_750_000_000_000


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryMeetingRepository:
    """In-memory MeetingRepository for testing without a database.

    Like the SQL repository, insert and slot-changing updates re-check
    overlap before writing and raise ConflictError.
    """

    def __init__(self) -> None:
        self.meetings: dict[int, Meeting] = {}
        self.owners: dict[int, MeetingOwner] = {}
        self._next_id = 1

    def add_owner(self, owner_id: int, first_name: str, last_name: str, email: str) -> None:
        self.owners[owner_id] = MeetingOwner(
            id=owner_id, first_name=first_name, last_name=last_name, email=email
        )

    async def insert(
        self,
        owner_id: int,
        title: str,
        description: str,
        date: dt.date,
        start_time: str,
        end_time: str,
    ) -> Meeting:
        conflicts = await self.find_overlapping(date, start_time, end_time)
        if conflicts:
            raise ConflictError(len(conflicts))
        meeting = Meeting(
            id=self._next_id,
            user_id=owner_id,
            title=title,
            description=description,
            date=date,
            start_time=start_time,
            end_time=end_time,
            created_at=dt.datetime.now(dt.timezone.utc),
        )
        self.meetings[meeting.id] = meeting
        self._next_id += 1
        return meeting

    async def get(self, meeting_id: int) -> Meeting | None:
        return self.meetings.get(meeting_id)

    async def get_with_owner(self, meeting_id: int) -> MeetingWithOwner | None:
        meeting = self.meetings.get(meeting_id)
        if meeting is None:
            return None
        return MeetingWithOwner(**meeting.model_dump(), owner=self.owners.get(meeting.user_id))

    async def find_overlapping(
        self,
        date: dt.date,
        start_time: str,
        end_time: str,
        exclude_id: int | None = None,
    ) -> list[Meeting]:
        return [
            m
            for m in self.meetings.values()
            if m.date == date
            and m.start_time < end_time
            and m.end_time > start_time
            and m.id != exclude_id
        ]

    async def update(self, meeting_id: int, fields: dict[str, Any]) -> Meeting:
        meeting = self.meetings.get(meeting_id)
        if meeting is None:
            raise ValueError(f"Meeting not found: id={meeting_id}")
        if {"date", "start_time", "end_time"} & fields.keys():
            conflicts = await self.find_overlapping(
                fields.get("date", meeting.date),
                fields.get("start_time", meeting.start_time),
                fields.get("end_time", meeting.end_time),
                exclude_id=meeting_id,
            )
            if conflicts:
                raise ConflictError(len(conflicts))
        updated = Meeting.model_validate(
            {**meeting.model_dump(), **fields, "updated_at": dt.datetime.now(dt.timezone.utc)}
        )
        self.meetings[meeting_id] = updated
        return updated

    async def delete(self, meeting_id: int) -> bool:
        return self.meetings.pop(meeting_id, None) is not None

    async def list_by_owner(self, owner_id: int) -> list[Meeting]:
        owned = [m for m in self.meetings.values() if m.user_id == owner_id]
        return sorted(owned, key=lambda m: (m.date, m.start_time, m.id))

    async def list_all_with_owner(self) -> list[MeetingWithOwner]:
        ordered = sorted(self.meetings.values(), key=lambda m: (m.date, m.start_time, m.id))
        return [
            MeetingWithOwner(**m.model_dump(), owner=self.owners.get(m.user_id))
            for m in ordered
        ]


class InMemoryAccountRepository:
    """In-memory AccountRepository for testing without a database."""

    def __init__(self) -> None:
        self.users: dict[int, UserRecord] = {}
        self._next_id = 1

    async def get(self, user_id: int) -> UserRecord | None:
        return self.users.get(user_id)

    async def get_by_email(self, email: str) -> UserRecord | None:
        for user in self.users.values():
            if user.email == email.lower():
                return user
        return None

    async def create(
        self,
        first_name: str,
        last_name: str,
        email: str,
        hashed_password: str,
        role: Role = Role.USER,
    ) -> UserRecord:
        if await self.get_by_email(email) is not None:
            raise EmailAlreadyRegistered(email)
        user = UserRecord(
            id=self._next_id,
            first_name=first_name,
            last_name=last_name,
            email=email.lower(),
            hashed_password=hashed_password,
            role=role.value,
        )
        self.users[user.id] = user
        self._next_id += 1
        return user

    async def list_by_role(self, role: Role) -> list[UserRecord]:
        return [u for u in self.users.values() if u.role == role.value]


class FakeClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, start_ms: int = T0_MS) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


# ── Component Fixtures ───────────────────────────────────────────────────────


@pytest.fixture
def meeting_repo() -> InMemoryMeetingRepository:
    repo = InMemoryMeetingRepository()
    repo.add_owner(TRAINER_ID, "Tara", "Coach", "tara@example.com")
    repo.add_owner(CLIENT_ID, "Alice", "Client", "alice@example.com")
    repo.add_owner(OTHER_CLIENT_ID, "Bob", "Client", "bob@example.com")
    return repo


@pytest.fixture
def scheduler(meeting_repo: InMemoryMeetingRepository) -> MeetingScheduler:
    return MeetingScheduler(meeting_repo, public_app_url="https://app.fitcoach.test")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def room_store() -> InMemoryRoomStore:
    return InMemoryRoomStore()


@pytest.fixture
def presence(room_store: InMemoryRoomStore, clock: FakeClock) -> PresenceRegistry:
    return PresenceRegistry(room_store, clock=clock)


@pytest.fixture
def liveness(room_store: InMemoryRoomStore, clock: FakeClock) -> ConnectionLivenessTracker:
    return ConnectionLivenessTracker(room_store, clock=clock, stale_after_ms=15_000)


@pytest.fixture
def relay(room_store: InMemoryRoomStore, clock: FakeClock) -> SignalingRelay:
    return SignalingRelay(room_store, clock=clock)


# ── API Fixtures ─────────────────────────────────────────────────────────────


def bearer(user_id: int, role: Role, name: str = "", email: str = "") -> dict[str, str]:
    token = create_access_token(
        {"sub": str(user_id), "role": role.value, "name": name, "email": email}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def trainer_headers() -> dict[str, str]:
    return bearer(TRAINER_ID, Role.ADMIN, "Tara Coach", "tara@example.com")


@pytest.fixture
def client_headers() -> dict[str, str]:
    return bearer(CLIENT_ID, Role.USER, "Alice Client", "alice@example.com")


@pytest.fixture
def other_client_headers() -> dict[str, str]:
    return bearer(OTHER_CLIENT_ID, Role.USER, "Bob Client", "bob@example.com")


@pytest.fixture
def guest_headers() -> dict[str, str]:
    return {"Authorization": "Bearer guest-token"}


@pytest.fixture
def account_repo() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def api_app(
    scheduler: MeetingScheduler,
    account_repo: InMemoryAccountRepository,
    presence: PresenceRegistry,
    liveness: ConnectionLivenessTracker,
    relay: SignalingRelay,
) -> FastAPI:
    """FastAPI app with auth + meetings routers and in-memory services on app.state."""
    app = FastAPI()
    app.include_router(auth_router)
    app.include_router(meetings_router)
    app.state.meeting_scheduler = scheduler
    app.state.account_repository = account_repo
    app.state.presence_registry = presence
    app.state.liveness_tracker = liveness
    app.state.signaling_relay = relay
    app.state.meeting_notifier = None
    return app


@pytest.fixture
def client(api_app: FastAPI) -> Iterator[TestClient]:
    with TestClient(api_app) as test_client:
        yield test_client
