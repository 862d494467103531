"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.config import Settings
from app.database import build_session_factory
from app.main import create_app
from app.models import Base, ServerMemberRole, ServerPermission
from app.monitoring.registry import registry
from app.repository import SqlAlchemyRepository
from masq.domain.records import (
    ChannelRecord,
    DmThreadRecord,
    MaskRecord,
    ServerMemberRecord,
    ServerRecord,
    UserRecord,
)
from masq.runtime import RealtimeServices
from masq.voice.sfu import SFUError, SFUParticipant


class FakeClock:
    """Controllable UTC clock handed to the realtime services."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeSFU:
    """In-memory media server recording every admin call."""

    url = "wss://media.test"

    def __init__(self) -> None:
        self.tokens: list[dict[str, Any]] = []
        self.participants: dict[str, list[SFUParticipant]] = {}
        self.revoked: list[tuple[str, str]] = []
        self.deleted_rooms: list[str] = []
        self.fail_admin_calls = False
        self.closed = False

    def issue_token(self, *, room_name, identity, display_name, metadata, can_publish) -> str:
        self.tokens.append(
            {
                "room_name": room_name,
                "identity": identity,
                "display_name": display_name,
                "metadata": metadata,
                "can_publish": can_publish,
            }
        )
        self.participants.setdefault(room_name, []).append(
            SFUParticipant(identity=identity, metadata=metadata.to_json())
        )
        return f"token-{len(self.tokens)}"

    async def list_participants(self, room_name: str) -> list[SFUParticipant]:
        if self.fail_admin_calls:
            raise SFUError("media server unreachable")
        return list(self.participants.get(room_name, []))

    async def revoke_publish(self, room_name: str, identity: str) -> None:
        if self.fail_admin_calls:
            raise SFUError("media server unreachable")
        self.revoked.append((room_name, identity))

    async def delete_room(self, room_name: str) -> None:
        if self.fail_admin_calls:
            raise SFUError("media server unreachable")
        self.deleted_rooms.append(room_name)

    async def aclose(self) -> None:
        self.closed = True


class DummyWebSocket:
    """Stand-in socket that records every frame it is sent."""

    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.close_code: int | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]

    def frames(self, event_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame["type"] == event_type]

    def clear(self) -> None:
        self.sent.clear()


class Seeder:
    """Creates users, masks, servers and DM threads straight through the repository."""

    def __init__(self, repository: SqlAlchemyRepository) -> None:
        self.repository = repository
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def user(self, email: str | None = None) -> UserRecord:
        number = self._next()
        return await self.repository.create_user(
            email=email or f"user{number}@masq.io",
            friend_code=f"CODE{number:04d}",
            password_hash="hashed",
        )

    async def mask(self, user_id: str, display_name: str | None = None) -> MaskRecord:
        number = self._next()
        return await self.repository.create_mask(
            user_id=user_id,
            display_name=display_name or f"Mask {number}",
            color="#8ff5ff",
            avatar_seed=f"seed-{number}",
        )

    async def user_with_mask(self, display_name: str | None = None) -> tuple[UserRecord, MaskRecord]:
        user = await self.user()
        mask = await self.mask(user.id, display_name)
        user = await self.repository.update_user_default_mask(user.id, mask.id)
        return user, mask

    async def server(
        self, owner: UserRecord, owner_mask: MaskRecord, name: str = "Guild"
    ) -> tuple[ServerRecord, ChannelRecord]:
        server = await self.repository.create_server(name=name, owner_user_id=owner.id)
        await self.repository.add_server_member(
            server_id=server.id, user_id=owner.id, role=ServerMemberRole.OWNER, server_mask_id=owner_mask.id
        )
        channel = await self.repository.create_server_channel(server_id=server.id, name="general")
        return server, channel

    async def member(
        self,
        server_id: str,
        user_id: str,
        mask_id: str,
        *,
        permissions: tuple[ServerPermission, ...] = (),
    ) -> ServerMemberRecord:
        member = await self.repository.add_server_member(
            server_id=server_id, user_id=user_id, role=ServerMemberRole.MEMBER, server_mask_id=mask_id
        )
        if permissions:
            role = await self.repository.create_server_role(
                server_id=server_id,
                name=f"Role {self._next()}",
                permissions=[permission.value for permission in permissions],
            )
            member = await self.repository.set_server_member_roles(server_id, user_id, [role.id])
        return member

    async def dm(
        self, first: UserRecord, first_mask: MaskRecord, second: UserRecord, second_mask: MaskRecord
    ) -> DmThreadRecord:
        await self.repository.create_friendship(first.id, second.id)
        thread = await self.repository.create_dm_thread(first.id, second.id)
        await self.repository.upsert_dm_participant(
            thread_id=thread.id, user_id=first.id, active_mask_id=first_mask.id
        )
        await self.repository.upsert_dm_participant(
            thread_id=thread.id, user_id=second.id, active_mask_id=second_mask.id
        )
        return thread


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    registry.reset()
    yield
    registry.reset()


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return build_session_factory(test_engine)


@pytest.fixture()
def repository(session_factory) -> SqlAlchemyRepository:
    return SqlAlchemyRepository(session_factory)


@pytest.fixture()
def seed(repository) -> Seeder:
    return Seeder(repository)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        database_url="sqlite+pysqlite:///:memory:",
        jwt_secret_key="test-secret",
        media_root=tmp_path / "media",
        max_upload_size=1024,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sfu() -> FakeSFU:
    return FakeSFU()


@pytest.fixture()
def services(repository, settings, sfu, clock) -> Iterator[RealtimeServices]:
    """Realtime services wired to the test database, a fake media server and a fake clock."""

    built = RealtimeServices.build(repository, settings, sfu=sfu, clock=clock)
    try:
        yield built
    finally:
        built.expiry.cancel_all()


@pytest.fixture()
def client(settings, session_factory, sfu) -> Iterator[TestClient]:
    """Yield a TestClient for an application bound to the test database."""

    app = create_app(settings, session_factory=session_factory, sfu=sfu)
    with TestClient(app) as test_client:
        yield test_client
