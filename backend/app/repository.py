"""SQLAlchemy implementation of the repository port."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.database import session_scope
from app.models import (
    Channel,
    ChannelMemberIdentity,
    DmMessage,
    DmParticipant,
    DmThread,
    FriendRequest,
    Friendship,
    Mask,
    Message,
    Room,
    RoomMembership,
    RoomModeration,
    Server,
    ServerInvite,
    ServerMember,
    ServerMemberRoleLink,
    ServerMessage,
    ServerRole,
    Upload,
    User,
    VoiceParticipant,
    VoiceSession,
)
from app.models.enums import (
    ChannelIdentityMode,
    ChannelType,
    ContextType,
    FriendRequestStatus,
    MembershipRole,
    ModerationAction,
    RoomKind,
    ServerMemberRole,
    ServerPermission,
    UploadKind,
)
from masq.domain.errors import DuplicateKeyError, NotFoundError
from masq.domain.records import (
    ChannelMemberIdentityRecord,
    ChannelRecord,
    DmMessageRecord,
    DmParticipantRecord,
    DmThreadRecord,
    FriendRequestRecord,
    MaskRecord,
    MaskRoomRecord,
    MessageRecord,
    RoomMembershipRecord,
    RoomModerationRecord,
    RoomRecord,
    ServerInviteRecord,
    ServerMemberRecord,
    ServerMessageRecord,
    ServerRecord,
    ServerRoleRecord,
    UploadRecord,
    UserRecord,
    UserServerRecord,
    VoiceParticipantRecord,
    VoiceSessionRecord,
    order_user_pair,
)

# Columns whose unique violations callers may want to react to individually.
_UNIQUE_FIELDS = ("friend_code", "email", "code", "livekit_room_name", "name", "user_a_id")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _duplicate_field(exc: IntegrityError) -> str | None:
    detail = str(exc.orig)
    for field in _UNIQUE_FIELDS:
        if field in detail:
            return field
    return None


def _user(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        friend_code=row.friend_code,
        password_hash=row.password_hash,
        default_mask_id=row.default_mask_id,
        created_at=_as_utc(row.created_at),
    )


def _mask(row: Mask) -> MaskRecord:
    return MaskRecord(
        id=row.id,
        user_id=row.user_id,
        display_name=row.display_name,
        color=row.color,
        avatar_seed=row.avatar_seed,
        avatar_upload_id=row.avatar_upload_id,
        created_at=_as_utc(row.created_at),
    )


def _upload(row: Upload | None) -> UploadRecord | None:
    if row is None:
        return None
    return UploadRecord(
        id=row.id,
        owner_user_id=row.owner_user_id,
        kind=UploadKind(row.kind),
        context_type=ContextType(row.context_type) if row.context_type else None,
        context_id=row.context_id,
        file_name=row.file_name,
        content_type=row.content_type,
        size_bytes=row.size_bytes,
        storage_path=row.storage_path,
        created_at=_as_utc(row.created_at),
    )


def _room(row: Room) -> RoomRecord:
    return RoomRecord(
        id=row.id,
        title=row.title,
        kind=RoomKind(row.kind),
        locked=row.locked,
        fog_level=row.fog_level,
        message_decay_minutes=row.message_decay_minutes,
        expires_at=_as_utc(row.expires_at),
        created_at=_as_utc(row.created_at),
    )


def _membership(row: RoomMembership) -> RoomMembershipRecord:
    return RoomMembershipRecord(
        room_id=row.room_id,
        mask_id=row.mask_id,
        role=MembershipRole(row.role),
        joined_at=_as_utc(row.joined_at),
        mask=_mask(row.mask),
    )


def _moderation(row: RoomModeration) -> RoomModerationRecord:
    return RoomModerationRecord(
        id=row.id,
        room_id=row.room_id,
        actor_mask_id=row.actor_mask_id,
        target_mask_id=row.target_mask_id,
        action_type=ModerationAction(row.action_type),
        expires_at=_as_utc(row.expires_at),
        created_at=_as_utc(row.created_at),
    )


def _message(row: Message) -> MessageRecord:
    return MessageRecord(
        id=row.id,
        room_id=row.room_id,
        mask_id=row.mask_id,
        body=row.body,
        image_upload=_upload(row.image_upload),
        created_at=_as_utc(row.created_at),
        mask=_mask(row.mask),
    )


def _server(row: Server) -> ServerRecord:
    return ServerRecord(
        id=row.id,
        name=row.name,
        owner_user_id=row.owner_user_id,
        channel_identity_mode=ChannelIdentityMode(row.channel_identity_mode),
        created_at=_as_utc(row.created_at),
        rtc_participant_cap=row.rtc_participant_cap,
        stage_mode_enabled=row.stage_mode_enabled,
        screenshare_minimum_role=ServerMemberRole(row.screenshare_minimum_role),
    )


def _role(row: ServerRole) -> ServerRoleRecord:
    known = {permission.value for permission in ServerPermission}
    return ServerRoleRecord(
        id=row.id,
        server_id=row.server_id,
        name=row.name,
        permissions=tuple(ServerPermission(value) for value in row.permissions or [] if value in known),
        created_at=_as_utc(row.created_at),
    )


def _member(row: ServerMember) -> ServerMemberRecord:
    permissions: list[str] = []
    for link in row.role_links:
        for value in link.role.permissions or []:
            if value not in permissions:
                permissions.append(value)
    return ServerMemberRecord(
        server_id=row.server_id,
        user_id=row.user_id,
        role=ServerMemberRole(row.role),
        server_mask_id=row.server_mask_id,
        server_mask=_mask(row.server_mask),
        joined_at=_as_utc(row.joined_at),
        role_ids=tuple(link.role_id for link in row.role_links),
        permissions=tuple(permissions),
    )


def _invite(row: ServerInvite) -> ServerInviteRecord:
    return ServerInviteRecord(
        id=row.id,
        server_id=row.server_id,
        code=row.code,
        expires_at=_as_utc(row.expires_at),
        max_uses=row.max_uses,
        uses=row.uses,
        created_at=_as_utc(row.created_at),
    )


def _channel(row: Channel) -> ChannelRecord:
    return ChannelRecord(
        id=row.id,
        server_id=row.server_id,
        name=row.name,
        type=ChannelType(row.type),
        created_at=_as_utc(row.created_at),
    )


def _server_message(row: ServerMessage) -> ServerMessageRecord:
    return ServerMessageRecord(
        id=row.id,
        channel_id=row.channel_id,
        mask_id=row.mask_id,
        body=row.body,
        image_upload=_upload(row.image_upload),
        created_at=_as_utc(row.created_at),
        mask=_mask(row.mask),
    )


def _thread(row: DmThread) -> DmThreadRecord:
    return DmThreadRecord(
        id=row.id,
        user_a_id=row.user_a_id,
        user_b_id=row.user_b_id,
        created_at=_as_utc(row.created_at),
    )


def _friend_request(row: FriendRequest) -> FriendRequestRecord:
    return FriendRequestRecord(
        id=row.id,
        from_user_id=row.from_user_id,
        to_user_id=row.to_user_id,
        status=FriendRequestStatus(row.status),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _participant(row: DmParticipant) -> DmParticipantRecord:
    return DmParticipantRecord(
        thread_id=row.thread_id,
        user_id=row.user_id,
        active_mask_id=row.active_mask_id,
        active_mask=_mask(row.active_mask),
    )


def _dm_message(row: DmMessage) -> DmMessageRecord:
    return DmMessageRecord(
        id=row.id,
        thread_id=row.thread_id,
        mask_id=row.mask_id,
        body=row.body,
        image_upload=_upload(row.image_upload),
        created_at=_as_utc(row.created_at),
        mask=_mask(row.mask),
    )


def _voice_session(row: VoiceSession) -> VoiceSessionRecord:
    return VoiceSessionRecord(
        id=row.id,
        context_type=ContextType(row.context_type),
        context_id=row.context_id,
        livekit_room_name=row.livekit_room_name,
        created_at=_as_utc(row.created_at),
        ended_at=_as_utc(row.ended_at),
    )


def _voice_participant(row: VoiceParticipant) -> VoiceParticipantRecord:
    return VoiceParticipantRecord(
        id=row.id,
        voice_session_id=row.voice_session_id,
        user_id=row.user_id,
        mask_id=row.mask_id,
        joined_at=_as_utc(row.joined_at),
        left_at=_as_utc(row.left_at),
        is_server_muted=row.is_server_muted,
        mask=_mask(row.mask),
    )


class SqlAlchemyRepository:
    """Repository port backed by short-lived SQLAlchemy sessions."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with session_scope(self._session_factory) as db:
                yield db
        except IntegrityError as exc:
            field = _duplicate_field(exc)
            raise DuplicateKeyError(f"Duplicate value for {field or 'unique key'}", field=field) from exc

    @staticmethod
    def _require(row, message: str):
        if row is None:
            raise NotFoundError(message)
        return row

    # ------------------------------------------------------------------
    # Users and masks
    # ------------------------------------------------------------------

    async def find_user_by_id(self, user_id: str) -> UserRecord | None:
        with self._session() as db:
            row = db.get(User, user_id)
            return _user(row) if row else None

    async def find_user_by_email(self, email: str) -> UserRecord | None:
        with self._session() as db:
            row = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
            return _user(row) if row else None

    async def find_user_by_friend_code(self, friend_code: str) -> UserRecord | None:
        with self._session() as db:
            row = db.execute(select(User).where(User.friend_code == friend_code)).scalar_one_or_none()
            return _user(row) if row else None

    async def create_user(self, *, email: str, friend_code: str, password_hash: str) -> UserRecord:
        with self._session() as db:
            row = User(email=email, friend_code=friend_code, password_hash=password_hash)
            db.add(row)
            db.flush()
            return _user(row)

    async def update_user_default_mask(self, user_id: str, mask_id: str | None) -> UserRecord:
        with self._session() as db:
            row = self._require(db.get(User, user_id), "User not found")
            row.default_mask_id = mask_id
            db.flush()
            return _user(row)

    async def find_mask_by_id_for_user(self, mask_id: str, user_id: str) -> MaskRecord | None:
        with self._session() as db:
            stmt = select(Mask).where(Mask.id == mask_id, Mask.user_id == user_id)
            row = db.execute(stmt).scalar_one_or_none()
            return _mask(row) if row else None

    async def list_masks_by_user(self, user_id: str) -> list[MaskRecord]:
        with self._session() as db:
            stmt = select(Mask).where(Mask.user_id == user_id).order_by(Mask.created_at)
            return [_mask(row) for row in db.execute(stmt).scalars()]

    async def count_masks_by_user(self, user_id: str) -> int:
        with self._session() as db:
            stmt = select(func.count()).select_from(Mask).where(Mask.user_id == user_id)
            return int(db.execute(stmt).scalar_one())

    async def create_mask(
        self, *, user_id: str, display_name: str, color: str, avatar_seed: str
    ) -> MaskRecord:
        with self._session() as db:
            row = Mask(user_id=user_id, display_name=display_name, color=color, avatar_seed=avatar_seed)
            db.add(row)
            db.flush()
            return _mask(row)

    async def is_mask_in_use(self, mask_id: str) -> bool:
        """True when the mask is a server mask or the active mask of a DM participant."""

        with self._session() as db:
            server_use = select(ServerMember.user_id).where(ServerMember.server_mask_id == mask_id).limit(1)
            if db.execute(server_use).first() is not None:
                return True
            dm_use = select(DmParticipant.thread_id).where(DmParticipant.active_mask_id == mask_id).limit(1)
            return db.execute(dm_use).first() is not None

    async def delete_mask(self, mask_id: str) -> None:
        """Delete a mask together with its memberships, messages and channel identities."""

        with self._session() as db:
            for model in (RoomMembership, Message, ServerMessage, DmMessage, ChannelMemberIdentity, VoiceParticipant):
                db.execute(delete(model).where(model.mask_id == mask_id))
            db.execute(delete(Mask).where(Mask.id == mask_id))

    async def list_rooms_for_mask(self, mask_id: str, now: datetime) -> list[MaskRoomRecord]:
        """Unexpired rooms the mask belongs to, newest room first."""

        with self._session() as db:
            stmt = (
                select(RoomMembership)
                .join(Room, Room.id == RoomMembership.room_id)
                .where(
                    RoomMembership.mask_id == mask_id,
                    (Room.expires_at.is_(None)) | (Room.expires_at > now),
                )
                .order_by(Room.created_at.desc())
            )
            return [
                MaskRoomRecord(room=_room(row.room), role=MembershipRole(row.role), joined_at=_as_utc(row.joined_at))
                for row in db.execute(stmt).scalars()
            ]

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def create_upload(
        self,
        *,
        owner_user_id: str,
        kind: UploadKind,
        context_type: ContextType | None,
        context_id: str | None,
        file_name: str,
        content_type: str,
        size_bytes: int,
        storage_path: str,
    ) -> UploadRecord:
        with self._session() as db:
            row = Upload(
                owner_user_id=owner_user_id,
                kind=kind,
                context_type=context_type,
                context_id=context_id,
                file_name=file_name,
                content_type=content_type,
                size_bytes=size_bytes,
                storage_path=storage_path,
            )
            db.add(row)
            db.flush()
            return _upload(row)

    async def find_upload_by_id(self, upload_id: str) -> UploadRecord | None:
        with self._session() as db:
            return _upload(db.get(Upload, upload_id))

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def create_room(
        self,
        *,
        title: str,
        kind: RoomKind,
        locked: bool,
        fog_level: int,
        message_decay_minutes: int,
        expires_at: datetime | None,
    ) -> RoomRecord:
        with self._session() as db:
            row = Room(
                title=title,
                kind=kind,
                locked=locked,
                fog_level=fog_level,
                message_decay_minutes=message_decay_minutes,
                expires_at=expires_at,
            )
            db.add(row)
            db.flush()
            return _room(row)

    async def find_room_by_id(self, room_id: str) -> RoomRecord | None:
        with self._session() as db:
            row = db.get(Room, room_id)
            return _room(row) if row else None

    async def list_rooms_with_expiry(self) -> list[RoomRecord]:
        with self._session() as db:
            stmt = select(Room).where(Room.expires_at.is_not(None)).order_by(Room.expires_at)
            return [_room(row) for row in db.execute(stmt).scalars()]

    async def set_room_locked(self, room_id: str, locked: bool) -> RoomRecord:
        with self._session() as db:
            row = self._require(db.get(Room, room_id), "Room not found")
            row.locked = locked
            db.flush()
            return _room(row)

    async def add_room_membership(
        self, *, room_id: str, mask_id: str, role: MembershipRole
    ) -> RoomMembershipRecord:
        with self._session() as db:
            row = RoomMembership(room_id=room_id, mask_id=mask_id, role=role)
            db.add(row)
            db.flush()
            return _membership(row)

    async def remove_room_membership(self, room_id: str, mask_id: str) -> None:
        with self._session() as db:
            db.execute(
                delete(RoomMembership).where(
                    RoomMembership.room_id == room_id,
                    RoomMembership.mask_id == mask_id,
                )
            )

    async def find_room_membership_with_mask(
        self, room_id: str, mask_id: str
    ) -> RoomMembershipRecord | None:
        with self._session() as db:
            row = db.get(RoomMembership, (room_id, mask_id))
            return _membership(row) if row else None

    async def list_room_messages(self, room_id: str) -> list[MessageRecord]:
        with self._session() as db:
            stmt = select(Message).where(Message.room_id == room_id).order_by(Message.created_at)
            return [_message(row) for row in db.execute(stmt).scalars()]

    async def create_message(
        self, *, room_id: str, mask_id: str, body: str, image_upload_id: str | None = None
    ) -> MessageRecord:
        with self._session() as db:
            row = Message(room_id=room_id, mask_id=mask_id, body=body, image_upload_id=image_upload_id)
            db.add(row)
            db.flush()
            return _message(row)

    async def create_room_moderation(
        self,
        *,
        room_id: str,
        actor_mask_id: str,
        target_mask_id: str | None,
        action_type: ModerationAction,
        expires_at: datetime | None,
    ) -> RoomModerationRecord:
        with self._session() as db:
            row = RoomModeration(
                room_id=room_id,
                actor_mask_id=actor_mask_id,
                target_mask_id=target_mask_id,
                action_type=action_type,
                expires_at=expires_at,
            )
            db.add(row)
            db.flush()
            return _moderation(row)

    async def find_active_mute(
        self, room_id: str, target_mask_id: str, now: datetime
    ) -> RoomModerationRecord | None:
        with self._session() as db:
            stmt = (
                select(RoomModeration)
                .where(
                    RoomModeration.room_id == room_id,
                    RoomModeration.target_mask_id == target_mask_id,
                    RoomModeration.action_type == ModerationAction.MUTE,
                    RoomModeration.expires_at > now,
                )
                .order_by(RoomModeration.created_at.desc())
                .limit(1)
            )
            row = db.execute(stmt).scalar_one_or_none()
            return _moderation(row) if row else None

    async def is_exiled(self, room_id: str, mask_id: str) -> bool:
        with self._session() as db:
            stmt = select(RoomModeration.id).where(
                RoomModeration.room_id == room_id,
                RoomModeration.target_mask_id == mask_id,
                RoomModeration.action_type == ModerationAction.EXILE,
            )
            return db.execute(stmt.limit(1)).scalar_one_or_none() is not None

    # ------------------------------------------------------------------
    # Servers and channels
    # ------------------------------------------------------------------

    async def create_server(self, *, name: str, owner_user_id: str) -> ServerRecord:
        with self._session() as db:
            row = Server(name=name, owner_user_id=owner_user_id)
            db.add(row)
            db.flush()
            return _server(row)

    async def find_server_by_id(self, server_id: str) -> ServerRecord | None:
        with self._session() as db:
            row = db.get(Server, server_id)
            return _server(row) if row else None

    async def update_server_settings(
        self, server_id: str, *, channel_identity_mode: ChannelIdentityMode
    ) -> ServerRecord:
        with self._session() as db:
            row = self._require(db.get(Server, server_id), "Server not found")
            row.channel_identity_mode = channel_identity_mode
            db.flush()
            return _server(row)

    async def update_server_rtc_policy(
        self,
        server_id: str,
        *,
        rtc_participant_cap: int | None,
        stage_mode_enabled: bool,
        screenshare_minimum_role: ServerMemberRole,
    ) -> ServerRecord:
        with self._session() as db:
            row = self._require(db.get(Server, server_id), "Server not found")
            row.rtc_participant_cap = rtc_participant_cap
            row.stage_mode_enabled = stage_mode_enabled
            row.screenshare_minimum_role = screenshare_minimum_role
            db.flush()
            return _server(row)

    async def list_servers_for_user(self, user_id: str) -> list[UserServerRecord]:
        """Servers the user is a member of, most recently joined first."""

        with self._session() as db:
            stmt = (
                select(ServerMember, Server)
                .join(Server, Server.id == ServerMember.server_id)
                .where(ServerMember.user_id == user_id)
                .order_by(ServerMember.joined_at.desc())
            )
            return [
                UserServerRecord(
                    server=_server(server),
                    role=ServerMemberRole(member.role),
                    joined_at=_as_utc(member.joined_at),
                    server_mask=_mask(member.server_mask),
                )
                for member, server in db.execute(stmt).all()
            ]

    async def find_server_member(self, server_id: str, user_id: str) -> ServerMemberRecord | None:
        with self._session() as db:
            row = db.get(ServerMember, (server_id, user_id))
            return _member(row) if row else None

    async def list_server_members(self, server_id: str) -> list[ServerMemberRecord]:
        with self._session() as db:
            stmt = (
                select(ServerMember)
                .where(ServerMember.server_id == server_id)
                .order_by(ServerMember.joined_at)
            )
            return [_member(row) for row in db.execute(stmt).scalars()]

    async def add_server_member(
        self, *, server_id: str, user_id: str, role: ServerMemberRole, server_mask_id: str
    ) -> ServerMemberRecord:
        with self._session() as db:
            row = ServerMember(server_id=server_id, user_id=user_id, role=role, server_mask_id=server_mask_id)
            db.add(row)
            db.flush()
            return _member(row)

    async def update_server_member_mask(
        self, server_id: str, user_id: str, server_mask_id: str
    ) -> ServerMemberRecord:
        with self._session() as db:
            row = self._require(db.get(ServerMember, (server_id, user_id)), "Member not found")
            row.server_mask_id = server_mask_id
            db.flush()
            db.refresh(row)
            return _member(row)

    async def set_server_member_roles(
        self, server_id: str, user_id: str, role_ids: Sequence[str]
    ) -> ServerMemberRecord:
        with self._session() as db:
            row = self._require(db.get(ServerMember, (server_id, user_id)), "Member not found")
            wanted = list(dict.fromkeys(role_ids))
            for link in list(row.role_links):
                if link.role_id not in wanted:
                    row.role_links.remove(link)
            present = {link.role_id for link in row.role_links}
            for role_id in wanted:
                if role_id not in present:
                    row.role_links.append(
                        ServerMemberRoleLink(server_id=server_id, user_id=user_id, role_id=role_id)
                    )
            db.flush()
            db.refresh(row)
            return _member(row)

    async def remove_server_member(self, server_id: str, user_id: str) -> bool:
        with self._session() as db:
            row = db.get(ServerMember, (server_id, user_id))
            if row is None:
                return False
            db.delete(row)
            db.execute(
                delete(ChannelMemberIdentity).where(
                    ChannelMemberIdentity.user_id == user_id,
                    ChannelMemberIdentity.channel_id.in_(
                        select(Channel.id).where(Channel.server_id == server_id)
                    ),
                )
            )
            return True

    async def create_server_role(
        self, *, server_id: str, name: str, permissions: Iterable[str]
    ) -> ServerRoleRecord:
        with self._session() as db:
            values = [ServerPermission(value).value for value in dict.fromkeys(permissions)]
            row = ServerRole(server_id=server_id, name=name, permissions=values)
            db.add(row)
            db.flush()
            return _role(row)

    async def list_server_roles(self, server_id: str) -> list[ServerRoleRecord]:
        with self._session() as db:
            stmt = select(ServerRole).where(ServerRole.server_id == server_id).order_by(ServerRole.created_at)
            return [_role(row) for row in db.execute(stmt).scalars()]

    async def find_server_role_by_name(self, server_id: str, name: str) -> ServerRoleRecord | None:
        with self._session() as db:
            stmt = select(ServerRole).where(ServerRole.server_id == server_id, ServerRole.name == name)
            row = db.execute(stmt).scalar_one_or_none()
            return _role(row) if row else None

    async def find_server_role_by_id(self, server_id: str, role_id: str) -> ServerRoleRecord | None:
        with self._session() as db:
            row = db.get(ServerRole, role_id)
            return _role(row) if row is not None and row.server_id == server_id else None

    async def update_server_role(
        self,
        server_id: str,
        role_id: str,
        *,
        name: str | None = None,
        permissions: Iterable[str] | None = None,
    ) -> ServerRoleRecord:
        with self._session() as db:
            row = db.get(ServerRole, role_id)
            if row is None or row.server_id != server_id:
                raise NotFoundError("Role not found")
            if name is not None:
                row.name = name
            if permissions is not None:
                row.permissions = [ServerPermission(value).value for value in dict.fromkeys(permissions)]
            db.flush()
            return _role(row)

    async def create_server_invite(
        self, *, server_id: str, code: str, expires_at: datetime | None, max_uses: int | None
    ) -> ServerInviteRecord:
        with self._session() as db:
            row = ServerInvite(server_id=server_id, code=code, expires_at=expires_at, max_uses=max_uses)
            db.add(row)
            db.flush()
            return _invite(row)

    async def find_server_invite_by_code(self, code: str) -> ServerInviteRecord | None:
        with self._session() as db:
            row = db.execute(select(ServerInvite).where(ServerInvite.code == code)).scalar_one_or_none()
            return _invite(row) if row else None

    async def increment_server_invite_uses(self, invite_id: str) -> ServerInviteRecord:
        with self._session() as db:
            row = self._require(db.get(ServerInvite, invite_id), "Invite not found")
            row.uses = row.uses + 1
            db.flush()
            return _invite(row)

    async def create_server_channel(
        self, *, server_id: str, name: str, type: ChannelType = ChannelType.TEXT
    ) -> ChannelRecord:
        with self._session() as db:
            row = Channel(server_id=server_id, name=name, type=type)
            db.add(row)
            db.flush()
            return _channel(row)

    async def find_channel_by_id(self, channel_id: str) -> ChannelRecord | None:
        with self._session() as db:
            row = db.get(Channel, channel_id)
            return _channel(row) if row else None

    async def list_server_channels(self, server_id: str) -> list[ChannelRecord]:
        with self._session() as db:
            stmt = select(Channel).where(Channel.server_id == server_id).order_by(Channel.created_at)
            return [_channel(row) for row in db.execute(stmt).scalars()]

    async def delete_server_channel(self, server_id: str, channel_id: str) -> bool:
        """Delete a channel with its messages and identities; ``False`` if it is not in the server."""

        with self._session() as db:
            row = db.get(Channel, channel_id)
            if row is None or row.server_id != server_id:
                return False
            db.execute(delete(ServerMessage).where(ServerMessage.channel_id == channel_id))
            db.execute(delete(ChannelMemberIdentity).where(ChannelMemberIdentity.channel_id == channel_id))
            db.delete(row)
            return True

    async def find_channel_member_identity(
        self, channel_id: str, user_id: str
    ) -> ChannelMemberIdentityRecord | None:
        with self._session() as db:
            row = db.get(ChannelMemberIdentity, (channel_id, user_id))
            if row is None:
                return None
            return ChannelMemberIdentityRecord(
                channel_id=row.channel_id, user_id=row.user_id, mask_id=row.mask_id, mask=_mask(row.mask)
            )

    async def upsert_channel_member_identity(
        self, channel_id: str, user_id: str, mask_id: str
    ) -> ChannelMemberIdentityRecord:
        with self._session() as db:
            row = db.get(ChannelMemberIdentity, (channel_id, user_id))
            if row is None:
                row = ChannelMemberIdentity(channel_id=channel_id, user_id=user_id, mask_id=mask_id)
                db.add(row)
            else:
                row.mask_id = mask_id
            db.flush()
            db.refresh(row)
            return ChannelMemberIdentityRecord(
                channel_id=row.channel_id, user_id=row.user_id, mask_id=row.mask_id, mask=_mask(row.mask)
            )

    async def list_server_messages(self, channel_id: str) -> list[ServerMessageRecord]:
        with self._session() as db:
            stmt = (
                select(ServerMessage)
                .where(ServerMessage.channel_id == channel_id)
                .order_by(ServerMessage.created_at)
            )
            return [_server_message(row) for row in db.execute(stmt).scalars()]

    async def create_server_message(
        self, *, channel_id: str, mask_id: str, body: str, image_upload_id: str | None = None
    ) -> ServerMessageRecord:
        with self._session() as db:
            row = ServerMessage(channel_id=channel_id, mask_id=mask_id, body=body, image_upload_id=image_upload_id)
            db.add(row)
            db.flush()
            return _server_message(row)

    # ------------------------------------------------------------------
    # Friends and direct messages
    # ------------------------------------------------------------------

    async def find_friendship_between_users(self, user_a_id: str, user_b_id: str) -> bool:
        first, second = order_user_pair(user_a_id, user_b_id)
        with self._session() as db:
            stmt = select(Friendship.id).where(Friendship.user_a_id == first, Friendship.user_b_id == second)
            return db.execute(stmt).scalar_one_or_none() is not None

    async def create_friendship(self, user_a_id: str, user_b_id: str) -> None:
        first, second = order_user_pair(user_a_id, user_b_id)
        with self._session() as db:
            db.add(Friendship(user_a_id=first, user_b_id=second))

    async def delete_friendship_between_users(self, user_a_id: str, user_b_id: str) -> bool:
        first, second = order_user_pair(user_a_id, user_b_id)
        with self._session() as db:
            result = db.execute(
                delete(Friendship).where(Friendship.user_a_id == first, Friendship.user_b_id == second)
            )
            return bool(result.rowcount)

    async def list_friends_for_user(self, user_id: str) -> list[UserRecord]:
        """Friends of a user, newest friendship first."""

        with self._session() as db:
            stmt = (
                select(Friendship)
                .where((Friendship.user_a_id == user_id) | (Friendship.user_b_id == user_id))
                .order_by(Friendship.created_at.desc())
            )
            friends: list[UserRecord] = []
            for friendship in db.execute(stmt).scalars():
                peer_id = friendship.user_b_id if friendship.user_a_id == user_id else friendship.user_a_id
                peer = db.get(User, peer_id)
                if peer is not None:
                    friends.append(_user(peer))
            return friends

    async def find_friend_request_by_id(self, request_id: str) -> FriendRequestRecord | None:
        with self._session() as db:
            row = db.get(FriendRequest, request_id)
            return _friend_request(row) if row else None

    async def find_friend_request_between_users(
        self, user_a_id: str, user_b_id: str
    ) -> FriendRequestRecord | None:
        """Most recently updated request between two users, in either direction."""

        with self._session() as db:
            stmt = (
                select(FriendRequest)
                .where(
                    ((FriendRequest.from_user_id == user_a_id) & (FriendRequest.to_user_id == user_b_id))
                    | ((FriendRequest.from_user_id == user_b_id) & (FriendRequest.to_user_id == user_a_id))
                )
                .order_by(FriendRequest.updated_at.desc())
                .limit(1)
            )
            row = db.execute(stmt).scalar_one_or_none()
            return _friend_request(row) if row else None

    async def upsert_friend_request(
        self, *, from_user_id: str, to_user_id: str, status: FriendRequestStatus
    ) -> FriendRequestRecord:
        with self._session() as db:
            stmt = select(FriendRequest).where(
                FriendRequest.from_user_id == from_user_id, FriendRequest.to_user_id == to_user_id
            )
            row = db.execute(stmt).scalar_one_or_none()
            if row is None:
                row = FriendRequest(from_user_id=from_user_id, to_user_id=to_user_id, status=status)
                db.add(row)
            else:
                row.status = status
            db.flush()
            return _friend_request(row)

    async def update_friend_request_status(
        self, request_id: str, status: FriendRequestStatus
    ) -> FriendRequestRecord:
        with self._session() as db:
            row = self._require(db.get(FriendRequest, request_id), "Friend request not found")
            row.status = status
            db.flush()
            return _friend_request(row)

    async def list_incoming_friend_requests(self, user_id: str) -> list[FriendRequestRecord]:
        with self._session() as db:
            stmt = (
                select(FriendRequest)
                .where(FriendRequest.to_user_id == user_id, FriendRequest.status == FriendRequestStatus.PENDING)
                .order_by(FriendRequest.created_at.desc())
            )
            return [_friend_request(row) for row in db.execute(stmt).scalars()]

    async def list_outgoing_friend_requests(self, user_id: str) -> list[FriendRequestRecord]:
        with self._session() as db:
            stmt = (
                select(FriendRequest)
                .where(FriendRequest.from_user_id == user_id, FriendRequest.status == FriendRequestStatus.PENDING)
                .order_by(FriendRequest.created_at.desc())
            )
            return [_friend_request(row) for row in db.execute(stmt).scalars()]

    async def list_dm_threads_for_user(self, user_id: str) -> list[DmThreadRecord]:
        """Threads the user is part of, newest first."""

        with self._session() as db:
            stmt = (
                select(DmThread)
                .where((DmThread.user_a_id == user_id) | (DmThread.user_b_id == user_id))
                .order_by(DmThread.created_at.desc())
            )
            return [_thread(row) for row in db.execute(stmt).scalars()]

    async def find_dm_thread_by_id(self, thread_id: str) -> DmThreadRecord | None:
        with self._session() as db:
            row = db.get(DmThread, thread_id)
            return _thread(row) if row else None

    async def find_dm_thread_between_users(
        self, user_a_id: str, user_b_id: str
    ) -> DmThreadRecord | None:
        first, second = order_user_pair(user_a_id, user_b_id)
        with self._session() as db:
            stmt = select(DmThread).where(DmThread.user_a_id == first, DmThread.user_b_id == second)
            row = db.execute(stmt).scalar_one_or_none()
            return _thread(row) if row else None

    async def create_dm_thread(self, user_a_id: str, user_b_id: str) -> DmThreadRecord:
        first, second = order_user_pair(user_a_id, user_b_id)
        with self._session() as db:
            row = DmThread(user_a_id=first, user_b_id=second)
            db.add(row)
            db.flush()
            return _thread(row)

    async def upsert_dm_participant(
        self, *, thread_id: str, user_id: str, active_mask_id: str
    ) -> DmParticipantRecord:
        with self._session() as db:
            row = db.get(DmParticipant, (thread_id, user_id))
            if row is None:
                row = DmParticipant(thread_id=thread_id, user_id=user_id, active_mask_id=active_mask_id)
                db.add(row)
            else:
                row.active_mask_id = active_mask_id
            db.flush()
            db.refresh(row)
            return _participant(row)

    async def find_dm_participant(self, thread_id: str, user_id: str) -> DmParticipantRecord | None:
        with self._session() as db:
            row = db.get(DmParticipant, (thread_id, user_id))
            return _participant(row) if row else None

    async def list_dm_participants(self, thread_id: str) -> list[DmParticipantRecord]:
        with self._session() as db:
            stmt = select(DmParticipant).where(DmParticipant.thread_id == thread_id).order_by(DmParticipant.user_id)
            return [_participant(row) for row in db.execute(stmt).scalars()]

    async def list_dm_messages(self, thread_id: str) -> list[DmMessageRecord]:
        with self._session() as db:
            stmt = select(DmMessage).where(DmMessage.thread_id == thread_id).order_by(DmMessage.created_at)
            return [_dm_message(row) for row in db.execute(stmt).scalars()]

    async def create_dm_message(
        self, *, thread_id: str, mask_id: str, body: str, image_upload_id: str | None = None
    ) -> DmMessageRecord:
        with self._session() as db:
            row = DmMessage(thread_id=thread_id, mask_id=mask_id, body=body, image_upload_id=image_upload_id)
            db.add(row)
            db.flush()
            return _dm_message(row)

    # ------------------------------------------------------------------
    # Voice
    # ------------------------------------------------------------------

    async def find_voice_session_by_id(self, voice_session_id: str) -> VoiceSessionRecord | None:
        with self._session() as db:
            row = db.get(VoiceSession, voice_session_id)
            return _voice_session(row) if row else None

    async def find_active_voice_session_by_context(
        self, context_type: ContextType, context_id: str
    ) -> VoiceSessionRecord | None:
        with self._session() as db:
            stmt = (
                select(VoiceSession)
                .where(
                    VoiceSession.context_type == context_type,
                    VoiceSession.context_id == context_id,
                    VoiceSession.ended_at.is_(None),
                )
                .order_by(VoiceSession.created_at.desc())
                .limit(1)
            )
            row = db.execute(stmt).scalar_one_or_none()
            return _voice_session(row) if row else None

    async def create_voice_session(
        self, *, context_type: ContextType, context_id: str, livekit_room_name: str
    ) -> VoiceSessionRecord:
        with self._session() as db:
            row = VoiceSession(context_type=context_type, context_id=context_id, livekit_room_name=livekit_room_name)
            db.add(row)
            db.flush()
            return _voice_session(row)

    async def end_voice_session(self, voice_session_id: str, ended_at: datetime) -> VoiceSessionRecord:
        with self._session() as db:
            row = self._require(db.get(VoiceSession, voice_session_id), "Voice session not found")
            if row.ended_at is None:
                row.ended_at = ended_at
            db.flush()
            return _voice_session(row)

    async def create_voice_participant(
        self, *, voice_session_id: str, user_id: str, mask_id: str, is_server_muted: bool
    ) -> VoiceParticipantRecord:
        with self._session() as db:
            row = VoiceParticipant(
                voice_session_id=voice_session_id,
                user_id=user_id,
                mask_id=mask_id,
                is_server_muted=is_server_muted,
            )
            db.add(row)
            db.flush()
            return _voice_participant(row)

    async def list_active_voice_participants(
        self, voice_session_id: str
    ) -> list[VoiceParticipantRecord]:
        with self._session() as db:
            stmt = (
                select(VoiceParticipant)
                .where(
                    VoiceParticipant.voice_session_id == voice_session_id,
                    VoiceParticipant.left_at.is_(None),
                )
                .order_by(VoiceParticipant.joined_at)
            )
            return [_voice_participant(row) for row in db.execute(stmt).scalars()]

    async def mark_voice_participants_left(
        self, voice_session_id: str, user_id: str, left_at: datetime
    ) -> int:
        with self._session() as db:
            result = db.execute(
                update(VoiceParticipant)
                .where(
                    VoiceParticipant.voice_session_id == voice_session_id,
                    VoiceParticipant.user_id == user_id,
                    VoiceParticipant.left_at.is_(None),
                )
                .values(left_at=left_at)
            )
            return int(result.rowcount or 0)

    async def set_voice_participants_muted(
        self, voice_session_id: str, mask_id: str, is_server_muted: bool
    ) -> int:
        with self._session() as db:
            result = db.execute(
                update(VoiceParticipant)
                .where(
                    VoiceParticipant.voice_session_id == voice_session_id,
                    VoiceParticipant.mask_id == mask_id,
                    VoiceParticipant.left_at.is_(None),
                )
                .values(is_server_muted=is_server_muted)
            )
            return int(result.rowcount or 0)


__all__ = ["SqlAlchemyRepository"]
