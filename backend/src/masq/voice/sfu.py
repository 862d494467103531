"""Media server port and its LiveKit implementation.

The broker only needs four primitives from the SFU: mint a join token, list
the participants of a room, revoke publishing for one participant and delete
a room. Participant metadata is a JSON document describing the mask behind
each media identity.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Protocol

from livekit import api

logger = logging.getLogger(__name__)


class SFUError(Exception):
    """A call to the media server admin API failed."""


_METADATA_WIRE_NAMES = {
    "user_id": "userId",
    "mask_id": "maskId",
    "display_name": "displayName",
    "color": "color",
    "avatar_seed": "avatarSeed",
    "context_type": "contextType",
    "context_id": "contextId",
}


@dataclass(slots=True, frozen=True)
class ParticipantMetadata:
    user_id: str
    mask_id: str
    display_name: str
    color: str
    avatar_seed: str
    context_type: str
    context_id: str

    def to_json(self) -> str:
        return json.dumps(
            {_METADATA_WIRE_NAMES[key]: value for key, value in asdict(self).items()},
            separators=(",", ":"),
        )


def parse_participant_metadata(raw: str | None) -> ParticipantMetadata | None:
    """Decode participant metadata, returning ``None`` for anything malformed."""

    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    values: dict[str, Any] = {}
    for field_name, wire_name in _METADATA_WIRE_NAMES.items():
        value = data.get(wire_name)
        if not isinstance(value, str):
            return None
        values[field_name] = value
    return ParticipantMetadata(**values)


@dataclass(slots=True, frozen=True)
class SFUParticipant:
    identity: str
    metadata: str | None = None


class SFU(Protocol):
    url: str

    def issue_token(
        self,
        *,
        room_name: str,
        identity: str,
        display_name: str,
        metadata: ParticipantMetadata,
        can_publish: bool,
    ) -> str: ...

    async def list_participants(self, room_name: str) -> list[SFUParticipant]: ...

    async def revoke_publish(self, room_name: str, identity: str) -> None: ...

    async def delete_room(self, room_name: str) -> None: ...

    async def aclose(self) -> None: ...


class LiveKitSFU:
    """LiveKit server SDK wrapper. The API client is created on first use."""

    def __init__(self, url: str, api_key: str, api_secret: str, *, token_ttl_seconds: int = 3600) -> None:
        self.url = url
        self._api_key = api_key
        self._api_secret = api_secret
        self._token_ttl = timedelta(seconds=max(60, token_ttl_seconds))
        self._client: api.LiveKitAPI | None = None

    @property
    def client(self) -> api.LiveKitAPI:
        if self._client is None:
            self._client = api.LiveKitAPI(url=self.url, api_key=self._api_key, api_secret=self._api_secret)
        return self._client

    def issue_token(
        self,
        *,
        room_name: str,
        identity: str,
        display_name: str,
        metadata: ParticipantMetadata,
        can_publish: bool,
    ) -> str:
        grants = api.VideoGrants(
            room_join=True,
            room=room_name,
            can_publish=can_publish,
            can_subscribe=True,
            can_publish_data=True,
        )
        token = (
            api.AccessToken(self._api_key, self._api_secret)
            .with_identity(identity)
            .with_name(display_name or identity)
            .with_ttl(self._token_ttl)
            .with_grants(grants)
            .with_metadata(metadata.to_json())
        )
        return token.to_jwt()

    async def list_participants(self, room_name: str) -> list[SFUParticipant]:
        try:
            response = await self.client.room.list_participants(api.ListParticipantsRequest(room=room_name))
        except Exception as exc:
            raise SFUError(f"list_participants failed for {room_name}") from exc
        return [
            SFUParticipant(identity=participant.identity, metadata=participant.metadata or None)
            for participant in response.participants
        ]

    async def revoke_publish(self, room_name: str, identity: str) -> None:
        request = api.UpdateParticipantRequest(
            room=room_name,
            identity=identity,
            permission=api.ParticipantPermission(
                can_publish=False,
                can_subscribe=True,
                can_publish_data=True,
            ),
        )
        try:
            await self.client.room.update_participant(request)
        except Exception as exc:
            raise SFUError(f"update_participant failed for {identity} in {room_name}") from exc

    async def delete_room(self, room_name: str) -> None:
        try:
            await self.client.room.delete_room(api.DeleteRoomRequest(room=room_name))
        except Exception as exc:
            raise SFUError(f"delete_room failed for {room_name}") from exc

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = [
    "LiveKitSFU",
    "ParticipantMetadata",
    "SFU",
    "SFUError",
    "SFUParticipant",
    "parse_participant_metadata",
]
