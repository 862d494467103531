"""Wiring of the realtime services for one application instance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from masq.domain.repository import Repository
from masq.realtime.expiry import RoomExpiryScheduler
from masq.realtime.gateway import RealtimeGateway
from masq.realtime.identity import IdentityService
from masq.realtime.moderation import RoomModerationService
from masq.realtime.pipeline import MessagePipeline
from masq.realtime.presence import PresenceRegistry
from masq.realtime.ratelimit import MessageRateLimiter
from masq.realtime.state import StateBroadcaster, utcnow
from masq.voice.broker import VoiceBroker
from masq.voice.sfu import SFU, LiveKitSFU

if TYPE_CHECKING:
    from app.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class RealtimeServices:
    repository: Repository
    presence: PresenceRegistry
    state: StateBroadcaster
    expiry: RoomExpiryScheduler
    moderation: RoomModerationService
    pipeline: MessagePipeline
    identity: IdentityService
    voice: VoiceBroker
    gateway: RealtimeGateway
    sfu: SFU | None = None

    @classmethod
    def build(
        cls,
        repository: Repository,
        settings: "Settings",
        *,
        sfu: SFU | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "RealtimeServices":
        if sfu is None and settings.livekit_enabled:
            sfu = LiveKitSFU(
                settings.livekit_url or "",
                settings.livekit_api_key or "",
                settings.livekit_api_secret or "",
                token_ttl_seconds=settings.livekit_token_ttl_seconds,
            )

        limiter = MessageRateLimiter(
            window_ms=settings.message_rate_limit_window_ms,
            room_count=settings.room_message_rate_limit_count,
            dm_count=settings.dm_message_rate_limit_count,
            channel_count=settings.channel_message_rate_limit_count,
        )
        presence = PresenceRegistry(limiter)
        state = StateBroadcaster(
            repository, presence, max_recent_messages=settings.max_recent_messages, clock=clock
        )
        voice = VoiceBroker(
            repository,
            sfu,
            clock=clock,
            server_participant_cap=settings.rtc_server_participant_cap,
        )
        expiry = RoomExpiryScheduler(
            repository, presence, state, clock=clock, terminate_voice=voice.terminate_for_context
        )
        moderation = RoomModerationService(
            repository,
            presence,
            state,
            expiry,
            clock=clock,
            default_mute_minutes=settings.default_mute_minutes,
            max_mute_minutes=settings.max_mute_minutes,
            default_message_decay_minutes=settings.default_message_decay_minutes,
            ephemeral_room_ttl_minutes=settings.ephemeral_room_ttl_minutes,
        )
        pipeline = MessagePipeline(
            repository,
            presence,
            state,
            expiry,
            limiter,
            clock=clock,
            max_message_length=settings.max_room_message_length,
        )
        identity = IdentityService(repository, presence, state)
        gateway = RealtimeGateway(repository, presence, state, expiry, pipeline, clock=clock)
        return cls(
            repository=repository,
            presence=presence,
            state=state,
            expiry=expiry,
            moderation=moderation,
            pipeline=pipeline,
            identity=identity,
            voice=voice,
            gateway=gateway,
            sfu=sfu,
        )

    async def startup(self) -> None:
        """Expire overdue rooms and arm the remaining timers before serving."""

        await self.expiry.sweep()

    async def shutdown(self) -> None:
        self.expiry.cancel_all()
        await self.presence.close_all()
        if self.sfu is not None:
            await self.sfu.aclose()
        logger.info("Realtime services stopped")


__all__ = ["RealtimeServices"]
