"""
Ephemeral real-time rooms for briefing calls.

A room belongs to exactly one session. ``create_room`` is idempotent per
session, so a retried call-placement callback gets the same room back.
Join credentials are HS256 JWTs scoped to one room and one identity; tearing
a room down revokes every credential it issued, even ones not yet expired.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import jwt

from briefloop.shared.logging_utils import info as log_info, warning as log_warning
from briefloop.shared.registry import SessionRegistry
from briefloop.shared.state_common import utc_now
from briefloop.specs.common.enums import RoomStatus
from briefloop.specs.common.errors import AuthError, ConfigurationError, ConflictError, NotFoundError
from briefloop.specs.common.ids import new_id
from briefloop.specs.common.results import Outcome
from briefloop.specs.models.domain import EphemeralRoom, RoomGrant

CREDENTIAL_ISSUER = "briefloop"
CREDENTIAL_AUDIENCE = "briefloop-room"
AGENT_IDENTITY = "briefing-agent"

TeardownHook = Callable[[EphemeralRoom, str], None]


class EphemeralRoomBroker:
    def __init__(
        self,
        registry: SessionRegistry,
        signing_secret: Optional[str],
        *,
        max_participants: int = 2,
        idle_timeout_seconds: int = 300,
        credential_ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not signing_secret:
            raise ConfigurationError("ROOM_SIGNING_SECRET is required to issue room credentials")
        self._registry = registry
        self._secret = signing_secret
        self.max_participants = max_participants
        self.idle_timeout_seconds = idle_timeout_seconds
        self.credential_ttl = timedelta(seconds=credential_ttl_seconds)
        self._clock = clock
        self._teardown_hooks: List[TeardownHook] = []

    def on_teardown(self, hook: TeardownHook) -> None:
        self._teardown_hooks.append(hook)

    def get_room(self, room_id: str) -> Optional[EphemeralRoom]:
        return self._registry.rooms.get(room_id)

    def room_for_session(self, session_id: str) -> Optional[EphemeralRoom]:
        return self._registry.room_for_session(session_id)

    def create_room(
        self,
        session_id: str,
        max_participants: Optional[int] = None,
        idle_timeout_seconds: Optional[int] = None,
    ) -> RoomGrant:
        """Return the session's active room, allocating one on first call."""
        room = self._registry.room_for_session(session_id)
        if room is not None and room.hostCredential:
            try:
                claims = self._decode(room.hostCredential)
                return self._grant(room, claims)
            except AuthError:
                # Host credential lapsed; hand out a fresh one for the same room.
                return self._issue_host_credential(room)

        now = self._clock()
        room = EphemeralRoom(
            id=new_id("room"),
            sessionId=session_id,
            maxParticipants=max_participants or self.max_participants,
            idleTimeoutSeconds=idle_timeout_seconds or self.idle_timeout_seconds,
            createdAt=now,
            lastActivity=now,
        )
        grant = self._issue_host_credential(room)
        log_info(session_id, "room:created", roomId=room.id, maxParticipants=room.maxParticipants)
        return grant

    def _issue_host_credential(self, room: EphemeralRoom) -> RoomGrant:
        grant = self.issue_credential(room, AGENT_IDENTITY)
        room.hostCredential = grant.joinCredential
        self._registry.track_room(room)
        return grant

    def issue_credential(self, room: EphemeralRoom, identity: str) -> RoomGrant:
        if room.status != RoomStatus.ACTIVE:
            raise ConflictError(f"room {room.id} is closed", current_status=room.status.value)
        now = self._clock()
        expires_at = now + self.credential_ttl
        jti = new_id("cred")
        claims = {
            "iss": CREDENTIAL_ISSUER,
            "aud": CREDENTIAL_AUDIENCE,
            "sub": identity,
            "room": room.id,
            "jti": jti,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(claims, self._secret, algorithm="HS256")
        room.credentialIds.append(jti)
        self._registry.track_room(room)
        return RoomGrant(roomId=room.id, identity=identity, joinCredential=token, expiresAt=expires_at)

    def _grant(self, room: EphemeralRoom, claims: Dict[str, Any]) -> RoomGrant:
        return RoomGrant(
            roomId=room.id,
            identity=claims["sub"],
            joinCredential=room.hostCredential,
            expiresAt=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        )

    def _decode(self, token: str) -> Dict[str, Any]:
        try:
            # Expiry is checked against the injected clock below.
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=["HS256"],
                audience=CREDENTIAL_AUDIENCE,
                issuer=CREDENTIAL_ISSUER,
                options={"verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as exc:
            raise AuthError("Invalid room credential", details={"reason": str(exc)}) from exc
        if claims.get("exp", 0) <= int(self._clock().timestamp()):
            raise AuthError("Room credential expired")
        if claims.get("jti") in self._registry.revoked_credentials:
            raise AuthError("Room credential revoked")
        return claims

    def validate_credential(self, token: str, room_id: Optional[str] = None) -> Dict[str, Any]:
        """Return the credential's claims; AuthError if invalid, expired, revoked or for another room."""
        claims = self._decode(token)
        room = self._registry.rooms.get(claims.get("room", ""))
        if room is None or room.status != RoomStatus.ACTIVE:
            raise AuthError("Room is no longer available")
        if room_id is not None and claims["room"] != room_id:
            raise AuthError("Credential is scoped to another room")
        return claims

    def join(self, room_id: str, identity: str, token: str) -> Outcome[EphemeralRoom]:
        claims = self.validate_credential(token, room_id)
        if claims["sub"] != identity:
            raise AuthError("Credential is scoped to another identity")
        room = self._registry.rooms[room_id]
        if identity not in room.participants:
            if len(room.participants) >= room.maxParticipants:
                return Outcome.refused(ConflictError(f"room {room_id} is full"), room)
            room.participants.append(identity)
        room.lastActivity = self._clock()
        self._registry.track_room(room)
        log_info(room.sessionId, "room:joined", roomId=room_id, participants=len(room.participants))
        return Outcome.applied(room)

    def leave(self, room_id: str, identity: str) -> None:
        room = self._registry.rooms.get(room_id)
        if room is None or identity not in room.participants:
            return
        room.participants.remove(identity)
        room.lastActivity = self._clock()
        self._registry.track_room(room)

    def touch(self, room_id: str) -> EphemeralRoom:
        room = self._registry.rooms.get(room_id)
        if room is None:
            raise NotFoundError("room", room_id)
        room.lastActivity = self._clock()
        self._registry.track_room(room)
        return room

    def teardown(self, room_id: str, reason: str) -> bool:
        """Close the room and revoke its credentials. False if it was already closed."""
        room = self._registry.rooms.get(room_id)
        if room is None or room.status != RoomStatus.ACTIVE:
            return False
        room.status = RoomStatus.CLOSED
        room.closedAt = self._clock()
        room.closeReason = reason
        room.participants = []
        # Every credential for this room expires within one TTL of now.
        self._registry.revoke_credentials(room.credentialIds, room.closedAt + self.credential_ttl)
        self._registry.track_room(room)
        log_info(room.sessionId, "room:torn_down", roomId=room.id, reason=reason)
        for hook in self._teardown_hooks:
            try:
                hook(room, reason)
            except Exception as exc:
                log_warning(room.sessionId, "room:teardown_hook_failed", roomId=room.id, error=str(exc))
        return True

    def teardown_for_session(self, session_id: str, reason: str) -> bool:
        room = self._registry.room_for_session(session_id)
        return self.teardown(room.id, reason) if room else False

    def sweep_idle(self, now: Optional[datetime] = None) -> List[str]:
        """Tear down rooms with no activity for longer than their timeout.

        Occupancy does not keep a room alive: a live call stays open only while
        the voice agent or the provider keeps touching it.
        """
        now = now or self._clock()
        torn_down = []
        for room in list(self._registry.active_rooms()):
            idle_for = (now - room.lastActivity).total_seconds()
            if idle_for <= room.idleTimeoutSeconds:
                continue
            if self.teardown(room.id, "idle_timeout"):
                torn_down.append(room.id)
        pruned = self._registry.prune_revoked(now)
        if torn_down or pruned:
            log_info(None, "room:idle_sweep", tornDown=len(torn_down), revocationsPruned=pruned)
        return torn_down
