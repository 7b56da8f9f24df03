from datetime import datetime
from typing import Dict, Iterable, List, Optional

from briefloop.shared.logging_utils import info as log_info
from briefloop.shared.record_store import APPROVAL_WORKFLOWS, SESSIONS, RecordStore
from briefloop.specs.common.enums import (
    ACTIVE_SESSION_STATUSES,
    OPEN_APPROVAL_STATUSES,
    RoomStatus,
)
from briefloop.specs.models.domain import ApprovalWorkflow, BriefingSession, EphemeralRoom


class SessionRegistry:
    """In-memory indexes over the record store.

    Constructed once per process and handed to every manager. It is a cache:
    it may start empty, and ``warm`` reloads in-flight sessions and open
    workflows after a restart. Only live records are held; terminal sessions,
    closed workflows and torn-down rooms are dropped as soon as they are
    tracked in that state, and managers read them back from the store.
    Rooms exist only here.
    """

    def __init__(self) -> None:
        self.sessions: Dict[str, BriefingSession] = {}
        self.workflows: Dict[str, ApprovalWorkflow] = {}
        self.rooms: Dict[str, EphemeralRoom] = {}
        # credential id -> time after which the token is expired anyway
        self.revoked_credentials: Dict[str, datetime] = {}
        self._active_by_address: Dict[str, str] = {}
        self._open_by_address: Dict[str, List[str]] = {}
        self._room_by_session: Dict[str, str] = {}
        self._session_by_call: Dict[str, str] = {}

    # sessions

    def track_session(self, session: BriefingSession) -> None:
        if session.status not in ACTIVE_SESSION_STATUSES:
            self.forget_session(session)
            return
        self.sessions[session.id] = session
        if session.callId:
            self._session_by_call[session.callId] = session.id
        self._active_by_address[session.channelAddress] = session.id

    def forget_session(self, session: BriefingSession) -> None:
        self.sessions.pop(session.id, None)
        if self._active_by_address.get(session.channelAddress) == session.id:
            del self._active_by_address[session.channelAddress]
        for call_id in [c for c, s in self._session_by_call.items() if s == session.id]:
            del self._session_by_call[call_id]

    def active_session_for(self, address: str) -> Optional[BriefingSession]:
        session_id = self._active_by_address.get(address)
        return self.sessions.get(session_id) if session_id else None

    def session_for_call(self, call_id: str) -> Optional[BriefingSession]:
        session_id = self._session_by_call.get(call_id)
        return self.sessions.get(session_id) if session_id else None

    def active_sessions(self) -> List[BriefingSession]:
        return list(self.sessions.values())

    # approval workflows

    def track_workflow(self, workflow: ApprovalWorkflow) -> None:
        open_ids = self._open_by_address.setdefault(workflow.channelAddress, [])
        if workflow.id in open_ids:
            open_ids.remove(workflow.id)
        if workflow.status in OPEN_APPROVAL_STATUSES:
            self.workflows[workflow.id] = workflow
            open_ids.append(workflow.id)
        else:
            self.workflows.pop(workflow.id, None)
        if not open_ids:
            del self._open_by_address[workflow.channelAddress]

    def release_workflow(self, workflow: ApprovalWorkflow) -> bool:
        """Drop a workflow from the open set; False if it was not there."""
        open_ids = self._open_by_address.get(workflow.channelAddress, [])
        if workflow.id not in open_ids:
            return False
        open_ids.remove(workflow.id)
        if not open_ids:
            del self._open_by_address[workflow.channelAddress]
        return True

    def restore_workflow(self, workflow: ApprovalWorkflow) -> None:
        open_ids = self._open_by_address.setdefault(workflow.channelAddress, [])
        if workflow.id not in open_ids:
            open_ids.append(workflow.id)

    def is_open(self, workflow: ApprovalWorkflow) -> bool:
        return workflow.id in self._open_by_address.get(workflow.channelAddress, [])

    def open_workflow_for(self, address: str) -> Optional[ApprovalWorkflow]:
        """Most recently created open workflow for the address."""
        candidates = [self.workflows[w] for w in self._open_by_address.get(address, []) if w in self.workflows]
        if not candidates:
            return None
        return max(candidates, key=lambda w: w.createdAt)

    def open_workflows(self) -> List[ApprovalWorkflow]:
        return [self.workflows[w] for ids in self._open_by_address.values() for w in ids if w in self.workflows]

    # rooms

    def track_room(self, room: EphemeralRoom) -> None:
        if room.status == RoomStatus.ACTIVE:
            self.rooms[room.id] = room
            self._room_by_session[room.sessionId] = room.id
            return
        self.rooms.pop(room.id, None)
        if self._room_by_session.get(room.sessionId) == room.id:
            del self._room_by_session[room.sessionId]

    def revoke_credentials(self, credential_ids: Iterable[str], until: datetime) -> None:
        for credential_id in credential_ids:
            self.revoked_credentials[credential_id] = until

    def prune_revoked(self, now: datetime) -> int:
        """Forget revocations for credentials that have expired on their own."""
        lapsed = [c for c, until in self.revoked_credentials.items() if until <= now]
        for credential_id in lapsed:
            del self.revoked_credentials[credential_id]
        return len(lapsed)

    def room_for_session(self, session_id: str) -> Optional[EphemeralRoom]:
        room_id = self._room_by_session.get(session_id)
        return self.rooms.get(room_id) if room_id else None

    def active_rooms(self) -> Iterable[EphemeralRoom]:
        return list(self.rooms.values())

    def sessions_in_room(self, room_id: str) -> List[BriefingSession]:
        return [s for s in self.sessions.values() if s.roomId == room_id]

    # recovery

    def warm(self, store: RecordStore) -> None:
        """Reload non-terminal sessions and open workflows from the store."""
        sessions = 0
        for doc in store.query(SESSIONS):
            session = BriefingSession.model_validate(doc)
            if session.status in ACTIVE_SESSION_STATUSES:
                self.track_session(session)
                sessions += 1
        workflows = 0
        for doc in store.query(APPROVAL_WORKFLOWS):
            workflow = ApprovalWorkflow.model_validate(doc)
            if workflow.status in OPEN_APPROVAL_STATUSES:
                self.track_workflow(workflow)
                workflows += 1
        log_info(None, "registry:warmed", sessions=sessions, workflows=workflows)
