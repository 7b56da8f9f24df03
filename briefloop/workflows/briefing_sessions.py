"""
Scheduling and briefing phase.

    pending ──reply──▶ scheduled ──answered──▶ in_progress ──context + ended──▶ completed
                         │  ▲                      │
            reschedule   ▼  │ reply                └──call failed / timeout──▶ failed
                       rescheduled
    any non-terminal ──cancel──▶ cancelled

The outbound call is placed while the session is ``scheduled``; the provider's
"answered" event moves it to ``in_progress``. Placement failure and ring
timeout fail the session directly and are never retried.

Every applied transition is persisted with an optimistic guard on the prior
status and then logged to the ledger. Side effects run through ``_once`` so a
redelivered callback never repeats an outbound message, call or generation
request.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

from briefloop.shared.channels import ChannelClient
from briefloop.shared.config import Settings
from briefloop.shared.integrations import GenerationClient, RecordNotifier
from briefloop.shared.ledger import WorkflowStepLedger
from briefloop.shared.logging_utils import (
    error as log_error,
    info as log_info,
    mask_address,
    warning as log_warning,
)
from briefloop.shared.record_store import (
    BRIEFING_CONTEXTS,
    SCHEDULING_RESPONSES,
    SESSIONS,
    RecordStore,
)
from briefloop.shared.registry import SessionRegistry
from briefloop.shared.state_common import utc_now
from briefloop.specs.common.enums import (
    ACTIVE_SESSION_STATUSES,
    AWAITING_REPLY_STATUSES,
    CallState,
    ScheduleIntent,
    SessionStatus,
    StepStatus,
)
from briefloop.specs.common.errors import (
    AuthError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from briefloop.specs.common.ids import new_id, short_id
from briefloop.specs.common.results import Outcome
from briefloop.specs.models.domain import BriefingContext, BriefingSession, EphemeralRoom, SchedulingResponse
from briefloop.workflows import messages, time_parser
from briefloop.workflows.rooms import AGENT_IDENTITY, EphemeralRoomBroker

_TRANSITIONS: Dict[SessionStatus, frozenset] = {
    SessionStatus.PENDING: frozenset({SessionStatus.SCHEDULED, SessionStatus.CANCELLED}),
    SessionStatus.SCHEDULED: frozenset(
        {SessionStatus.IN_PROGRESS, SessionStatus.RESCHEDULED, SessionStatus.CANCELLED, SessionStatus.FAILED}
    ),
    SessionStatus.RESCHEDULED: frozenset({SessionStatus.SCHEDULED, SessionStatus.CANCELLED}),
    SessionStatus.IN_PROGRESS: frozenset(
        {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED}
    ),
}

# Provider call states, lower-cased.
_CALL_STATES: Dict[str, CallState] = {
    "queued": CallState.PROGRESS,
    "initiated": CallState.PROGRESS,
    "ringing": CallState.PROGRESS,
    "progress": CallState.PROGRESS,
    "answered": CallState.ANSWERED,
    "in-progress": CallState.ANSWERED,
    "in_progress": CallState.ANSWERED,
    "completed": CallState.ENDED,
    "ended": CallState.ENDED,
    "busy": CallState.FAILED,
    "failed": CallState.FAILED,
    "no-answer": CallState.FAILED,
    "no_answer": CallState.FAILED,
    "canceled": CallState.FAILED,
    "cancelled": CallState.FAILED,
}

CONTEXT_FIELDS = ("transcript", "narrative", "audience", "mood", "platformPreferences", "urgency", "tone")
GENERATION_STEP = "generation_requested"


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


def map_call_state(state: str) -> Optional[CallState]:
    return _CALL_STATES.get((state or "").strip().lower())


class BriefingSessionManager:
    def __init__(
        self,
        store: RecordStore,
        registry: SessionRegistry,
        ledger: WorkflowStepLedger,
        channel: ChannelClient,
        broker: EphemeralRoomBroker,
        generation: GenerationClient,
        notifier: RecordNotifier,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._registry = registry
        self._ledger = ledger
        self._channel = channel
        self._broker = broker
        self._generation = generation
        self._notifier = notifier
        self._settings = settings
        self._clock = clock
        broker.on_teardown(self.handle_room_teardown)

    # lookups

    def get(self, session_id: str) -> Optional[BriefingSession]:
        session = self._registry.sessions.get(session_id)
        if session is not None:
            return session
        doc = self._store.get(SESSIONS, session_id)
        if doc is None:
            return None
        session = BriefingSession.model_validate(doc)
        self._registry.track_session(session)
        return session

    def require(self, session_id: str) -> BriefingSession:
        session = self.get(session_id)
        if session is None:
            raise NotFoundError("session", session_id)
        return session

    def active_session_for(self, address: str) -> Optional[BriefingSession]:
        session = self._registry.active_session_for(address)
        if session is not None:
            return session
        candidates = [
            BriefingSession.model_validate(doc)
            for doc in self._store.query(SESSIONS, channelAddress=address)
        ]
        candidates = [s for s in candidates if s.status in ACTIVE_SESSION_STATUSES]
        if not candidates:
            return None
        session = max(candidates, key=lambda s: s.createdAt)
        self._registry.track_session(session)
        return session

    def session_for_call(self, call_id: str) -> Optional[BriefingSession]:
        session = self._registry.session_for_call(call_id)
        if session is not None:
            return session
        docs = self._store.query(SESSIONS, callId=call_id)
        if not docs:
            return None
        session = BriefingSession.model_validate(docs[0])
        self._registry.track_session(session)
        return session

    def context_for(self, session_id: str) -> Optional[BriefingContext]:
        doc = self._store.get(BRIEFING_CONTEXTS, _context_id(session_id))
        return BriefingContext.model_validate(doc) if doc else None

    # plumbing

    def _log_step(self, session_id: str, step: str, status: StepStatus, payload: Optional[Dict[str, Any]] = None) -> None:
        try:
            self._ledger.append(session_id, step, status, payload)
        except ExternalServiceError as exc:
            # Status lives on the session record; a lost audit entry is not fatal.
            log_error(session_id, "ledger:append_failed", step=step, error=str(exc))

    def _once(self, session: BriefingSession, step: str, effect: Callable[[], Any]) -> bool:
        """Run ``effect`` unless the ledger already has ``step`` completed."""
        if self._ledger.has_completed(session.id, step):
            log_info(session.id, "session:side_effect_skipped", step=step)
            return False
        self._log_step(session.id, step, StepStatus.STARTED)
        try:
            effect()
        except ExternalServiceError as exc:
            log_warning(session.id, "session:side_effect_failed", step=step, error=str(exc))
            self._log_step(session.id, step, StepStatus.FAILED, {"error": exc.code})
            return False
        self._log_step(session.id, step, StepStatus.COMPLETED)
        return True

    def _send(self, session: BriefingSession, step: str, template: str, **values: Any) -> bool:
        body = messages.render(template, session.locale, short_id=short_id(session.id), **values)
        return self._once(session, step, lambda: self._channel.send_message(session.channelAddress, body))

    def _save(self, session: BriefingSession, updated: BriefingSession) -> bool:
        expected = {"status": session.status.value, "revision": session.revision}
        if not self._store.replace_if(SESSIONS, session.id, expected, updated.to_document()):
            return False
        self._registry.track_session(updated)
        return True

    def _reload(self, session_id: str) -> Optional[BriefingSession]:
        doc = self._store.get(SESSIONS, session_id)
        if doc is None:
            return None
        session = BriefingSession.model_validate(doc)
        self._registry.track_session(session)
        return session

    def _update(self, session: BriefingSession, **changes: Any) -> Outcome[BriefingSession]:
        """Persist field changes that keep the current status."""
        updated = session.model_copy(update={**changes, "updatedAt": self._clock()})
        if not self._save(session, updated):
            current = self._reload(session.id) or session
            return Outcome.refused(
                ConflictError("session changed concurrently", current_status=current.status.value), current
            )
        return Outcome.applied(updated)

    def _transition(
        self,
        session: BriefingSession,
        target: SessionStatus,
        payload: Optional[Dict[str, Any]] = None,
        **changes: Any,
    ) -> Outcome[BriefingSession]:
        if not can_transition(session.status, target):
            log_info(session.id, "session:transition_refused", current=session.status.value, target=target.value)
            return Outcome.refused(
                ConflictError(
                    f"cannot move session from {session.status.value} to {target.value}",
                    current_status=session.status.value,
                ),
                session,
            )
        updated = session.model_copy(
            update={**changes, "status": target, "revision": session.revision + 1, "updatedAt": self._clock()}
        )
        if not self._save(session, updated):
            current = self._reload(session.id) or session
            log_info(session.id, "session:guard_rejected", expected=session.status.value, current=current.status.value)
            return Outcome.refused(
                ConflictError("session changed concurrently", current_status=current.status.value), current
            )
        step_payload = {"from": session.status.value, "revision": updated.revision}
        step_payload.update(payload or {})
        self._log_step(session.id, target.value, StepStatus.COMPLETED, step_payload)
        log_info(session.id, f"session:{target.value}", previous=session.status.value)
        if target.is_terminal:
            self._on_terminal(updated)
        return Outcome.applied(updated)

    def _on_terminal(self, session: BriefingSession) -> None:
        if session.roomId:
            self._broker.teardown(session.roomId, f"session_{session.status.value}")
        self._notifier.notify(
            "briefing_session",
            session.id,
            session.status.value,
            self._clock(),
            {"reason": session.failureReason} if session.failureReason else None,
        )

    # creation and scheduling

    def create(
        self,
        address: str,
        artifact_ref: str,
        owner_ref: Optional[str] = None,
        locale: Optional[str] = None,
    ) -> Outcome[BriefingSession]:
        existing = self.active_session_for(address)
        if existing is not None:
            return Outcome.refused(
                ConflictError("an active session already exists", current_status=existing.status.value), existing
            )
        now = self._clock()
        session = BriefingSession(
            id=new_id("session"),
            channelAddress=address,
            ownerRef=owner_ref,
            artifactRef=artifact_ref,
            locale=messages.normalize_locale(locale or self._settings.defaultLocale),
            createdAt=now,
            updatedAt=now,
        )
        self._store.put(SESSIONS, session.to_document())
        self._registry.track_session(session)
        self._log_step(session.id, SessionStatus.PENDING.value, StepStatus.COMPLETED,
                       {"address": mask_address(address), "artifactRef": artifact_ref})
        log_info(session.id, "session:created", address=mask_address(address))
        self._send(session, "scheduling_prompt#0", "scheduling_prompt")
        return Outcome.applied(session)

    def handle_scheduling_reply(self, session: BriefingSession, text: str) -> Outcome[BriefingSession]:
        if session.status not in AWAITING_REPLY_STATUSES:
            return Outcome.refused(
                ConflictError("session is not waiting for a scheduling reply", current_status=session.status.value),
                session,
            )
        now = self._clock()
        parsed = time_parser.parse(text, now, self._settings.timezone)
        self._record_response(session, text, parsed)
        locale = parsed.locale or session.locale

        if parsed.intent == ScheduleIntent.TIME_REQUESTED:
            outcome = self._update(session, locale=locale)
            current = outcome.value or session
            body = messages.render("ask_for_time", current.locale, short_id=short_id(current.id))
            self._deliver(current, body)
            return outcome

        outcome = self._transition(
            session,
            SessionStatus.SCHEDULED,
            {"intent": parsed.intent.value, "label": parsed.label, "scheduledTime": parsed.scheduledTime.isoformat()},
            scheduledTime=parsed.scheduledTime,
            locale=locale,
        )
        if not outcome.changed:
            return outcome
        scheduled = outcome.value
        step = f"confirmation_sent#{scheduled.revision}"
        if parsed.intent == ScheduleIntent.IMMEDIATE:
            self._send(scheduled, step, "scheduled_immediate")
        else:
            local = parsed.scheduledTime.astimezone(self._settings.timezone)
            self._send(scheduled, step, "scheduled", time=local.strftime("%H:%M"))
        return outcome

    def _record_response(self, session: BriefingSession, text: str, parsed: time_parser.ScheduleParse) -> None:
        response = SchedulingResponse(
            id=new_id("reply"),
            sessionId=session.id,
            maskedAddress=mask_address(session.channelAddress),
            rawText=text or "",
            intent=parsed.intent,
            parsedTime=parsed.scheduledTime,
            label=parsed.label,
            createdAt=self._clock(),
        )
        self._store.put(SCHEDULING_RESPONSES, response.to_document())
        log_info(session.id, "session:reply_parsed", intent=parsed.intent.value, label=parsed.label)

    def responses_for(self, session_id: str) -> List[SchedulingResponse]:
        replies = [
            SchedulingResponse.model_validate(doc)
            for doc in self._store.query(SCHEDULING_RESPONSES, sessionId=session_id)
        ]
        return sorted(replies, key=lambda r: r.createdAt)

    def _deliver(self, session: BriefingSession, body: str) -> None:
        """Direct reply to an inbound message; failures are logged only."""
        try:
            self._channel.send_message(session.channelAddress, body)
        except ExternalServiceError as exc:
            log_warning(session.id, "session:reply_failed", error=str(exc))

    def reschedule(self, session: BriefingSession, when: Optional[str] = None) -> Outcome[BriefingSession]:
        """Move a scheduled call. With ``when`` the new time is applied at once."""
        if session.status in AWAITING_REPLY_STATUSES:
            if when:
                return self.handle_scheduling_reply(session, when)
            self._deliver(session, messages.render("scheduling_prompt", session.locale, short_id=short_id(session.id)))
            return Outcome.unchanged(session)

        room_id = session.roomId
        outcome = self._transition(
            session,
            SessionStatus.RESCHEDULED,
            {"previousTime": session.scheduledTime.isoformat() if session.scheduledTime else None},
            scheduledTime=None,
            callId=None,
            callPlacedAt=None,
            roomId=None,
        )
        if not outcome.changed:
            return outcome
        rescheduled = outcome.value
        if room_id:
            self._broker.teardown(room_id, "rescheduled")
        if when:
            return self.handle_scheduling_reply(rescheduled, when)
        self._send(rescheduled, f"scheduling_prompt#{rescheduled.revision}", "scheduling_prompt")
        return outcome

    def cancel(self, session: BriefingSession, reason: str = "cancelled_by_contributor",
               notify: bool = True) -> Outcome[BriefingSession]:
        outcome = self._transition(session, SessionStatus.CANCELLED, {"reason": reason}, failureReason=reason)
        if outcome.changed and notify:
            self._send(outcome.value, "cancel_notice", "cancelled")
        return outcome

    # calls

    def _voice_url(self, session: BriefingSession, room_id: str) -> str:
        base = self._settings.voiceAgentUrl or self._settings.callback_url("voice-agent")
        return f"{base}?{urlencode({'sessionId': session.id, 'roomId': room_id})}"

    def place_call(self, session: BriefingSession) -> Outcome[BriefingSession]:
        """Allocate a room and ring the contributor. Never retried on failure."""
        if session.status != SessionStatus.SCHEDULED:
            return Outcome.refused(
                ConflictError("only scheduled sessions can be called", current_status=session.status.value), session
            )
        step = f"call_placed#{session.revision}"
        if session.callPlacedAt is not None or self._ledger.has_completed(session.id, step):
            return Outcome.unchanged(session)

        self._log_step(session.id, step, StepStatus.STARTED)
        grant = self._broker.create_room(session.id)
        try:
            call_id = self._channel.place_call(
                session.channelAddress,
                self._voice_url(session, grant.roomId),
                status_callback_url=self._settings.callback_url("call-status"),
                timeout_seconds=self._settings.callRingTimeoutSeconds,
            )
        except ExternalServiceError as exc:
            log_error(session.id, "session:call_failed", error=str(exc))
            self._log_step(session.id, step, StepStatus.FAILED, {"error": exc.code})
            failed = self.fail(session.model_copy(update={"roomId": grant.roomId}), "call_placement_failed")
            if not failed.changed:
                self._broker.teardown(grant.roomId, "call_placement_failed")
            return Outcome(value=failed.value, error=exc, changed=failed.changed)

        outcome = self._update(session, callId=call_id, callPlacedAt=self._clock(), roomId=grant.roomId)
        if not outcome.ok:
            return outcome
        self._log_step(session.id, step, StepStatus.COMPLETED, {"callId": call_id, "roomId": grant.roomId})
        self._send(outcome.value, "pre_call_notice", "pre_call")
        return outcome

    def pre_notify(self, session: BriefingSession) -> Outcome[BriefingSession]:
        if session.status.is_terminal:
            return Outcome.refused(
                ConflictError("session already finished", current_status=session.status.value), session
            )
        sent = self._send(session, "pre_call_notice", "pre_call")
        return Outcome(value=session, changed=sent)

    def dispatch_due_calls(self, now: Optional[datetime] = None) -> List[str]:
        """Place calls for scheduled sessions whose time has come."""
        now = now or self._clock()
        placed = []
        for session in list(self._registry.active_sessions()):
            if session.status != SessionStatus.SCHEDULED or session.callPlacedAt is not None:
                continue
            if session.scheduledTime is None or session.scheduledTime > now:
                continue
            outcome = self.place_call(session)
            if outcome.changed and outcome.value.status == SessionStatus.SCHEDULED:
                placed.append(session.id)
        self._retry_generation(now)
        return placed

    def handle_call_status(self, call_id: str, state: str, duration: Optional[int] = None) -> Outcome[BriefingSession]:
        mapped = map_call_state(state)
        if mapped is None:
            return Outcome.refused(ValidationError(f"unknown call state '{state}'"))
        session = self.session_for_call(call_id)
        if session is None:
            return Outcome.refused(NotFoundError("call", call_id))
        log_info(session.id, "session:call_status", state=state, duration=duration)

        if mapped == CallState.PROGRESS:
            self._touch_room(session)
            return Outcome.unchanged(session)

        if mapped == CallState.ANSWERED:
            if session.status == SessionStatus.IN_PROGRESS:
                return Outcome.unchanged(session)
            outcome = self._transition(session, SessionStatus.IN_PROGRESS, {"callId": call_id},
                                       actualStartTime=self._clock())
            if outcome.changed:
                self._admit_agent(outcome.value)
            return outcome

        if mapped == CallState.FAILED:
            self._release_agent(session)
            if session.status == SessionStatus.FAILED:
                return Outcome.unchanged(session)
            return self.fail(session, f"call_{state.strip().lower().replace('-', '_')}")

        # Call ended normally; the agent is off the line either way.
        self._release_agent(session)
        if session.status == SessionStatus.SCHEDULED:
            return self.fail(session, "call_not_answered")
        if session.status != SessionStatus.IN_PROGRESS:
            return Outcome.unchanged(session)
        if session.callEndedAt is None:
            outcome = self._update(session, callEndedAt=self._clock())
            if not outcome.ok:
                return outcome
            session = outcome.value
        if self.context_for(session.id) is None:
            log_info(session.id, "session:awaiting_context")
            return Outcome.unchanged(session)
        return self._complete(session)

    def _admit_agent(self, session: BriefingSession) -> None:
        room = self._broker.get_room(session.roomId) if session.roomId else None
        if room is None or not room.hostCredential:
            return
        try:
            self._broker.join(room.id, AGENT_IDENTITY, room.hostCredential)
        except AuthError as exc:
            log_warning(session.id, "session:agent_join_failed", roomId=room.id, error=str(exc))

    def _release_agent(self, session: BriefingSession) -> None:
        if session.roomId:
            self._broker.leave(session.roomId, AGENT_IDENTITY)

    def _touch_room(self, session: BriefingSession) -> bool:
        room = self._broker.get_room(session.roomId) if session.roomId else None
        if room is None:
            return False
        self._broker.touch(room.id)
        return True

    def record_activity(self, session: BriefingSession) -> Outcome[BriefingSession]:
        """Voice agent heartbeat; keeps the call's room inside its idle timeout."""
        if session.status.is_terminal:
            return Outcome.refused(
                ConflictError("session already finished", current_status=session.status.value), session
            )
        if not self._touch_room(session):
            return Outcome.refused(NotFoundError("room", session.roomId or session.id), session)
        return Outcome.unchanged(session)

    # briefing context and completion

    def save_context(self, session: BriefingSession, fields: Dict[str, Any]) -> Outcome[BriefingContext]:
        """Store the briefing narrative; at most one per session."""
        existing = self.context_for(session.id)
        if existing is not None:
            return Outcome.unchanged(existing)
        if session.status != SessionStatus.IN_PROGRESS:
            return Outcome.refused(
                ConflictError("context can only be captured during the call", current_status=session.status.value)
            )
        values = {k: v for k, v in (fields or {}).items() if k in CONTEXT_FIELDS and v is not None}
        try:
            context = BriefingContext(id=_context_id(session.id), sessionId=session.id,
                                      createdAt=self._clock(), **values)
        except ValueError as exc:
            return Outcome.refused(ValidationError("invalid briefing context", details={"error": str(exc)}))
        self._store.put(BRIEFING_CONTEXTS, context.to_document())
        self._touch_room(session)
        self._log_step(session.id, "context_saved", StepStatus.COMPLETED,
                       {"fields": sorted(k for k in values if k != "transcript")})
        return Outcome.applied(context)

    def complete_briefing(self, session: BriefingSession, fields: Dict[str, Any]) -> Outcome[BriefingSession]:
        """Completion callback: context captured and the call is over."""
        if session.status == SessionStatus.COMPLETED:
            return Outcome.unchanged(session)
        saved = self.save_context(session, fields)
        if not saved.ok:
            return Outcome.refused(saved.error, session)
        if session.callEndedAt is None:
            ended = self._update(session, callEndedAt=self._clock())
            if not ended.ok:
                return ended
            session = ended.value
        return self._complete(session)

    def _complete(self, session: BriefingSession) -> Outcome[BriefingSession]:
        outcome = self._transition(session, SessionStatus.COMPLETED)
        if not outcome.changed:
            return outcome
        completed = outcome.value
        self._request_generation(completed)
        self._send(completed, "briefing_complete_notice", "briefing_complete")
        return outcome

    def _request_generation(self, session: BriefingSession) -> bool:
        context = self.context_for(session.id)
        if context is None:
            log_error(session.id, "session:context_missing")
            return False
        return self._once(session, GENERATION_STEP,
                          lambda: self._generation.request_generation(session, context))

    def _retry_generation(self, now: datetime) -> None:
        """Re-request generation for recently completed sessions that never got it.

        Completed sessions are not cached, so this reads the store: one query for
        completed sessions and one for the sessions already requested.
        """
        cutoff = now - timedelta(hours=self._settings.stalePendingHours)
        requested = self._ledger.sessions_with_completed(GENERATION_STEP)
        for doc in self._store.query(SESSIONS, status=SessionStatus.COMPLETED.value):
            session = BriefingSession.model_validate(doc)
            if session.id in requested or session.updatedAt < cutoff:
                continue
            self._request_generation(session)

    # failure paths

    def fail(self, session: BriefingSession, reason: str) -> Outcome[BriefingSession]:
        outcome = self._transition(session, SessionStatus.FAILED, {"reason": reason}, failureReason=reason)
        if outcome.changed:
            self._send(outcome.value, "failure_notice", "session_failed")
        return outcome

    def handle_room_teardown(self, room: EphemeralRoom, reason: str) -> None:
        for session in self._registry.sessions_in_room(room.id):
            if not session.status.is_terminal:
                self.fail(session, f"room_{reason}")

    def sweep_stale(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Cancel abandoned sessions and fail calls that never resolved.

        Acts only on records past a threshold, so overlapping ticks are harmless.
        """
        now = now or self._clock()
        reply_cutoff = now - timedelta(hours=self._settings.stalePendingHours)
        call_cutoff = now - timedelta(minutes=self._settings.maxCallMinutes)
        ring_cutoff = now - timedelta(seconds=self._settings.callRingTimeoutSeconds)
        counts = {"cancelled": 0, "failed": 0}
        for session in list(self._registry.active_sessions()):
            if session.status in AWAITING_REPLY_STATUSES and session.updatedAt <= reply_cutoff:
                if self.cancel(session, "no_reply", notify=False).changed:
                    counts["cancelled"] += 1
            elif session.status == SessionStatus.IN_PROGRESS and (session.actualStartTime or session.updatedAt) <= call_cutoff:
                if self.fail(session, "call_timeout").changed:
                    counts["failed"] += 1
            elif (
                session.status == SessionStatus.SCHEDULED
                and session.callPlacedAt is not None
                and session.callPlacedAt <= ring_cutoff
            ):
                if self.fail(session, "ring_timeout").changed:
                    counts["failed"] += 1
        if counts["cancelled"] or counts["failed"]:
            log_info(None, "session:stale_sweep", **counts)
        return counts


def _context_id(session_id: str) -> str:
    return f"context_{session_id}"
