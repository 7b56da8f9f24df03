"""
Tests for the briefing session state machine.

Tests cover:
- Creation, the scheduling prompt and one active session per address
- Scheduling replies, including the "tell me the time" option
- Call placement, provider status events and completion
- Idempotent side effects under redelivery
- Cancellation, rescheduling and the stale-session sweep
"""
from datetime import timedelta

import pytest

from briefloop.shared.logging_utils import mask_address
from briefloop.specs.common.enums import ScheduleIntent, SessionStatus
from briefloop.specs.common.errors import ConflictError, ExternalServiceError, ValidationError
from briefloop.specs.common.ids import short_id
from briefloop.workflows.briefing_sessions import can_transition, map_call_state
from briefloop.workflows.rooms import AGENT_IDENTITY

from tests.conftest import ADDRESS, START


# =============================================================================
# Helpers
# =============================================================================

def schedule_now(sessions, session):
    return sessions.handle_scheduling_reply(session, "1").value


def place_due_call(sessions, clock, session):
    """Schedule for now, let the dispatcher ring, return the refreshed session."""
    schedule_now(sessions, session)
    clock.advance(minutes=2)
    sessions.dispatch_due_calls()
    return sessions.get(session.id)


def answer(sessions, clock, session):
    placed = place_due_call(sessions, clock, session)
    return sessions.handle_call_status(placed.callId, "in-progress").value


# =============================================================================
# Tests
# =============================================================================

class TestTransitionTable:
    """Tests for the static transition table."""

    def test_allowed_edges(self):
        assert can_transition(SessionStatus.PENDING, SessionStatus.SCHEDULED)
        assert can_transition(SessionStatus.RESCHEDULED, SessionStatus.SCHEDULED)
        assert can_transition(SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED)

    def test_terminal_states_have_no_exits(self):
        for terminal in (SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED):
            for target in SessionStatus:
                assert not can_transition(terminal, target)

    def test_pending_cannot_jump_to_completed(self):
        assert not can_transition(SessionStatus.PENDING, SessionStatus.COMPLETED)

    def test_provider_call_states(self):
        assert map_call_state("Ringing").value == "progress"
        assert map_call_state("in-progress").value == "answered"
        assert map_call_state("no-answer").value == "failed"
        assert map_call_state("teleported") is None


class TestCreate:
    """Tests for session creation."""

    def test_new_session_is_pending_and_prompted(self, new_session, channel):
        assert new_session.status == SessionStatus.PENDING
        assert new_session.revision == 0
        prompt = channel.bodies()[0]
        for option in ("1 - Now", "2 - In 30 minutes", "3 - In 1 hour", "4 - Tell me the time"):
            assert option in prompt
        assert f"Session: {short_id(new_session.id)}" in prompt

    def test_second_session_for_same_address_is_refused(self, sessions, new_session, channel):
        outcome = sessions.create(ADDRESS, "img://other")
        assert isinstance(outcome.error, ConflictError)
        assert outcome.value.id == new_session.id
        assert len(channel.messages) == 1

    def test_other_address_gets_its_own_session(self, sessions, new_session):
        other = sessions.create("+15559990000", "img://other").value
        assert other.id != new_session.id

    def test_address_is_masked_in_ledger(self, services, new_session):
        created = services.ledger.query(new_session.id)[0]
        assert created.step == "pending"
        assert created.payload["address"] == mask_address(ADDRESS)
        assert ADDRESS not in str(created.payload)

    def test_french_locale_prompt(self, sessions, channel):
        sessions.create("+33600000000", "img://fr", locale="fr-FR")
        assert "Répondez avec" in channel.bodies("+33600000000")[0]

    def test_prompt_failure_keeps_session(self, sessions, channel, services):
        channel.fail_messages = True
        session = sessions.create(ADDRESS, "img://abc").value
        assert session.status == SessionStatus.PENDING
        steps = [(s.step, s.status.value) for s in services.ledger.query(session.id)]
        assert ("scheduling_prompt#0", "failed") in steps


class TestSchedulingReply:
    """Tests for handle_scheduling_reply."""

    def test_reply_one_schedules_in_two_minutes(self, sessions, new_session, channel):
        outcome = sessions.handle_scheduling_reply(new_session, "1")
        session = outcome.value
        assert outcome.changed
        assert session.status == SessionStatus.SCHEDULED
        assert session.scheduledTime == START + timedelta(minutes=2)
        assert session.revision == 1
        assert "call you in 2 minutes" in channel.last

    def test_clock_time_confirmation(self, sessions, new_session, channel):
        session = sessions.handle_scheduling_reply(new_session, "15:30").value
        assert session.scheduledTime == START.replace(hour=15, minute=30)
        assert "15:30" in channel.last

    def test_reply_is_recorded_with_masked_address(self, sessions, new_session):
        sessions.handle_scheduling_reply(new_session, "2")
        replies = sessions.responses_for(new_session.id)
        assert len(replies) == 1
        assert replies[0].intent == ScheduleIntent.DELAY_30MIN
        assert replies[0].rawText == "2"
        assert replies[0].maskedAddress == mask_address(ADDRESS)

    def test_reply_four_asks_for_a_time_and_stays_pending(self, sessions, new_session, channel, clock):
        clock.advance(minutes=1)
        outcome = sessions.handle_scheduling_reply(new_session, "4")
        assert outcome.value.status == SessionStatus.PENDING
        assert outcome.value.updatedAt == clock.now
        assert "What time works for you?" in channel.last
        follow_up = sessions.handle_scheduling_reply(outcome.value, "3pm")
        assert follow_up.value.status == SessionStatus.SCHEDULED

    def test_french_reply_switches_locale(self, sessions, new_session, channel):
        session = sessions.handle_scheduling_reply(new_session, "maintenant").value
        assert session.locale == "fr"
        assert "Je vous appelle dans 2 minutes" in channel.last

    def test_reply_when_already_scheduled_is_refused(self, sessions, new_session, channel):
        scheduled = schedule_now(sessions, new_session)
        sent = len(channel.messages)
        outcome = sessions.handle_scheduling_reply(scheduled, "2")
        assert isinstance(outcome.error, ConflictError)
        assert sessions.get(new_session.id).scheduledTime == START + timedelta(minutes=2)
        assert len(channel.messages) == sent

    def test_stale_copy_loses_the_race(self, sessions, new_session, channel):
        schedule_now(sessions, new_session)
        # new_session still says "pending"; the stored record does not.
        outcome = sessions.cancel(new_session)
        assert isinstance(outcome.error, ConflictError)
        assert sessions.get(new_session.id).status == SessionStatus.SCHEDULED


class TestCalls:
    """Tests for call placement and provider status events."""

    def test_due_call_is_placed_once(self, sessions, new_session, channel, clock, services):
        session = place_due_call(sessions, clock, new_session)
        assert session.callId == "CA1"
        assert session.roomId is not None
        assert session.status == SessionStatus.SCHEDULED
        call = channel.calls[0]
        assert call["to"] == ADDRESS
        assert new_session.id in call["url"]
        assert call["statusCallback"] == "https://briefloop.test/api/call-status"
        assert "Calling you now" in channel.last
        assert services.broker.room_for_session(new_session.id).id == session.roomId

        assert sessions.dispatch_due_calls() == []
        assert sessions.place_call(sessions.get(new_session.id)).changed is False
        assert len(channel.calls) == 1

    def test_future_call_is_not_dispatched(self, sessions, new_session, channel):
        sessions.handle_scheduling_reply(new_session, "3")
        assert sessions.dispatch_due_calls() == []
        assert channel.calls == []

    def test_placement_failure_fails_session_with_apology(self, sessions, new_session, channel, clock, services):
        schedule_now(sessions, new_session)
        channel.fail_calls = True
        clock.advance(minutes=2)
        outcome = sessions.place_call(sessions.get(new_session.id))
        assert isinstance(outcome.error, ExternalServiceError)
        session = sessions.get(new_session.id)
        assert session.status == SessionStatus.FAILED
        assert session.failureReason == "call_placement_failed"
        assert "Sorry, we couldn't complete your briefing call" in channel.last
        assert services.broker.room_for_session(new_session.id) is None

    def test_answered_moves_to_in_progress_and_admits_agent(self, sessions, new_session, clock, services):
        session = answer(sessions, clock, new_session)
        assert session.status == SessionStatus.IN_PROGRESS
        assert session.actualStartTime == clock.now
        assert services.broker.get_room(session.roomId).participants == [AGENT_IDENTITY]

    def test_redelivered_answered_event_is_a_no_op(self, sessions, new_session, clock):
        session = answer(sessions, clock, new_session)
        again = sessions.handle_call_status(session.callId, "answered")
        assert again.ok and not again.changed
        assert sessions.get(session.id).revision == session.revision

    def test_ringing_touches_room(self, sessions, new_session, clock, services):
        session = place_due_call(sessions, clock, new_session)
        clock.advance(seconds=30)
        sessions.handle_call_status(session.callId, "ringing")
        assert services.broker.get_room(session.roomId).lastActivity == clock.now

    def test_silent_answered_call_is_reclaimed(self, sessions, new_session, clock, services):
        session = answer(sessions, clock, new_session)
        clock.advance(seconds=301)
        assert services.broker.sweep_idle() == [session.roomId]
        failed = sessions.get(session.id)
        assert failed.status == SessionStatus.FAILED
        assert failed.failureReason == "room_idle_timeout"

    def test_agent_activity_keeps_live_call_open(self, sessions, new_session, clock, services):
        session = answer(sessions, clock, new_session)
        for _ in range(3):
            clock.advance(seconds=200)
            assert sessions.record_activity(sessions.get(session.id)).ok
        assert services.broker.sweep_idle() == []
        assert sessions.get(session.id).status == SessionStatus.IN_PROGRESS

    def test_activity_for_finished_session_is_refused(self, sessions, new_session):
        cancelled = sessions.cancel(new_session).value
        assert isinstance(sessions.record_activity(cancelled).error, ConflictError)

    def test_activity_without_room_is_not_found(self, sessions, new_session):
        assert sessions.record_activity(new_session).error.code == "NOT_FOUND"

    def test_call_end_releases_agent(self, sessions, new_session, clock, services):
        session = answer(sessions, clock, new_session)
        sessions.handle_call_status(session.callId, "completed")
        assert services.broker.get_room(session.roomId).participants == []

    def test_provider_failure_releases_agent(self, sessions, new_session, clock, services):
        session = answer(sessions, clock, new_session)
        room_id = session.roomId
        sessions.handle_call_status(session.callId, "failed")
        assert services.broker.get_room(room_id) is None
        assert sessions.get(session.id).status == SessionStatus.FAILED

    def test_no_answer_fails_session(self, sessions, new_session, clock, channel):
        session = place_due_call(sessions, clock, new_session)
        outcome = sessions.handle_call_status(session.callId, "no-answer")
        assert outcome.value.status == SessionStatus.FAILED
        assert outcome.value.failureReason == "call_no_answer"
        sent = len(channel.messages)
        sessions.handle_call_status(session.callId, "no-answer")
        assert len(channel.messages) == sent

    def test_ended_before_answer_fails(self, sessions, new_session, clock):
        session = place_due_call(sessions, clock, new_session)
        outcome = sessions.handle_call_status(session.callId, "completed")
        assert outcome.value.failureReason == "call_not_answered"

    def test_unknown_call_and_state(self, sessions):
        assert isinstance(sessions.handle_call_status("CA404", "weird").error, ValidationError)
        assert sessions.handle_call_status("CA404", "answered").error.code == "NOT_FOUND"


class TestCompletion:
    """Tests for context capture and completion."""

    FIELDS = {"narrative": "Braised short rib for the winter menu", "audience": "regulars",
              "platformPreferences": ["instagram"], "unknownField": "dropped"}

    def test_completion_requests_generation_once(self, sessions, new_session, clock, channel, generation,
                                                 notifier, services):
        session = answer(sessions, clock, new_session)
        outcome = sessions.complete_briefing(session, self.FIELDS)
        assert outcome.value.status == SessionStatus.COMPLETED
        assert len(generation.requests) == 1
        assert generation.requests[0][1].narrative == self.FIELDS["narrative"]
        assert "Thanks for the briefing" in channel.last
        assert services.broker.get_room(session.roomId) is None
        assert ("briefing_session", session.id, "completed") in notifier.notifications

        sent = len(channel.messages)
        again = sessions.complete_briefing(sessions.get(session.id), self.FIELDS)
        assert again.ok and not again.changed
        assert len(generation.requests) == 1
        assert len(channel.messages) == sent

    def test_context_is_stored_once_without_unknown_fields(self, sessions, new_session, clock):
        session = answer(sessions, clock, new_session)
        sessions.complete_briefing(session, self.FIELDS)
        context = sessions.context_for(session.id)
        assert context.audience == "regulars"
        assert not hasattr(context, "unknownField")

    def test_call_end_before_context_waits(self, sessions, new_session, clock):
        session = answer(sessions, clock, new_session)
        ended = sessions.handle_call_status(session.callId, "completed")
        assert ended.value.status == SessionStatus.IN_PROGRESS
        assert ended.value.callEndedAt is not None
        done = sessions.complete_briefing(sessions.get(session.id), self.FIELDS)
        assert done.value.status == SessionStatus.COMPLETED

    def test_context_after_call_end_completes_on_end_event(self, sessions, new_session, clock):
        session = answer(sessions, clock, new_session)
        sessions.save_context(session, self.FIELDS)
        outcome = sessions.handle_call_status(session.callId, "completed")
        assert outcome.value.status == SessionStatus.COMPLETED

    def test_completion_of_pending_session_is_refused(self, sessions, new_session, generation):
        outcome = sessions.complete_briefing(new_session, self.FIELDS)
        assert isinstance(outcome.error, ConflictError)
        assert sessions.get(new_session.id).status == SessionStatus.PENDING
        assert generation.requests == []

    def test_failed_generation_request_is_retried_by_dispatcher(self, sessions, new_session, clock, generation):
        session = answer(sessions, clock, new_session)
        generation.fail = True
        sessions.complete_briefing(session, self.FIELDS)
        assert generation.requests == []
        generation.fail = False
        sessions.dispatch_due_calls()
        sessions.dispatch_due_calls()
        assert len(generation.requests) == 1


class TestCancelAndReschedule:
    """Tests for cancel and reschedule."""

    def test_cancel_tears_down_room(self, sessions, new_session, clock, channel, services):
        session = place_due_call(sessions, clock, new_session)
        outcome = sessions.cancel(session)
        assert outcome.value.status == SessionStatus.CANCELLED
        assert services.broker.get_room(session.roomId) is None
        assert "has been cancelled" in channel.last

    def test_cancel_twice_is_a_no_op(self, sessions, new_session, channel):
        sessions.cancel(new_session)
        sent = len(channel.messages)
        outcome = sessions.cancel(sessions.get(new_session.id))
        assert isinstance(outcome.error, ConflictError)
        assert len(channel.messages) == sent

    def test_cancel_frees_the_address(self, sessions, new_session):
        sessions.cancel(new_session)
        assert sessions.create(ADDRESS, "img://next").ok

    def test_reschedule_keeps_id_and_reprompts(self, sessions, new_session, clock, channel, services):
        session = place_due_call(sessions, clock, new_session)
        outcome = sessions.reschedule(session)
        rescheduled = outcome.value
        assert rescheduled.id == session.id
        assert rescheduled.status == SessionStatus.RESCHEDULED
        assert rescheduled.callId is None and rescheduled.roomId is None
        assert services.broker.get_room(session.roomId) is None
        assert "1 - Now" in channel.last

        again = sessions.handle_scheduling_reply(rescheduled, "2").value
        assert again.status == SessionStatus.SCHEDULED
        assert again.scheduledTime == clock.now + timedelta(minutes=30)
        assert again.id == session.id

    def test_reschedule_with_time_applies_it(self, sessions, new_session):
        scheduled = schedule_now(sessions, new_session)
        outcome = sessions.reschedule(scheduled, "15:30")
        assert outcome.value.status == SessionStatus.SCHEDULED
        assert outcome.value.scheduledTime == START.replace(hour=15, minute=30)

    def test_room_teardown_fails_live_session(self, sessions, new_session, clock, services):
        session = place_due_call(sessions, clock, new_session)
        clock.advance(seconds=301)
        services.broker.sweep_idle()
        failed = sessions.get(session.id)
        assert failed.status == SessionStatus.FAILED
        assert failed.failureReason == "room_idle_timeout"


class TestStaleSweep:
    """Tests for sweep_stale."""

    def test_unanswered_prompt_is_cancelled_silently(self, sessions, new_session, clock, channel):
        clock.advance(hours=25)
        assert sessions.sweep_stale() == {"cancelled": 1, "failed": 0}
        session = sessions.get(new_session.id)
        assert session.status == SessionStatus.CANCELLED
        assert session.failureReason == "no_reply"
        assert len(channel.messages) == 1

    def test_recent_session_is_left_alone(self, sessions, new_session, clock):
        clock.advance(hours=1)
        assert sessions.sweep_stale() == {"cancelled": 0, "failed": 0}

    def test_unanswered_ring_fails(self, sessions, new_session, clock):
        place_due_call(sessions, clock, new_session)
        clock.advance(seconds=61)
        assert sessions.sweep_stale()["failed"] == 1
        assert sessions.get(new_session.id).failureReason == "ring_timeout"

    def test_overlong_call_fails(self, sessions, new_session, clock):
        answer(sessions, clock, new_session)
        clock.advance(minutes=61)
        assert sessions.sweep_stale()["failed"] == 1
        assert sessions.get(new_session.id).failureReason == "call_timeout"
        assert sessions.sweep_stale() == {"cancelled": 0, "failed": 0}


@pytest.mark.parametrize("reply", ["1", "2", "3", "15:30", "gibberish"])
def test_every_reply_schedules_in_the_future(sessions, new_session, reply):
    session = sessions.handle_scheduling_reply(new_session, reply).value
    assert session.status == SessionStatus.SCHEDULED
    assert session.scheduledTime > START
