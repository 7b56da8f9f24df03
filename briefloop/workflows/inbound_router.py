"""
Routes one inbound text message to exactly one handler.

Order:
  1. a photo with no active session starts a new session;
  2. control keywords (HELP, STATUS, CANCEL, RESCHEDULE, STOP) run as commands,
     except under ``phase_first``; HELP with an open workflow repeats the
     approval options;
  3. an approval token with no open workflow answers a duplicate or late reply;
  4. an open approval workflow or a session awaiting a scheduling reply takes
     the message, in the order set by ``ROUTING_PRIORITY``;
  5. anything left goes through the command table.
"""
from typing import Callable, List, Optional, Sequence

from typing_extensions import assert_never

from briefloop.shared.channels import ChannelClient
from briefloop.shared.config import Settings
from briefloop.shared.logging_utils import info as log_info, mask_address, warning as log_warning
from briefloop.specs.commands import (
    ApprovalReplyCommand,
    CancelCommand,
    Command,
    HelpCommand,
    RescheduleCommand,
    StatusCommand,
    StopCommand,
    UnknownCommand,
    parse_command,
)
from briefloop.specs.common.enums import (
    AWAITING_REPLY_STATUSES,
    ApprovalStatus,
    ApprovalToken,
    RoutingPriority,
)
from briefloop.specs.common.errors import ExternalServiceError
from briefloop.specs.common.ids import short_id
from briefloop.specs.common.results import Outcome
from briefloop.specs.models.actions import Action
from briefloop.specs.models.domain import BriefingSession
from briefloop.workflows import messages
from briefloop.workflows.approvals import ApprovalWorkflowManager
from briefloop.workflows.briefing_sessions import BriefingSessionManager

_CONTROL_COMMANDS = (HelpCommand, StatusCommand, CancelCommand, RescheduleCommand, StopCommand)


class InboundRouter:
    def __init__(
        self,
        sessions: BriefingSessionManager,
        approvals: ApprovalWorkflowManager,
        channel: ChannelClient,
        settings: Settings,
    ) -> None:
        self._sessions = sessions
        self._approvals = approvals
        self._channel = channel
        self._settings = settings

    def _reply(self, address: str, body: str) -> List[str]:
        try:
            self._channel.send_message(address, body)
        except ExternalServiceError as exc:
            log_warning(None, "router:reply_failed", address=mask_address(address), error=str(exc))
        return [body]

    def route(self, channel_address: str, body: Optional[str], attachments: Sequence[str] = ()) -> Action:
        address = (channel_address or "").strip()
        if not address:
            log_warning(None, "router:dropped", reason="missing_sender")
            return Action(kind="dropped", errorCode="VALIDATION_ERROR")
        text = (body or "").strip()
        media = [a for a in attachments or () if a]

        active = self._sessions.active_session_for(address)
        if media:
            return self._start_session(address, active, media[0])

        command = parse_command(text)
        if isinstance(command, _CONTROL_COMMANDS) and self._settings.routingPriority != RoutingPriority.PHASE_FIRST:
            return self._dispatch(address, command, active)
        if isinstance(command, ApprovalReplyCommand):
            notice = self._late_approval_notice(address, command)
            if notice is not None:
                return notice

        for handler in self._priority_handlers():
            action = handler(address, text, active)
            if action is not None:
                return action
        return self._dispatch(address, command, active)

    def _start_session(self, address: str, active: Optional[BriefingSession], artifact_ref: str) -> Action:
        if active is not None:
            body = messages.render("session_exists", active.locale, status=active.status.value,
                                   short_id=short_id(active.id))
            log_info(active.id, "router:session_exists", address=mask_address(address))
            return Action(kind="session_exists", sessionId=active.id, status=active.status.value,
                          replies=self._reply(address, body), errorCode="CONFLICT")
        outcome = self._sessions.create(address, artifact_ref)
        return self._action("session_created", outcome, session_id=outcome.value.id if outcome.value else None)

    def _priority_handlers(self) -> List[Callable[[str, str, Optional[BriefingSession]], Optional[Action]]]:
        if self._settings.routingPriority == RoutingPriority.SCHEDULING_FIRST:
            return [self._to_scheduling, self._to_approval]
        # approval_first and phase_first both let a pending workflow speak first.
        return [self._to_approval, self._to_scheduling]

    def _to_approval(self, address: str, text: str, active: Optional[BriefingSession]) -> Optional[Action]:
        workflow = self._approvals.open_workflow_for(address)
        if workflow is None:
            return None
        log_info(workflow.id, "router:approval_reply", address=mask_address(address))
        outcome = self._approvals.handle_response(workflow, text)
        return self._action("approval_reply", outcome, workflow_id=workflow.id)

    def _to_scheduling(self, address: str, text: str, active: Optional[BriefingSession]) -> Optional[Action]:
        if active is None or active.status not in AWAITING_REPLY_STATUSES:
            return None
        log_info(active.id, "router:scheduling_reply", address=mask_address(address))
        outcome = self._sessions.handle_scheduling_reply(active, text)
        return self._action("scheduling_reply", outcome, session_id=active.id)

    @staticmethod
    def _action(kind, outcome: Outcome, session_id: Optional[str] = None,
                workflow_id: Optional[str] = None) -> Action:
        value = outcome.value
        return Action(
            kind=kind,
            sessionId=session_id,
            workflowId=workflow_id,
            status=value.status.value if value is not None else None,
            errorCode=outcome.error.code if outcome.error else None,
        )

    def _locale(self, active: Optional[BriefingSession]) -> str:
        return active.locale if active is not None else self._settings.defaultLocale

    def _start_over(self, address: str, active: Optional[BriefingSession]) -> Action:
        body = messages.render("start_over", self._locale(active))
        return Action(kind="start_over", replies=self._reply(address, body), errorCode="NOT_FOUND")

    def _dispatch(self, address: str, command: Command, active: Optional[BriefingSession]) -> Action:
        locale = self._locale(active)
        if isinstance(command, HelpCommand):
            workflow = self._approvals.open_workflow_for(address)
            if workflow is not None:
                return self._action("approval_reply", self._approvals.remind(workflow), workflow_id=workflow.id)
            return Action(kind="help", replies=self._reply(address, messages.render("help", locale)))
        elif isinstance(command, StatusCommand):
            return Action(kind="command", sessionId=active.id if active else None,
                          replies=self._reply(address, self._status_text(address, active)))
        elif isinstance(command, CancelCommand):
            if active is None:
                return self._start_over(address, active)
            return self._action("command", self._sessions.cancel(active), session_id=active.id)
        elif isinstance(command, RescheduleCommand):
            if active is None:
                body = messages.render("reschedule_unavailable", locale)
                return Action(kind="start_over", replies=self._reply(address, body), errorCode="NOT_FOUND")
            return self._action("command", self._sessions.reschedule(active, command.when), session_id=active.id)
        elif isinstance(command, StopCommand):
            session_id = None
            if active is not None:
                session_id = active.id
                self._sessions.cancel(active, "stopped_by_contributor", notify=False)
            return Action(kind="command", sessionId=session_id,
                          replies=self._reply(address, messages.render("stopped", locale)))
        elif isinstance(command, ApprovalReplyCommand):
            return self._late_approval_notice(address, command) or self._start_over(address, active)
        elif isinstance(command, UnknownCommand):
            return Action(kind="help", replies=self._reply(address, messages.render("unknown_command", locale)))
        else:
            assert_never(command)

    def _late_approval_notice(self, address: str, command: ApprovalReplyCommand) -> Optional[Action]:
        """Answer an approval token aimed at a workflow that is already decided or expired."""
        if self._approvals.open_workflow_for(address) is not None:
            return None
        latest = self._approvals.latest_for(address)
        if latest is None:
            return None
        if latest.status == ApprovalStatus.APPROVED and command.token == ApprovalToken.APPROVE:
            log_info(latest.id, "router:duplicate_approval", address=mask_address(address))
            body = messages.render("already_approved", latest.locale)
            return Action(kind="approval_reply", workflowId=latest.id, status=latest.status.value,
                          replies=self._reply(address, body), errorCode="CONFLICT")
        if latest.status == ApprovalStatus.EXPIRED:
            body = messages.render("expired", latest.locale)
            return Action(kind="approval_reply", workflowId=latest.id, status=latest.status.value,
                          replies=self._reply(address, body), errorCode="EXPIRED")
        return None

    def _status_text(self, address: str, active: Optional[BriefingSession]) -> str:
        workflow = self._approvals.open_workflow_for(address)
        if workflow is not None:
            return messages.render("status_workflow", workflow.locale, short_id=short_id(workflow.ledger_key),
                                   status=workflow.status.value)
        if active is None:
            return messages.render("status_idle", self._settings.defaultLocale)
        when = ""
        if active.scheduledTime is not None:
            local = active.scheduledTime.astimezone(self._settings.timezone)
            when = f" @ {local.strftime('%H:%M')}"
        return messages.render("status_session", active.locale, short_id=short_id(active.id),
                               status=active.status.value, when=when)
