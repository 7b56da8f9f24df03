"""
Authenticated entry point for asynchronous notifications from the call and
generation subsystems. A request that fails authentication never reaches a
manager; everything else is forwarded to the manager implied by its status.
"""
import hmac
from typing import Any, Dict, Mapping, Optional

from briefloop.shared.channels import verify_twilio_signature
from briefloop.shared.config import Settings
from briefloop.shared.logging_utils import info as log_info, warning as log_warning
from briefloop.specs.common.errors import AuthError, NotFoundError, ValidationError
from briefloop.specs.common.results import Outcome
from briefloop.specs.models.domain import ArtifactPreview
from briefloop.specs.models.http import (
    CallStatusEvent,
    CompletionCallback,
    ContentReadyRequest,
    PostingCompleteRequest,
    PostingResult,
    PreNotifyRequest,
    StartBriefingRequest,
)
from briefloop.workflows.approvals import ApprovalWorkflowManager
from briefloop.workflows.briefing_sessions import BriefingSessionManager

SECRET_HEADER = "x-callback-secret"

# Declared completion statuses and the phase they belong to.
SESSION_CALLBACK_STATUSES = frozenset({"completed", "briefing_completed", "failed", "cancelled"})
CONTENT_READY_STATUSES = frozenset({"content_ready", "generated"})
POSTED_STATUSES = frozenset({"posted", "posting_complete"})
# Voice agent heartbeats during a live call.
ACTIVITY_STATUSES = frozenset({"activity", "heartbeat"})


class ExternalCallbackGateway:
    def __init__(self, sessions: BriefingSessionManager, approvals: ApprovalWorkflowManager, settings: Settings) -> None:
        self._sessions = sessions
        self._approvals = approvals
        self._settings = settings

    # authentication

    def authenticate(self, headers: Mapping[str, str]) -> None:
        """Raise AuthError unless the request carries the shared callback secret."""
        expected = self._settings.callbackSharedSecret
        if not expected:
            log_warning(None, "callback:secret_not_configured")
            raise AuthError()
        lowered = {k.lower(): v for k, v in headers.items()}
        supplied = lowered.get(SECRET_HEADER)
        if not supplied:
            auth = lowered.get("authorization", "")
            if auth.lower().startswith("bearer "):
                supplied = auth[7:].strip()
        if not supplied or not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            log_warning(None, "callback:auth_rejected")
            raise AuthError()

    def verify_provider_signature(self, url: str, params: Mapping[str, str], signature: Optional[str]) -> None:
        """Check a provider webhook signature; skipped when no auth token is configured."""
        token = self._settings.twilioAuthToken
        if not token:
            log_warning(None, "callback:signature_check_skipped")
            return
        if not verify_twilio_signature(token, url, params, signature):
            log_warning(None, "callback:signature_rejected")
            raise AuthError("Provider signature mismatch")

    # routing

    def _session(self, session_id: str):
        session = self._sessions.get(session_id)
        if session is None:
            log_info(session_id, "callback:session_not_found")
        return session

    def pre_notify(self, req: PreNotifyRequest) -> Outcome:
        session = self._session(req.sessionId)
        if session is None:
            return Outcome.refused(NotFoundError("session", req.sessionId))
        return self._sessions.pre_notify(session)

    def start_briefing(self, req: StartBriefingRequest) -> Outcome:
        session = self._session(req.sessionId)
        if session is None:
            return Outcome.refused(NotFoundError("session", req.sessionId))
        return self._sessions.place_call(session)

    def call_status(self, event: CallStatusEvent) -> Outcome:
        return self._sessions.handle_call_status(event.callId, event.state, event.duration)

    def content_ready(self, req: ContentReadyRequest) -> Outcome:
        session = self._session(req.sessionId)
        if session is None:
            return Outcome.refused(NotFoundError("session", req.sessionId))
        return self._approvals.create(
            session.channelAddress,
            req.artifactId,
            req.preview,
            owner_ref=req.ownerRef or session.ownerRef,
            session_id=session.id,
            locale=session.locale,
        )

    def posting_complete(self, req: PostingCompleteRequest) -> Outcome:
        workflow = self._approvals.get(req.workflowId)
        if workflow is None:
            return Outcome.refused(NotFoundError("workflow", req.workflowId))
        return self._approvals.posting_complete(workflow, req.results)

    def completion(self, callback: CompletionCallback) -> Outcome:
        """Generic ``{sessionId, status, timestamp, payload}`` callback."""
        status = callback.status.strip().lower()
        payload: Dict[str, Any] = callback.payload or {}
        log_info(callback.sessionId, "callback:completion", status=status)

        if status in SESSION_CALLBACK_STATUSES:
            session = self._session(callback.sessionId)
            if session is None:
                return Outcome.refused(NotFoundError("session", callback.sessionId))
            if status in ("completed", "briefing_completed"):
                fields = payload.get("context") if isinstance(payload.get("context"), dict) else payload
                return self._sessions.complete_briefing(session, fields)
            if status == "failed":
                return self._sessions.fail(session, str(payload.get("reason") or "reported_failure"))
            return self._sessions.cancel(session, str(payload.get("reason") or "cancelled_by_callback"))

        if status in ACTIVITY_STATUSES:
            session = self._session(callback.sessionId)
            if session is None:
                return Outcome.refused(NotFoundError("session", callback.sessionId))
            return self._sessions.record_activity(session)

        if status in CONTENT_READY_STATUSES:
            artifact_id = payload.get("artifactId")
            if not artifact_id:
                return Outcome.refused(ValidationError("artifactId is required", details={"status": status}))
            preview = payload.get("preview") or {}
            return self.content_ready(
                ContentReadyRequest(
                    sessionId=callback.sessionId,
                    artifactId=artifact_id,
                    ownerRef=payload.get("ownerRef"),
                    preview=ArtifactPreview.model_validate(preview),
                )
            )

        if status in POSTED_STATUSES:
            workflow_id = payload.get("workflowId")
            if not workflow_id:
                return Outcome.refused(ValidationError("workflowId is required", details={"status": status}))
            results = [PostingResult.model_validate(r) for r in payload.get("results") or []]
            return self.posting_complete(PostingCompleteRequest(workflowId=workflow_id, results=results))

        return Outcome.refused(ValidationError(f"unknown callback status '{callback.status}'"))
