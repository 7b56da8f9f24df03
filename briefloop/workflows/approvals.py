"""
Approval phase for a generated artifact.

    pending ──APPROVE──▶ approved
    pending ──REJECT───▶ rejected
    pending ──EDIT─────▶ editing ──APPROVE / REJECT──▶ approved / rejected
    pending | editing ──TTL──▶ expired

Approved, rejected and expired workflows are immutable. On APPROVE the
workflow leaves the open set before the publish task is enqueued, so a
duplicate delivery of the same reply finds nothing to approve.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from briefloop.shared.channels import ChannelClient
from briefloop.shared.config import Settings
from briefloop.shared.integrations import ArtifactPublisher, GenerationClient, RecordNotifier
from briefloop.shared.ledger import WorkflowStepLedger
from briefloop.shared.logging_utils import (
    error as log_error,
    info as log_info,
    mask_address,
    warning as log_warning,
)
from briefloop.shared.record_store import APPROVAL_WORKFLOWS, RecordStore
from briefloop.shared.registry import SessionRegistry
from briefloop.shared.state_common import utc_now
from briefloop.specs.commands import parse_approval_token
from briefloop.specs.common.enums import (
    OPEN_APPROVAL_STATUSES,
    ApprovalStatus,
    ApprovalToken,
    StepStatus,
)
from briefloop.specs.common.errors import (
    ConflictError,
    ExpiredError,
    ExternalServiceError,
    NotFoundError,
)
from briefloop.specs.common.ids import new_id, short_id
from briefloop.specs.common.results import Outcome
from briefloop.specs.models.domain import ApprovalWorkflow, ArtifactPreview
from briefloop.specs.models.http import PostingResult
from briefloop.workflows import messages

_TRANSITIONS: Dict[ApprovalStatus, frozenset] = {
    ApprovalStatus.PENDING: frozenset(
        {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, ApprovalStatus.EDITING, ApprovalStatus.EXPIRED}
    ),
    ApprovalStatus.EDITING: frozenset(
        {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, ApprovalStatus.EXPIRED}
    ),
}


class ApprovalWorkflowManager:
    def __init__(
        self,
        store: RecordStore,
        registry: SessionRegistry,
        ledger: WorkflowStepLedger,
        channel: ChannelClient,
        publisher: ArtifactPublisher,
        generation: GenerationClient,
        notifier: RecordNotifier,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._registry = registry
        self._ledger = ledger
        self._channel = channel
        self._publisher = publisher
        self._generation = generation
        self._notifier = notifier
        self._settings = settings
        self._clock = clock
        self.ttl = timedelta(hours=settings.approvalTtlHours)

    def get(self, workflow_id: str) -> Optional[ApprovalWorkflow]:
        workflow = self._registry.workflows.get(workflow_id)
        if workflow is not None:
            return workflow
        doc = self._store.get(APPROVAL_WORKFLOWS, workflow_id)
        if doc is None:
            return None
        workflow = ApprovalWorkflow.model_validate(doc)
        self._registry.track_workflow(workflow)
        return workflow

    def require(self, workflow_id: str) -> ApprovalWorkflow:
        workflow = self.get(workflow_id)
        if workflow is None:
            raise NotFoundError("workflow", workflow_id)
        return workflow

    def open_workflow_for(self, address: str) -> Optional[ApprovalWorkflow]:
        return self._registry.open_workflow_for(address)

    def latest_for(self, address: str) -> Optional[ApprovalWorkflow]:
        """Most recent workflow for the address, whatever its status."""
        docs = self._store.query(APPROVAL_WORKFLOWS, channelAddress=address)
        if not docs:
            return None
        return max((ApprovalWorkflow.model_validate(d) for d in docs), key=lambda w: w.createdAt)

    def _log_step(self, workflow: ApprovalWorkflow, step: str, status: StepStatus,
                  payload: Optional[Dict[str, Any]] = None) -> None:
        data = {"workflowId": workflow.id}
        data.update(payload or {})
        try:
            self._ledger.append(workflow.ledger_key, step, status, data)
        except ExternalServiceError as exc:
            log_error(workflow.id, "ledger:append_failed", step=step, error=str(exc))

    def _once(self, workflow: ApprovalWorkflow, step: str, effect: Callable[[], Any]) -> bool:
        step = f"{step}:{workflow.id}"
        if self._ledger.has_completed(workflow.ledger_key, step):
            log_info(workflow.id, "approval:side_effect_skipped", step=step)
            return False
        self._log_step(workflow, step, StepStatus.STARTED)
        try:
            effect()
        except ExternalServiceError as exc:
            log_warning(workflow.id, "approval:side_effect_failed", step=step, error=str(exc))
            self._log_step(workflow, step, StepStatus.FAILED, {"error": exc.code})
            raise
        self._log_step(workflow, step, StepStatus.COMPLETED)
        return True

    def _reply(self, workflow: ApprovalWorkflow, template: str, **values: Any) -> None:
        body = messages.render(template, workflow.locale, short_id=short_id(workflow.ledger_key), **values)
        try:
            self._channel.send_message(workflow.channelAddress, body)
        except ExternalServiceError as exc:
            log_warning(workflow.id, "approval:reply_failed", template=template, error=str(exc))

    def _transition(self, workflow: ApprovalWorkflow, target: ApprovalStatus,
                    payload: Optional[Dict[str, Any]] = None, **changes: Any) -> Outcome[ApprovalWorkflow]:
        if target not in _TRANSITIONS.get(workflow.status, frozenset()):
            return Outcome.refused(
                ConflictError(
                    f"cannot move workflow from {workflow.status.value} to {target.value}",
                    current_status=workflow.status.value,
                ),
                workflow,
            )
        now = self._clock()
        updated = workflow.model_copy(update={**changes, "status": target, "updatedAt": now})
        if target.is_terminal:
            updated.decidedAt = now
        if not self._store.replace_if(APPROVAL_WORKFLOWS, workflow.id, {"status": workflow.status.value},
                                      updated.to_document()):
            current = self._reload(workflow.id) or workflow
            log_info(workflow.id, "approval:guard_rejected", expected=workflow.status.value,
                     current=current.status.value)
            return Outcome.refused(
                ConflictError("workflow changed concurrently", current_status=current.status.value), current
            )
        self._registry.track_workflow(updated)
        step_payload = {"from": workflow.status.value}
        step_payload.update(payload or {})
        self._log_step(updated, f"approval_{target.value}", StepStatus.COMPLETED, step_payload)
        log_info(workflow.id, f"approval:{target.value}", previous=workflow.status.value)
        if target.is_terminal:
            self._notifier.notify("approval_workflow", workflow.id, target.value, now,
                                  {"artifactId": workflow.artifactId, "sessionId": workflow.sessionId})
        return Outcome.applied(updated)

    def _reload(self, workflow_id: str) -> Optional[ApprovalWorkflow]:
        doc = self._store.get(APPROVAL_WORKFLOWS, workflow_id)
        if doc is None:
            return None
        workflow = ApprovalWorkflow.model_validate(doc)
        self._registry.track_workflow(workflow)
        return workflow

    def create(
        self,
        channel_address: str,
        artifact_id: str,
        artifact: Optional[ArtifactPreview] = None,
        owner_ref: Optional[str] = None,
        session_id: Optional[str] = None,
        locale: str = messages.DEFAULT_LOCALE,
    ) -> Outcome[ApprovalWorkflow]:
        """Open a workflow for a freshly generated artifact and send the prompt.

        Redelivery of the same artifact returns the existing workflow.
        """
        for doc in self._store.query(APPROVAL_WORKFLOWS, artifactId=artifact_id):
            existing = ApprovalWorkflow.model_validate(doc)
            self._registry.track_workflow(existing)
            return Outcome.unchanged(existing)

        now = self._clock()
        workflow = ApprovalWorkflow(
            id=new_id("approval"),
            ownerRef=owner_ref,
            channelAddress=channel_address,
            sessionId=session_id,
            artifactId=artifact_id,
            artifact=artifact or ArtifactPreview(),
            locale=messages.normalize_locale(locale),
            createdAt=now,
            expiresAt=now + self.ttl,
            updatedAt=now,
        )
        self._store.put(APPROVAL_WORKFLOWS, workflow.to_document())
        self._registry.track_workflow(workflow)
        self._log_step(workflow, "approval_pending", StepStatus.COMPLETED,
                       {"artifactId": artifact_id, "address": mask_address(channel_address)})
        log_info(workflow.id, "approval:created", artifactId=artifact_id, sessionId=session_id)
        body = messages.render(
            "content_ready",
            workflow.locale,
            preview=messages.caption_preview(workflow.artifact.caption),
            platforms=messages.platform_list(workflow.artifact.platforms, workflow.locale),
            short_id=short_id(workflow.ledger_key),
        )
        try:
            self._once(workflow, "approval_prompt", lambda: self._channel.send_message(channel_address, body))
        except ExternalServiceError:
            # Prompt delivery failed; the workflow stays pending and STATUS can resend it.
            pass
        return Outcome.applied(workflow)

    def is_expired(self, workflow: ApprovalWorkflow, now: Optional[datetime] = None) -> bool:
        return (now or self._clock()) >= workflow.expiresAt

    def handle_response(self, workflow: ApprovalWorkflow, text: str) -> Outcome[ApprovalWorkflow]:
        if workflow.status not in OPEN_APPROVAL_STATUSES:
            return Outcome.refused(
                ConflictError(f"workflow already {workflow.status.value}", current_status=workflow.status.value),
                workflow,
            )
        if self.is_expired(workflow):
            expired = self._expire(workflow)
            self._reply(expired.value or workflow, "expired")
            return Outcome(value=expired.value, error=ExpiredError("workflow", workflow.id), changed=expired.changed)

        token = parse_approval_token(text)
        if token == ApprovalToken.APPROVE:
            return self.approve(workflow)
        if token == ApprovalToken.REJECT:
            return self.reject(workflow)
        if token == ApprovalToken.VIEW:
            url = self._settings.content_view_url(workflow.artifactId)
            self._reply(workflow, "view", url=url)
            return Outcome.unchanged(workflow)
        if token == ApprovalToken.EDIT:
            if workflow.status == ApprovalStatus.EDITING:
                self._reply(workflow, "editing")
                return Outcome.unchanged(workflow)
            outcome = self._transition(workflow, ApprovalStatus.EDITING)
            if outcome.changed:
                self._reply(outcome.value, "editing")
            return outcome

        if workflow.status == ApprovalStatus.EDITING and (text or "").strip():
            return self.add_edit_note(workflow, text.strip())
        log_info(workflow.id, "approval:unrecognized_reply")
        self._reply(workflow, "approval_reprompt")
        return Outcome.unchanged(workflow)

    def remind(self, workflow: ApprovalWorkflow) -> Outcome[ApprovalWorkflow]:
        """Repeat the approval options without touching the workflow."""
        self._reply(workflow, "approval_reprompt")
        return Outcome.unchanged(workflow)

    def add_edit_note(self, workflow: ApprovalWorkflow, note: str) -> Outcome[ApprovalWorkflow]:
        updated = workflow.model_copy(
            update={"editNotes": [*workflow.editNotes, note], "updatedAt": self._clock()}
        )
        if not self._store.replace_if(APPROVAL_WORKFLOWS, workflow.id, {"status": workflow.status.value},
                                      updated.to_document()):
            current = self._reload(workflow.id) or workflow
            return Outcome.refused(
                ConflictError("workflow changed concurrently", current_status=current.status.value), current
            )
        self._registry.track_workflow(updated)
        self._log_step(updated, "edit_note", StepStatus.COMPLETED, {"length": len(note)})
        try:
            self._generation.request_revision(updated, note)
        except ExternalServiceError as exc:
            log_warning(workflow.id, "approval:revision_request_failed", error=str(exc))
        self._reply(updated, "edit_received")
        return Outcome.applied(updated)

    def approve(self, workflow: ApprovalWorkflow) -> Outcome[ApprovalWorkflow]:
        if not self._registry.release_workflow(workflow):
            return Outcome.refused(
                ConflictError("workflow is not awaiting approval", current_status=workflow.status.value), workflow
            )
        try:
            self._once(workflow, "publish", lambda: self._publisher.publish(workflow))
        except ExternalServiceError as exc:
            # Stays pending; the next inbound APPROVE retries the publish.
            self._registry.restore_workflow(workflow)
            self._reply(workflow, "publish_delayed")
            return Outcome.refused(exc, workflow)

        outcome = self._transition(workflow, ApprovalStatus.APPROVED)
        if outcome.changed:
            self._reply(outcome.value, "approved")
        else:
            log_warning(workflow.id, "approval:published_but_not_approved",
                        current=(outcome.value or workflow).status.value)
        return outcome

    def reject(self, workflow: ApprovalWorkflow) -> Outcome[ApprovalWorkflow]:
        outcome = self._transition(workflow, ApprovalStatus.REJECTED)
        if outcome.changed:
            self._reply(outcome.value, "rejected")
        return outcome

    def _expire(self, workflow: ApprovalWorkflow) -> Outcome[ApprovalWorkflow]:
        return self._transition(workflow, ApprovalStatus.EXPIRED, {"expiresAt": workflow.expiresAt.isoformat()})

    def sweep_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Expire open workflows past their TTL. The contributor is not notified."""
        now = now or self._clock()
        expired = []
        for workflow in list(self._registry.open_workflows()):
            if not self.is_expired(workflow, now):
                continue
            if self._expire(workflow).changed:
                expired.append(workflow.id)
        if expired:
            log_info(None, "approval:expiry_sweep", expired=len(expired))
        return expired

    def posting_complete(self, workflow: ApprovalWorkflow, results: List[PostingResult]) -> Outcome[ApprovalWorkflow]:
        if workflow.status != ApprovalStatus.APPROVED:
            return Outcome.refused(
                ConflictError("only approved content can be posted", current_status=workflow.status.value), workflow
            )
        platforms = [r.platform for r in results] or list(workflow.artifact.platforms)
        body = messages.render(
            "posting_complete",
            workflow.locale,
            platforms=messages.platform_list(platforms, workflow.locale),
            count=len(results),
            short_id=short_id(workflow.ledger_key),
        )
        try:
            sent = self._once(workflow, "posting_complete_notice",
                              lambda: self._channel.send_message(workflow.channelAddress, body))
        except ExternalServiceError as exc:
            return Outcome.refused(exc, workflow)
        return Outcome(value=workflow, changed=sent)
