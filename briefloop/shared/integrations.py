"""Downstream collaborators: generation queue, publish queue, system of record."""
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import requests
from azure.core.exceptions import AzureError
from azure.storage.queue import QueueClient

from briefloop.shared.logging_utils import info as log_info, warning as log_warning
from briefloop.shared.queue_client import get_queue_client
from briefloop.specs.common.errors import ExternalServiceError
from briefloop.specs.models.domain import ApprovalWorkflow, BriefingContext, BriefingSession
from briefloop.specs.models.queue import GenerationTask, PublishTask, RevisionTask

QueueFactory = Callable[[str], QueueClient]


class _QueueSender:
    def __init__(self, queue_name: str, conn_str: Optional[str], factory: Optional[QueueFactory] = None) -> None:
        self.queue_name = queue_name
        self._conn_str = conn_str
        self._factory = factory

    def _client(self) -> QueueClient:
        if self._factory is not None:
            return self._factory(self.queue_name)
        return get_queue_client(self.queue_name, self._conn_str)

    def _send(self, trace_id: str, payload: str) -> None:
        try:
            self._client().send_message(payload)
        except AzureError as exc:
            raise ExternalServiceError("queue", f"enqueue to {self.queue_name} failed: {exc}") from exc
        log_info(trace_id, "queue:enqueued", queue=self.queue_name)


class GenerationClient(_QueueSender):
    """Asks the external generation service for an artifact (or a revision)."""

    def __init__(self, queue_name: str, conn_str: Optional[str], callback_url: Optional[str] = None,
                 factory: Optional[QueueFactory] = None) -> None:
        super().__init__(queue_name, conn_str, factory)
        self._callback_url = callback_url

    def request_generation(self, session: BriefingSession, context: BriefingContext) -> None:
        task = GenerationTask(
            sessionId=session.id,
            ownerRef=session.ownerRef,
            artifactRef=session.artifactRef,
            context=context.model_dump(mode="json", exclude={"id", "sessionId", "createdAt"}),
            callbackUrl=self._callback_url,
        )
        self._send(session.id, task.model_dump_json())

    def request_revision(self, workflow: ApprovalWorkflow, notes: str) -> None:
        task = RevisionTask(
            sessionId=workflow.ledger_key,
            ownerRef=workflow.ownerRef,
            workflowId=workflow.id,
            artifactId=workflow.artifactId,
            editNotes=list(workflow.editNotes) or [notes],
            callbackUrl=self._callback_url,
        )
        self._send(workflow.id, task.model_dump_json())


class ArtifactPublisher(_QueueSender):
    def publish(self, workflow: ApprovalWorkflow) -> None:
        task = PublishTask(
            idempotencyKey=workflow.id,
            workflowId=workflow.id,
            sessionId=workflow.sessionId,
            ownerRef=workflow.ownerRef,
            artifactId=workflow.artifactId,
            platforms=list(workflow.artifact.platforms),
        )
        self._send(workflow.id, task.model_dump_json())


class RecordNotifier:
    """Fire-and-forget notification of terminal transitions.

    Never raises: failures are logged and the primary transition stands.
    """

    def __init__(self, url: Optional[str], token: Optional[str] = None, *,
                 http: Optional[requests.Session] = None, timeout: float = 5.0) -> None:
        self._url = url
        self._token = token
        self._http = http or requests.Session()
        self._timeout = timeout

    def notify(self, record_type: str, record_id: str, status: str, at: datetime,
               extra: Optional[Dict[str, Any]] = None) -> bool:
        if not self._url:
            return False
        body = {"type": record_type, "id": record_id, "status": status, "timestamp": at.isoformat()}
        body.update(extra or {})
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            resp = self._http.post(self._url, json=body, headers=headers, timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            log_warning(record_id, "notifier:failed", status=status, error=str(exc))
            return False
        log_info(record_id, "notifier:sent", status=status)
        return True
