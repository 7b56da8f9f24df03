from __future__ import annotations

from typing import Dict, Type

from pydantic import BaseModel

from .http import (
    InboundMessage,
    CallStatusEvent,
    CompletionCallback,
    PreNotifyRequest,
    StartBriefingRequest,
    ContentReadyRequest,
    PostingCompleteRequest,
    ActionResponse,
    ErrorResponse,
    StatusResponse,
)
from .domain import (
    BriefingSession,
    SchedulingResponse,
    BriefingContext,
    WorkflowStep,
    EphemeralRoom,
    ApprovalWorkflow,
)
from .queue import GenerationTask, RevisionTask, PublishTask
from .actions import Action


# Registry mapping output schema filenames to models for generation
SCHEMA_MODELS: Dict[str, Type[BaseModel]] = {
    "inbound.message.schema.json": InboundMessage,
    "call.status.event.schema.json": CallStatusEvent,
    "callback.completion.schema.json": CompletionCallback,
    "callback.pre_notify.schema.json": PreNotifyRequest,
    "callback.start_briefing.schema.json": StartBriefingRequest,
    "callback.content_ready.schema.json": ContentReadyRequest,
    "callback.posting_complete.schema.json": PostingCompleteRequest,
    "action.response.schema.json": ActionResponse,
    "error.response.schema.json": ErrorResponse,
    "status.response.schema.json": StatusResponse,
    "briefing.session.schema.json": BriefingSession,
    "scheduling.response.schema.json": SchedulingResponse,
    "briefing.context.schema.json": BriefingContext,
    "workflow.step.schema.json": WorkflowStep,
    "ephemeral.room.schema.json": EphemeralRoom,
    "approval.workflow.schema.json": ApprovalWorkflow,
    "queue.generation.schema.json": GenerationTask,
    "queue.revision.schema.json": RevisionTask,
    "queue.publish.schema.json": PublishTask,
    "router.action.schema.json": Action,
}

__all__ = [
    "SCHEMA_MODELS",
    "InboundMessage",
    "CallStatusEvent",
    "CompletionCallback",
    "PreNotifyRequest",
    "StartBriefingRequest",
    "ContentReadyRequest",
    "PostingCompleteRequest",
    "ActionResponse",
    "ErrorResponse",
    "StatusResponse",
    "BriefingSession",
    "SchedulingResponse",
    "BriefingContext",
    "WorkflowStep",
    "EphemeralRoom",
    "ApprovalWorkflow",
    "GenerationTask",
    "RevisionTask",
    "PublishTask",
    "Action",
]
