from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


ActionKind = Literal[
    "dropped",
    "session_created",
    "session_exists",
    "scheduling_reply",
    "approval_reply",
    "command",
    "start_over",
    "help",
]


class Action(BaseModel):
    """What the router did with one inbound message."""

    kind: ActionKind
    sessionId: Optional[str] = None
    workflowId: Optional[str] = None
    status: Optional[str] = None
    replies: List[str] = Field(default_factory=list)
    errorCode: Optional[str] = None
