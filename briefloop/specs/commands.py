"""
Inbound text commands as a closed tagged union.

``parse_command`` is total: every text maps to exactly one member, with
``UnknownCommand`` as the catch-all. Dispatchers branch on the concrete type and
end with ``assert_never`` so a new member without a handler fails type checking.
"""
from __future__ import annotations

import re
import unicodedata
from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

from briefloop.specs.common.enums import ApprovalToken


class HelpCommand(BaseModel):
    kind: Literal["help"] = "help"


class StatusCommand(BaseModel):
    kind: Literal["status"] = "status"


class CancelCommand(BaseModel):
    kind: Literal["cancel"] = "cancel"


class RescheduleCommand(BaseModel):
    kind: Literal["reschedule"] = "reschedule"
    when: Optional[str] = None


class StopCommand(BaseModel):
    kind: Literal["stop"] = "stop"


class ApprovalReplyCommand(BaseModel):
    """An approval token arriving when no workflow is open for the sender."""

    kind: Literal["approval_reply"] = "approval_reply"
    token: ApprovalToken


class UnknownCommand(BaseModel):
    kind: Literal["unknown"] = "unknown"
    text: str = ""


Command = Annotated[
    Union[
        HelpCommand,
        StatusCommand,
        CancelCommand,
        RescheduleCommand,
        StopCommand,
        ApprovalReplyCommand,
        UnknownCommand,
    ],
    Field(discriminator="kind"),
]


_TOKEN_ALIASES: Dict[str, ApprovalToken] = {
    "APPROVE": ApprovalToken.APPROVE,
    "APPROVED": ApprovalToken.APPROVE,
    "YES": ApprovalToken.APPROVE,
    "Y": ApprovalToken.APPROVE,
    "OK": ApprovalToken.APPROVE,
    "✅": ApprovalToken.APPROVE,
    "\U0001F44D": ApprovalToken.APPROVE,
    "EDIT": ApprovalToken.EDIT,
    "✏": ApprovalToken.EDIT,
    "\U0001F4DD": ApprovalToken.EDIT,
    "REJECT": ApprovalToken.REJECT,
    "NO": ApprovalToken.REJECT,
    "N": ApprovalToken.REJECT,
    "❌": ApprovalToken.REJECT,
    "\U0001F44E": ApprovalToken.REJECT,
    "VIEW": ApprovalToken.VIEW,
    "\U0001F440": ApprovalToken.VIEW,
    "\U0001F4F1": ApprovalToken.VIEW,
}

# Emoji presentation selectors and trailing punctuation are not significant.
_NOISE = re.compile(r"[\ufe0e\ufe0f\s!.?]+")

_KEYWORDS = {
    "HELP": HelpCommand,
    "?": HelpCommand,
    "INFO": HelpCommand,
    "STATUS": StatusCommand,
    "CANCEL": CancelCommand,
    "STOP": StopCommand,
    "UNSUBSCRIBE": StopCommand,
}


def _normalize(text: str) -> str:
    return unicodedata.normalize("NFKC", text or "").strip()


def parse_approval_token(text: Optional[str]) -> Optional[ApprovalToken]:
    """Map a reply onto one of the canonical approval tokens, or None."""
    cleaned = _NOISE.sub("", _normalize(text)).upper()
    if not cleaned:
        return None
    return _TOKEN_ALIASES.get(cleaned)


def parse_command(text: Optional[str]) -> Command:
    normalized = _normalize(text or "")
    head, _, rest = normalized.partition(" ")
    keyword = head.upper().rstrip("!.")

    if keyword == "RESCHEDULE":
        return RescheduleCommand(when=rest.strip() or None)
    factory = _KEYWORDS.get(keyword) if not rest.strip() else None
    if factory is not None:
        return factory()
    token = parse_approval_token(normalized)
    if token is not None:
        return ApprovalReplyCommand(token=token)
    return UnknownCommand(text=normalized)
