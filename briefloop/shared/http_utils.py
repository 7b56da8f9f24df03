import json
from typing import Any, Dict, Mapping, Optional

import azure.functions as func
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from briefloop.specs.common.errors import BriefloopError, ConflictError, ValidationError
from briefloop.specs.common.results import Outcome
from briefloop.specs.models.domain import ApprovalWorkflow, BriefingContext, BriefingSession
from briefloop.specs.models.http import ActionResponse, ErrorResponse

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'
_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def json_response(model: BaseModel, status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        body=model.model_dump_json(),
        mimetype="application/json",
        status_code=status_code,
    )


def twiml_response() -> func.HttpResponse:
    return func.HttpResponse(body=EMPTY_TWIML, mimetype="application/xml", status_code=200)


def error_response(exc: BriefloopError) -> func.HttpResponse:
    err = ErrorResponse(message=str(exc), errorCode=exc.code, details=exc.details or None)
    return json_response(err, exc.http_status)


def validation_failure(exc: PydanticValidationError) -> ValidationError:
    return ValidationError("Invalid request", details={"errors": json.loads(exc.json())})


def outcome_response(outcome: Outcome, kind: str, *, conflict_ok: bool = False) -> func.HttpResponse:
    """Map a manager outcome onto an HTTP response.

    ``conflict_ok`` answers 200 to a refused transition, for provider webhooks
    that would otherwise keep redelivering.
    """
    if outcome.error is not None and not (conflict_ok and isinstance(outcome.error, ConflictError)):
        return error_response(outcome.error)
    value = outcome.value
    session_id = workflow_id = None
    if isinstance(value, BriefingSession):
        session_id = value.id
    elif isinstance(value, ApprovalWorkflow):
        session_id, workflow_id = value.sessionId, value.id
    elif isinstance(value, BriefingContext):
        session_id = value.sessionId
    body = ActionResponse(
        accepted=outcome.ok,
        kind=kind,
        sessionId=session_id,
        workflowId=workflow_id,
        status=_status(value),
    )
    return json_response(body)


def request_params(req: func.HttpRequest) -> Dict[str, str]:
    """Form fields of a provider webhook, or a flat JSON object."""
    content_type = (req.headers.get("content-type") or "").lower()
    if content_type.startswith(_FORM_TYPES):
        form = req.form
        return {k: form.get(k) for k in form.keys()}
    try:
        data = req.get_json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def read_json(req: func.HttpRequest) -> Mapping[str, Any]:
    try:
        data = req.get_json()
    except ValueError as exc:
        raise ValidationError("Invalid JSON body") from exc
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def _status(value: Any) -> Optional[str]:
    status = getattr(value, "status", None)
    return getattr(status, "value", status)
