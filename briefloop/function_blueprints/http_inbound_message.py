from time import perf_counter

import azure.functions as func
from pydantic import ValidationError as PydanticValidationError

from briefloop.shared.http_utils import (
    error_response,
    json_response,
    request_params,
    twiml_response,
    validation_failure,
)
from briefloop.shared.logging_utils import error as log_error, info as log_info, mask_address
from briefloop.shared.services import get_services
from briefloop.specs.common.errors import BriefloopError
from briefloop.specs.models.http import ActionResponse, InboundMessage


bp = func.Blueprint()


def parse_inbound(params: dict) -> InboundMessage:
    """Accept the provider's form fields (From, Body, NumMedia, MediaUrlN) or our JSON shape."""
    if "From" in params:
        try:
            count = int(params.get("NumMedia") or 0)
        except ValueError:
            count = 0
        media = [params.get(f"MediaUrl{i}") for i in range(count)]
        return InboundMessage.model_validate(
            {
                "from": params.get("From"),
                "body": params.get("Body") or "",
                "attachments": [m for m in media if m],
                "messageId": params.get("MessageSid"),
            }
        )
    return InboundMessage.model_validate(params)


def handle_inbound(req: func.HttpRequest) -> func.HttpResponse:
    start = perf_counter()
    services = get_services()
    params = request_params(req)
    is_form = "From" in params

    try:
        if is_form:
            services.gateway.verify_provider_signature(req.url, params, req.headers.get("X-Twilio-Signature"))
        message = parse_inbound(params)
    except PydanticValidationError as exc:
        # Malformed messages are dropped without a reply.
        log_error(None, "inbound:invalid_message", error=str(exc))
        return error_response(validation_failure(exc))
    except BriefloopError as exc:
        return error_response(exc)

    try:
        action = services.router.route(message.sender, message.body, message.attachments)
    except BriefloopError as exc:
        log_error(None, "inbound:route_failed", address=mask_address(message.sender), error=str(exc))
        return error_response(exc)

    duration_ms = int((perf_counter() - start) * 1000)
    log_info(action.sessionId or action.workflowId, "inbound:routed", kind=action.kind,
             address=mask_address(message.sender), durationMs=duration_ms)
    if is_form:
        return twiml_response()
    resp = ActionResponse(
        accepted=action.errorCode is None,
        kind=action.kind,
        sessionId=action.sessionId,
        workflowId=action.workflowId,
        status=action.status,
    )
    return json_response(resp)


@bp.function_name(name="inbound_message")
@bp.route(route="inbound-message", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def inbound_message(req: func.HttpRequest) -> func.HttpResponse:
    return handle_inbound(req)
