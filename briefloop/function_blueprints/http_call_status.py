import azure.functions as func
from pydantic import ValidationError as PydanticValidationError

from briefloop.shared.http_utils import error_response, outcome_response, request_params, validation_failure
from briefloop.shared.logging_utils import error as log_error
from briefloop.shared.services import get_services
from briefloop.specs.common.errors import BriefloopError
from briefloop.specs.models.http import CallStatusEvent


bp = func.Blueprint()


def parse_call_status(params: dict) -> CallStatusEvent:
    if "CallSid" in params:
        duration = params.get("CallDuration")
        return CallStatusEvent(
            callId=params.get("CallSid") or "",
            state=params.get("CallStatus") or "",
            duration=int(duration) if duration and str(duration).isdigit() else None,
        )
    return CallStatusEvent.model_validate(params)


def handle_call_status(req: func.HttpRequest) -> func.HttpResponse:
    services = get_services()
    params = request_params(req)
    try:
        if "CallSid" in params:
            services.gateway.verify_provider_signature(req.url, params, req.headers.get("X-Twilio-Signature"))
        event = parse_call_status(params)
        outcome = services.gateway.call_status(event)
    except PydanticValidationError as exc:
        log_error(None, "call_status:invalid_event", error=str(exc))
        return error_response(validation_failure(exc))
    except BriefloopError as exc:
        return error_response(exc)
    return outcome_response(outcome, "call_status", conflict_ok=True)


@bp.function_name(name="call_status")
@bp.route(route="call-status", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def call_status(req: func.HttpRequest) -> func.HttpResponse:
    return handle_call_status(req)
