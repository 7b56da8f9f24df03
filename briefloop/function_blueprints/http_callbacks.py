from typing import Callable, Type

import azure.functions as func
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from briefloop.shared.http_utils import error_response, outcome_response, read_json, validation_failure
from briefloop.shared.logging_utils import error as log_error, info as log_info
from briefloop.shared.services import get_services
from briefloop.specs.common.errors import BriefloopError
from briefloop.specs.common.results import Outcome
from briefloop.specs.models.http import (
    CompletionCallback,
    ContentReadyRequest,
    PostingCompleteRequest,
    PreNotifyRequest,
    StartBriefingRequest,
)
from briefloop.workflows.callbacks import ExternalCallbackGateway


bp = func.Blueprint()


def handle_callback(
    req: func.HttpRequest,
    name: str,
    model: Type[BaseModel],
    action: Callable[[ExternalCallbackGateway, BaseModel], Outcome],
) -> func.HttpResponse:
    gateway = get_services().gateway
    try:
        # Authentication happens before the body is even parsed.
        gateway.authenticate(req.headers)
        payload = model.model_validate(read_json(req))
        log_info(getattr(payload, "sessionId", None), f"callback:{name}")
        outcome = action(gateway, payload)
    except PydanticValidationError as exc:
        log_error(None, f"callback:{name}:invalid", error=str(exc))
        return error_response(validation_failure(exc))
    except BriefloopError as exc:
        log_error(None, f"callback:{name}:rejected", code=exc.code, error=str(exc))
        return error_response(exc)
    return outcome_response(outcome, name)


@bp.function_name(name="callback_pre_notify")
@bp.route(route="callbacks/pre-notify", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def callback_pre_notify(req: func.HttpRequest) -> func.HttpResponse:
    return handle_callback(req, "pre_notify", PreNotifyRequest, lambda g, p: g.pre_notify(p))


@bp.function_name(name="callback_start_briefing")
@bp.route(route="callbacks/start-briefing", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def callback_start_briefing(req: func.HttpRequest) -> func.HttpResponse:
    return handle_callback(req, "start_briefing", StartBriefingRequest, lambda g, p: g.start_briefing(p))


@bp.function_name(name="callback_content_ready")
@bp.route(route="callbacks/content-ready", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def callback_content_ready(req: func.HttpRequest) -> func.HttpResponse:
    return handle_callback(req, "content_ready", ContentReadyRequest, lambda g, p: g.content_ready(p))


@bp.function_name(name="callback_posting_complete")
@bp.route(route="callbacks/posting-complete", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def callback_posting_complete(req: func.HttpRequest) -> func.HttpResponse:
    return handle_callback(req, "posting_complete", PostingCompleteRequest, lambda g, p: g.posting_complete(p))


@bp.function_name(name="callback_completion")
@bp.route(route="callbacks/completion", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def callback_completion(req: func.HttpRequest) -> func.HttpResponse:
    return handle_callback(req, "completion", CompletionCallback, lambda g, p: g.completion(p))
