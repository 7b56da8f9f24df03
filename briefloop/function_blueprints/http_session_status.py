import azure.functions as func

from briefloop.shared.http_utils import error_response, json_response
from briefloop.shared.logging_utils import info as log_info
from briefloop.shared.services import get_services
from briefloop.specs.common.errors import NotFoundError, ValidationError
from briefloop.specs.models.http import StatusResponse


bp = func.Blueprint()


def handle_session_status(req: func.HttpRequest) -> func.HttpResponse:
    record_id = req.route_params.get("id") or req.params.get("id")
    if not record_id:
        return error_response(ValidationError("Missing id"))

    services = get_services()
    log_info(record_id, "status:request")
    session = services.sessions.get(record_id)
    if session is not None:
        record, ledger_key = session.to_document(), session.id
    else:
        workflow = services.approvals.get(record_id)
        if workflow is None:
            log_info(record_id, "status:not_found")
            return error_response(NotFoundError("session", record_id))
        record, ledger_key = workflow.to_document(), workflow.ledger_key

    # Full addresses never leave the service.
    record.pop("channelAddress", None)
    steps = [step.to_document() for step in services.ledger.query(ledger_key)]
    log_info(record_id, "status:found", status=record.get("status"), steps=len(steps))
    return json_response(StatusResponse(record=record, steps=steps))


@bp.function_name(name="session_status")
@bp.route(route="sessions/{id}", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def session_status(req: func.HttpRequest) -> func.HttpResponse:
    return handle_session_status(req)
