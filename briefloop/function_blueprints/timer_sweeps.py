import azure.functions as func

from briefloop.shared.logging_utils import info as log_info
from briefloop.shared.services import get_services


bp = func.Blueprint()

DUE_CALL_SCHEDULE = "0 */1 * * * *"    # every minute
SWEEP_SCHEDULE = "0 */5 * * * *"       # every 5 minutes


def _log_past_due(timer: func.TimerRequest, name: str) -> None:
    if timer.past_due:
        log_info(None, "sweep:past_due", sweep=name)


@bp.function_name(name="dispatch_due_calls")
@bp.timer_trigger(arg_name="timer", schedule=DUE_CALL_SCHEDULE, run_on_startup=False)
def dispatch_due_calls(timer: func.TimerRequest) -> None:
    _log_past_due(timer, "due_calls")
    placed = get_services().sessions.dispatch_due_calls()
    log_info(None, "sweep:due_calls", placed=len(placed))


@bp.function_name(name="sweep_idle_rooms")
@bp.timer_trigger(arg_name="timer", schedule=SWEEP_SCHEDULE, run_on_startup=False)
def sweep_idle_rooms(timer: func.TimerRequest) -> None:
    _log_past_due(timer, "idle_rooms")
    torn_down = get_services().broker.sweep_idle()
    log_info(None, "sweep:idle_rooms", tornDown=len(torn_down))


@bp.function_name(name="sweep_expired_approvals")
@bp.timer_trigger(arg_name="timer", schedule=SWEEP_SCHEDULE, run_on_startup=False)
def sweep_expired_approvals(timer: func.TimerRequest) -> None:
    _log_past_due(timer, "expired_approvals")
    expired = get_services().approvals.sweep_expired()
    log_info(None, "sweep:expired_approvals", expired=len(expired))


@bp.function_name(name="sweep_stale_sessions")
@bp.timer_trigger(arg_name="timer", schedule=SWEEP_SCHEDULE, run_on_startup=False)
def sweep_stale_sessions(timer: func.TimerRequest) -> None:
    _log_past_due(timer, "stale_sessions")
    counts = get_services().sessions.sweep_stale()
    log_info(None, "sweep:stale_sessions", **counts)
