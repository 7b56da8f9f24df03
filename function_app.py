import os
import logging
import azure.functions as func

app = func.FunctionApp()


def _configure_logging() -> None:
    lvl = (os.getenv("AZURE_SDK_LOG_LEVEL") or "").upper()
    if lvl:
        level = getattr(logging, lvl, logging.INFO)
        logging.getLogger("azure").setLevel(level)
        logging.getLogger("azure.cosmos").setLevel(level)
    logging.getLogger("briefloop").setLevel(logging.INFO)


_configure_logging()

from briefloop.function_blueprints.http_inbound_message import bp as inbound_message_bp  # noqa: E402
from briefloop.function_blueprints.http_call_status import bp as call_status_bp  # noqa: E402
from briefloop.function_blueprints.http_callbacks import bp as callbacks_bp  # noqa: E402
from briefloop.function_blueprints.http_session_status import bp as session_status_bp  # noqa: E402
from briefloop.function_blueprints.timer_sweeps import bp as timer_sweeps_bp  # noqa: E402

app.register_functions(inbound_message_bp)
app.register_functions(call_status_bp)
app.register_functions(callbacks_bp)
app.register_functions(session_status_bp)
app.register_functions(timer_sweeps_bp)
