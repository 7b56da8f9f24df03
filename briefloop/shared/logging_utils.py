import logging
from typing import Any, Dict, Optional


_LOGGER = logging.getLogger("briefloop")

_KEEP_DIGITS = 4


def mask_address(address: Optional[str]) -> str:
    """Keep only the trailing digits of a channel address for logs and audit records."""
    if not address:
        return "missing"
    digits = "".join(ch for ch in address if ch.isdigit())
    tail = digits[-_KEEP_DIGITS:] if digits else address[-_KEEP_DIGITS:]
    return f"***{tail}"


def log(level: int, trace_id: Optional[str], message: str, **dimensions: Any) -> None:
    dims: Dict[str, Any] = {"traceId": trace_id} if trace_id else {}
    dims.update(dimensions)
    try:
        _LOGGER.log(level, message, extra={"custom_dimensions": dims})
    except Exception:
        # Fallback if extra/custom_dimensions not supported in the environment
        _LOGGER.log(level, f"{message} | {dims}")


def info(trace_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.INFO, trace_id, message, **dimensions)


def warning(trace_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.WARNING, trace_id, message, **dimensions)


def error(trace_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.ERROR, trace_id, message, **dimensions)
