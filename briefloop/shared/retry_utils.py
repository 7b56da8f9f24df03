import time
from typing import Callable, Optional, Tuple, TypeVar

from briefloop.shared.logging_utils import warning as log_warning

T = TypeVar("T")


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    delay: float = 1.5,
    backoff: float = 1.5,
    exceptions: Tuple[type, ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    label: Optional[str] = None,
) -> T:
    """Run ``operation``, retrying listed exceptions with exponential delays.

    The last failure is re-raised once ``attempts`` are used up. ``sleep`` is
    injectable so callers under test never block.
    """
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except exceptions as exc:  # type: ignore[misc]
            if attempt == attempts:
                raise
            log_warning(None, "retry:scheduled", operation=label or "operation",
                        attempt=attempt, delaySeconds=delay, error=str(exc))
            sleep(delay)
            delay *= backoff
    raise ValueError("attempts must be at least 1")
