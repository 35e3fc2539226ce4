"""Bounded calls on daemon threads."""
import threading
from typing import Any, Callable


def run_with_timeout(func: Callable, timeout_seconds: float, *args, **kwargs) -> tuple[Any, bool]:
    """
    Run a function with a timeout.

    Each call gets its own daemon thread, so an abandoned call never holds
    a slot another caller needs.

    Returns: (result, timed_out)
    """
    result_holder = [None]
    exception_holder: list[BaseException | None] = [None]

    def target():
        try:
            result_holder[0] = func(*args, **kwargs)
        except Exception as e:
            exception_holder[0] = e

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join(timeout=timeout_seconds)

    if thread.is_alive():
        # Python threads can't be killed; the body is abandoned
        return None, True

    if exception_holder[0]:
        raise exception_holder[0]

    return result_holder[0], False
