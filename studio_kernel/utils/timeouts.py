"""
Request-level timeouts for blocking collaborator calls.

Feeds consumed during cycle generation are external services; a hung feed
must fail the generation attempt rather than hold the caller forever.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, TypeVar

from studio_kernel.exceptions import UpstreamFailureError
from studio_kernel.logging_config import get_logger

logger = get_logger("utils.timeouts")

T = TypeVar("T")


def call_with_timeout(
    fn: Callable[..., T],
    *args: Any,
    timeout_seconds: float,
    collaborator: str,
    operation: str,
    **kwargs: Any,
) -> T:
    """
    Run ``fn(*args, **kwargs)`` in a worker thread and wait at most
    ``timeout_seconds`` for it.

    Raises:
        UpstreamFailureError: on timeout, or when ``fn`` raises.  The
            original exception is chained as ``__cause__``.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=collaborator)
    future = executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError as exc:
        future.cancel()
        logger.warning(
            "collaborator_call_timed_out",
            extra={
                "collaborator": collaborator,
                "operation": operation,
                "timeout_seconds": timeout_seconds,
            },
        )
        raise UpstreamFailureError(
            collaborator, operation, f"timed out after {timeout_seconds}s"
        ) from exc
    except UpstreamFailureError:
        raise
    except Exception as exc:
        logger.warning(
            "collaborator_call_failed",
            extra={
                "collaborator": collaborator,
                "operation": operation,
                "error": str(exc),
            },
        )
        raise UpstreamFailureError(collaborator, operation, str(exc)) from exc
    finally:
        # Do not block on a hung worker; it is abandoned
        executor.shutdown(wait=False)
