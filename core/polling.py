import logging
import threading
import time
from typing import Callable, Iterator, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from core.errors import GenerationError, JobCancelled
from core.models import ErrorKind, Operation, OperationRunning

LOGGER = logging.getLogger("media_gen_studio")


class OperationSource(Protocol):
    def poll_operation(self, name: str, api_key: str) -> Operation:
        ...


class PollSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    interval_seconds: float = Field(default=10.0, ge=0)
    # None means no deadline.
    timeout_seconds: Optional[float] = Field(default=900.0, gt=0)
    max_consecutive_errors: int = Field(default=3, ge=0)


class CancelToken:
    """Cooperative cancellation flag shared between a job and whoever owns it."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True when cancelled meanwhile."""
        return self._event.wait(timeout=max(0.0, seconds))


def iter_operation_states(
    source: OperationSource,
    operation: Operation,
    api_key: str,
    settings: Optional[PollSettings] = None,
    cancel_token: Optional[CancelToken] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[Operation]:
    """Yield every refreshed operation until one reports done.

    Each iteration waits ``interval_seconds`` and then issues one status check
    with the unchanged operation name. Cancellation is checked before each
    wait/poll pair and after the wait; an in-flight status check is never
    interrupted.
    """
    settings = settings or PollSettings()
    token = cancel_token or CancelToken()
    deadline = None
    if settings.timeout_seconds is not None:
        deadline = clock() + settings.timeout_seconds

    current = operation
    checks = 0
    consecutive_errors = 0
    while isinstance(current, OperationRunning):
        if token.cancelled:
            raise JobCancelled(current.name)
        wait_seconds = settings.interval_seconds
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                raise GenerationError(
                    ErrorKind.TIMEOUT,
                    detail=(
                        f"operation {current.name} still running after "
                        f"{settings.timeout_seconds:g}s ({checks} status checks)"
                    ),
                )
            wait_seconds = min(wait_seconds, remaining)
        if token.wait(wait_seconds):
            raise JobCancelled(current.name)

        checks += 1
        try:
            refreshed = source.poll_operation(current.name, api_key)
        except GenerationError as exc:
            if (
                exc.kind != ErrorKind.NETWORK_ERROR
                or consecutive_errors >= settings.max_consecutive_errors
            ):
                raise
            consecutive_errors += 1
            LOGGER.warning(
                "status check failed for %s (%s/%s): %s",
                current.name,
                consecutive_errors,
                settings.max_consecutive_errors,
                exc.detail,
            )
            continue

        consecutive_errors = 0
        if refreshed.name != current.name:
            raise GenerationError(
                ErrorKind.UPSTREAM_MALFORMED,
                detail=f"operation name changed from {current.name} to {refreshed.name}",
            )
        LOGGER.debug("status check #%s for %s: %s", checks, current.name, refreshed.state)
        current = refreshed
        yield current


def poll_operation(
    source: OperationSource,
    operation: Operation,
    api_key: str,
    settings: Optional[PollSettings] = None,
    cancel_token: Optional[CancelToken] = None,
) -> Operation:
    final = operation
    for final in iter_operation_states(
        source,
        operation,
        api_key,
        settings=settings,
        cancel_token=cancel_token,
    ):
        pass
    return final
