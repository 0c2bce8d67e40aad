import logging
import time
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol, Union

from core.errors import GenerationError, JobCancelled, error_from_exception
from core.io_utils import ensure_dir, json_dump, safe_name
from core.models import (
    TASK_EDIT_IMAGE,
    TASK_EXTEND_VIDEO,
    TASK_GENERATE_IMAGE,
    VIDEO_TASKS,
    Artifact,
    ErrorKind,
    GenerationRequest,
    JobPhase,
    JobStatus,
    JobUpdate,
    Operation,
    OperationFailed,
    OperationRunning,
    OperationSucceeded,
)
from core.polling import CancelToken, PollSettings, iter_operation_states

LOGGER = logging.getLogger("media_gen_studio")


class GenerationBackend(Protocol):
    def submit_generation(
        self, request: GenerationRequest, api_key: str
    ) -> Union[Artifact, Operation]:
        ...

    def poll_operation(self, name: str, api_key: str) -> Operation:
        ...

    def fetch_artifact(self, uri: str, api_key: str) -> Artifact:
        ...


def validate_request(request: GenerationRequest) -> None:
    if not request.prompt.strip():
        raise GenerationError(ErrorKind.INVALID_INPUT, detail="prompt must not be empty")
    if request.task_type == TASK_EDIT_IMAGE and request.seed_image is None:
        raise GenerationError(ErrorKind.INVALID_INPUT, detail="edit_image requires a seed image")
    if request.task_type == TASK_GENERATE_IMAGE and request.seed_image is not None:
        raise GenerationError(
            ErrorKind.INVALID_INPUT, detail="generate_image does not accept a seed image"
        )
    if request.task_type == TASK_EXTEND_VIDEO and request.seed_video is None:
        raise GenerationError(ErrorKind.INVALID_INPUT, detail="extend_video requires a seed video")
    if request.task_type not in VIDEO_TASKS and request.seed_video is not None:
        raise GenerationError(
            ErrorKind.INVALID_INPUT, detail=f"{request.task_type} does not accept a seed video"
        )


def submit_generation(
    backend: GenerationBackend, request: GenerationRequest, api_key: str
) -> Union[Artifact, Operation]:
    """Validate and send exactly one submission; failures are not retried."""
    validate_request(request)
    LOGGER.info("submitting %s model=%s", request.task_type, request.model)
    return backend.submit_generation(request, api_key)


def resolve_operation(backend: GenerationBackend, operation: Operation, api_key: str) -> Artifact:
    if isinstance(operation, OperationFailed):
        raise GenerationError.from_job_error(operation.error)
    if isinstance(operation, OperationRunning):
        raise ValueError(f"operation {operation.name} is still running")
    return backend.fetch_artifact(operation.video_uri, api_key)


def run_job(
    backend: GenerationBackend,
    request: GenerationRequest,
    api_key: str,
    settings: Optional[PollSettings] = None,
    cancel_token: Optional[CancelToken] = None,
) -> Iterator[JobUpdate]:
    """Run one submission to a terminal state, yielding a JobUpdate per step.

    The last update is always terminal (succeeded, failed or cancelled); no
    exception escapes the generator.
    """
    token = cancel_token or CancelToken()
    operation_name: Optional[str] = None
    poll_count = 0
    try:
        yield JobUpdate(status=JobStatus.RUNNING, phase=JobPhase.SUBMITTING)
        submitted = submit_generation(backend, request, api_key)
        if isinstance(submitted, Artifact):
            yield JobUpdate(status=JobStatus.SUCCEEDED, phase=JobPhase.DONE, artifact=submitted)
            return

        operation_name = submitted.name
        yield JobUpdate(
            status=JobStatus.RUNNING,
            phase=JobPhase.POLLING,
            operation_name=operation_name,
        )
        final: Operation = submitted
        for final in iter_operation_states(
            backend, submitted, api_key, settings=settings, cancel_token=token
        ):
            poll_count += 1
            if not final.done:
                yield JobUpdate(
                    status=JobStatus.RUNNING,
                    phase=JobPhase.POLLING,
                    poll_count=poll_count,
                    operation_name=operation_name,
                )

        if isinstance(final, OperationSucceeded):
            if token.cancelled:
                raise JobCancelled(operation_name)
            yield JobUpdate(
                status=JobStatus.RUNNING,
                phase=JobPhase.FETCHING,
                poll_count=poll_count,
                operation_name=operation_name,
            )
        artifact = resolve_operation(backend, final, api_key)
        LOGGER.info("operation %s resolved after %s status checks", operation_name, poll_count)
        yield JobUpdate(
            status=JobStatus.SUCCEEDED,
            phase=JobPhase.DONE,
            poll_count=poll_count,
            operation_name=operation_name,
            artifact=artifact,
        )
    except JobCancelled:
        LOGGER.info("job cancelled operation=%s", operation_name or "-")
        yield JobUpdate(
            status=JobStatus.CANCELLED,
            phase=JobPhase.DONE,
            poll_count=poll_count,
            operation_name=operation_name,
        )
    except Exception as exc:  # noqa: BLE001
        error = error_from_exception(exc)
        if error.kind == ErrorKind.UNKNOWN:
            LOGGER.error("job failed unexpectedly", exc_info=True)
        else:
            LOGGER.warning("job failed kind=%s detail=%s", error.kind.value, error.detail)
        yield JobUpdate(
            status=JobStatus.FAILED,
            phase=JobPhase.DONE,
            poll_count=poll_count,
            operation_name=operation_name,
            error=error.to_job_error(),
        )


def run_job_to_completion(
    backend: GenerationBackend,
    request: GenerationRequest,
    api_key: str,
    settings: Optional[PollSettings] = None,
    cancel_token: Optional[CancelToken] = None,
    on_update: Optional[Callable[[JobUpdate], None]] = None,
) -> JobUpdate:
    last: Optional[JobUpdate] = None
    for update in run_job(backend, request, api_key, settings=settings, cancel_token=cancel_token):
        if on_update is not None:
            on_update(update)
        last = update
    if last is None or not last.terminal:
        raise RuntimeError("job stream ended without a terminal update")
    return last


def build_extension_request(
    base: GenerationRequest,
    artifact: Optional[Artifact],
    prompt: Optional[str] = None,
    model: Optional[str] = None,
) -> GenerationRequest:
    """Build a follow-up request that continues ``artifact``.

    The prior video becomes the seed video; any seed image is dropped.
    """
    if artifact is None or artifact.kind != "video":
        raise GenerationError(ErrorKind.INVALID_INPUT, detail="No video available to extend.")
    return GenerationRequest(
        task_type=TASK_EXTEND_VIDEO,
        model=model or base.model,
        prompt=base.prompt if prompt is None else prompt,
        negative_prompt=base.negative_prompt,
        aspect_ratio=base.aspect_ratio,
        resolution=base.resolution,
        seed_image=None,
        seed_video=artifact.to_media(),
    )


def persist_job_output(output_root: Path, request: GenerationRequest, update: JobUpdate) -> Path:
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    suffix = safe_name(update.operation_name.rsplit("/", 1)[-1]) if update.operation_name else ""
    folder = f"{timestamp}_{request.task_type}"
    if suffix:
        folder = f"{folder}_{suffix}"
    run_dir = ensure_dir(output_root / folder)
    json_dump(run_dir / "request.json", request.to_dict())
    json_dump(run_dir / "result.json", update.to_dict())
    if update.artifact is not None:
        target = run_dir / f"{update.artifact.kind}{update.artifact.file_extension()}"
        target.write_bytes(update.artifact.data)
        LOGGER.info("saved %s to %s", update.artifact.kind, target)
    return run_dir
