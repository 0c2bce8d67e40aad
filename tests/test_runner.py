import json
from pathlib import Path
from typing import Any, List, Optional

import pytest

from core.errors import GenerationError
from core.models import (
    Artifact,
    ErrorKind,
    GenerationRequest,
    JobError,
    JobPhase,
    JobStatus,
    MediaPayload,
    OperationFailed,
    OperationRunning,
    OperationSucceeded,
)
from core.polling import CancelToken, PollSettings
from core.runner import (
    build_extension_request,
    persist_job_output,
    run_job,
    run_job_to_completion,
    submit_generation,
)

OP_NAME = "models/veo-2.0-generate-001/operations/op-1"
VIDEO_URI = "https://files.example.com/v1beta/files/abc:download?alt=media"
FAST = PollSettings(interval_seconds=0, timeout_seconds=None)


class FakeBackend:
    def __init__(
        self,
        submit_result: Any,
        poll_results: Optional[List[Any]] = None,
        fetch_result: Any = None,
        poll_forever: bool = False,
    ) -> None:
        self.submit_result = submit_result
        self.poll_results = list(poll_results or [])
        self.fetch_result = fetch_result
        self.poll_forever = poll_forever
        self.submit_calls: List[GenerationRequest] = []
        self.poll_calls: List[str] = []
        self.fetch_calls: List[str] = []
        self.keys: List[str] = []

    def submit_generation(self, request: GenerationRequest, api_key: str):
        self.submit_calls.append(request)
        self.keys.append(api_key)
        if isinstance(self.submit_result, Exception):
            raise self.submit_result
        return self.submit_result

    def poll_operation(self, name: str, api_key: str):
        self.poll_calls.append(name)
        self.keys.append(api_key)
        if self.poll_forever:
            return OperationRunning(name=name)
        result = self.poll_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def fetch_artifact(self, uri: str, api_key: str) -> Artifact:
        self.fetch_calls.append(uri)
        self.keys.append(api_key)
        if isinstance(self.fetch_result, Exception):
            raise self.fetch_result
        return self.fetch_result


def _video_request(**overrides: Any) -> GenerationRequest:
    fields = {
        "task_type": "generate_video",
        "model": "veo-2.0-generate-001",
        "prompt": "A paper boat on a stream",
        "aspect_ratio": "16:9",
    }
    fields.update(overrides)
    return GenerationRequest(**fields)


def _video_artifact(data: bytes = b"mp4-bytes") -> Artifact:
    return Artifact(kind="video", data=data, mime_type="video/mp4", source_uri=VIDEO_URI)


def test_run_job_polls_until_done_then_fetches() -> None:
    artifact = _video_artifact()
    backend = FakeBackend(
        submit_result=OperationRunning(name=OP_NAME),
        poll_results=[
            OperationRunning(name=OP_NAME),
            OperationRunning(name=OP_NAME),
            OperationSucceeded(name=OP_NAME, video_uri=VIDEO_URI),
        ],
        fetch_result=artifact,
    )
    updates = list(run_job(backend, _video_request(), "key-1", settings=FAST))

    assert backend.poll_calls == [OP_NAME, OP_NAME, OP_NAME]
    assert backend.fetch_calls == [VIDEO_URI]
    assert set(backend.keys) == {"key-1"}
    final = updates[-1]
    assert final.status == JobStatus.SUCCEEDED
    assert final.artifact == artifact
    assert final.poll_count == 3
    assert [u.status for u in updates[:-1]] == [JobStatus.RUNNING] * (len(updates) - 1)
    assert updates[-2].phase == JobPhase.FETCHING


def test_run_job_cancelled_during_first_wait_makes_no_status_checks() -> None:
    class CancelOnWait(CancelToken):
        def wait(self, seconds: float) -> bool:
            self.cancel()
            return True

    backend = FakeBackend(submit_result=OperationRunning(name=OP_NAME), poll_forever=True)
    final = run_job_to_completion(
        backend, _video_request(), "key-1", settings=FAST, cancel_token=CancelOnWait()
    )

    assert final.status == JobStatus.CANCELLED
    assert final.operation_name == OP_NAME
    assert backend.poll_calls == []
    assert backend.fetch_calls == []


def test_run_job_stops_polling_once_cancelled() -> None:
    backend = FakeBackend(submit_result=OperationRunning(name=OP_NAME), poll_forever=True)
    token = CancelToken()
    stream = run_job(backend, _video_request(), "key-1", settings=FAST, cancel_token=token)
    for update in stream:
        if update.poll_count == 2:
            token.cancel()
        if update.terminal:
            break

    assert update.status == JobStatus.CANCELLED
    assert len(backend.poll_calls) == 2


def test_empty_prompt_fails_without_network_call() -> None:
    backend = FakeBackend(submit_result=OperationRunning(name=OP_NAME))
    updates = list(run_job(backend, _video_request(prompt="   "), "key-1", settings=FAST))

    assert [u.phase for u in updates] == [JobPhase.SUBMITTING, JobPhase.DONE]
    assert updates[-1].status == JobStatus.FAILED
    assert updates[-1].error is not None
    assert updates[-1].error.kind == ErrorKind.INVALID_INPUT
    assert backend.submit_calls == []


def test_submit_generation_rejects_edit_without_seed_image() -> None:
    backend = FakeBackend(submit_result=None)
    request = GenerationRequest(task_type="edit_image", model="m", prompt="make it blue")
    with pytest.raises(GenerationError) as info:
        submit_generation(backend, request, "key-1")
    assert info.value.kind == ErrorKind.INVALID_INPUT
    assert backend.submit_calls == []


def test_image_generation_rejects_seed_image_without_network_call() -> None:
    backend = FakeBackend(submit_result=None)
    request = GenerationRequest(
        task_type="generate_image",
        model="imagen-4.0-generate-001",
        prompt="A tree",
        seed_image=MediaPayload(data=b"png", mime_type="image/png"),
    )
    with pytest.raises(GenerationError) as info:
        submit_generation(backend, request, "key-1")
    assert info.value.kind == ErrorKind.INVALID_INPUT

    final = run_job_to_completion(backend, request, "key-1", settings=FAST)
    assert final.status == JobStatus.FAILED
    assert final.error is not None
    assert final.error.kind == ErrorKind.INVALID_INPUT
    assert backend.submit_calls == []


def test_run_job_to_completion_requires_a_terminal_update(monkeypatch) -> None:
    monkeypatch.setattr("core.runner.run_job", lambda *args, **kwargs: iter([]))
    with pytest.raises(RuntimeError):
        run_job_to_completion(FakeBackend(submit_result=None), _video_request(), "key-1")


def test_done_without_artifact_is_failure_not_success() -> None:
    malformed = JobError(
        kind=ErrorKind.UPSTREAM_MALFORMED,
        message="no result",
        detail="operation completed without a video reference",
    )
    backend = FakeBackend(
        submit_result=OperationRunning(name=OP_NAME),
        poll_results=[OperationFailed(name=OP_NAME, error=malformed)],
    )
    final = run_job_to_completion(backend, _video_request(), "key-1", settings=FAST)

    assert final.status == JobStatus.FAILED
    assert final.error is not None
    assert final.error.kind == ErrorKind.UPSTREAM_MALFORMED
    assert backend.fetch_calls == []


def test_image_submission_completes_without_polling() -> None:
    image = Artifact(kind="image", data=b"jpeg", mime_type="image/jpeg")
    backend = FakeBackend(submit_result=image)
    request = GenerationRequest(
        task_type="generate_image", model="imagen-4.0-generate-001", prompt="A tree"
    )
    updates = list(run_job(backend, request, "key-1", settings=FAST))

    assert [u.status for u in updates] == [JobStatus.RUNNING, JobStatus.SUCCEEDED]
    assert updates[-1].artifact == image
    assert backend.poll_calls == []


def test_submit_failure_is_classified_and_not_retried() -> None:
    backend = FakeBackend(
        submit_result=GenerationError(ErrorKind.QUOTA_EXCEEDED, detail="RESOURCE_EXHAUSTED")
    )
    final = run_job_to_completion(backend, _video_request(), "key-1", settings=FAST)

    assert final.status == JobStatus.FAILED
    assert final.error is not None
    assert final.error.kind == ErrorKind.QUOTA_EXCEEDED
    assert len(backend.submit_calls) == 1


def test_unexpected_exception_becomes_unknown_error() -> None:
    backend = FakeBackend(submit_result=RuntimeError("boom"))
    final = run_job_to_completion(backend, _video_request(), "key-1", settings=FAST)

    assert final.status == JobStatus.FAILED
    assert final.error is not None
    assert final.error.kind == ErrorKind.UNKNOWN
    assert "boom" in final.error.detail


def test_fetch_failure_is_terminal() -> None:
    backend = FakeBackend(
        submit_result=OperationRunning(name=OP_NAME),
        poll_results=[OperationSucceeded(name=OP_NAME, video_uri=VIDEO_URI)],
        fetch_result=GenerationError(ErrorKind.NETWORK_ERROR, detail="connection reset"),
    )
    final = run_job_to_completion(backend, _video_request(), "key-1", settings=FAST)

    assert final.status == JobStatus.FAILED
    assert final.error is not None
    assert final.error.kind == ErrorKind.NETWORK_ERROR
    assert backend.fetch_calls == [VIDEO_URI]


def test_run_job_to_completion_reports_every_update() -> None:
    seen = []
    backend = FakeBackend(
        submit_result=OperationRunning(name=OP_NAME),
        poll_results=[OperationSucceeded(name=OP_NAME, video_uri=VIDEO_URI)],
        fetch_result=_video_artifact(),
    )
    final = run_job_to_completion(
        backend, _video_request(), "key-1", settings=FAST, on_update=seen.append
    )
    assert seen[-1] == final
    assert [u.phase for u in seen] == [
        JobPhase.SUBMITTING,
        JobPhase.POLLING,
        JobPhase.FETCHING,
        JobPhase.DONE,
    ]


def test_extension_request_replaces_image_seed_with_prior_video() -> None:
    base = _video_request(
        seed_image=MediaPayload(data=b"png-bytes", mime_type="image/png"),
        negative_prompt="blurry",
    )
    artifact = _video_artifact(b"first-video")
    request = build_extension_request(base, artifact, prompt="The boat enters a tunnel")

    assert request.task_type == "extend_video"
    assert request.seed_image is None
    assert request.seed_video is not None
    assert request.seed_video.data == b"first-video"
    assert request.seed_video.mime_type == "video/mp4"
    assert request.prompt == "The boat enters a tunnel"
    assert request.negative_prompt == "blurry"
    assert request.model == base.model


def test_extension_requires_a_video_artifact() -> None:
    image = Artifact(kind="image", data=b"jpeg", mime_type="image/jpeg")
    with pytest.raises(GenerationError) as info:
        build_extension_request(_video_request(), image)
    assert info.value.kind == ErrorKind.INVALID_INPUT
    with pytest.raises(GenerationError):
        build_extension_request(_video_request(), None)


def test_extension_chain_runs_a_fresh_job() -> None:
    first = _video_artifact(b"first-video")
    backend = FakeBackend(
        submit_result=OperationRunning(name=OP_NAME),
        poll_results=[OperationSucceeded(name=OP_NAME, video_uri=VIDEO_URI)],
        fetch_result=_video_artifact(b"second-video"),
    )
    request = build_extension_request(_video_request(), first, prompt="continue")
    final = run_job_to_completion(backend, request, "key-1", settings=FAST)

    assert final.status == JobStatus.SUCCEEDED
    assert backend.submit_calls[0].seed_video is not None
    assert backend.submit_calls[0].seed_video.data == b"first-video"
    assert final.artifact is not None and final.artifact.data == b"second-video"


def test_persist_job_output_writes_artifact_and_metadata(tmp_path: Path) -> None:
    backend = FakeBackend(
        submit_result=OperationRunning(name=OP_NAME),
        poll_results=[OperationSucceeded(name=OP_NAME, video_uri=VIDEO_URI)],
        fetch_result=_video_artifact(),
    )
    request = _video_request(seed_image=MediaPayload(data=b"png-bytes", mime_type="image/png"))
    final = run_job_to_completion(backend, request, "key-1", settings=FAST)
    run_dir = persist_job_output(tmp_path, request, final)

    assert run_dir.name.endswith("_generate_video_op-1")
    assert (run_dir / "video.mp4").read_bytes() == b"mp4-bytes"
    saved_request = json.loads((run_dir / "request.json").read_text(encoding="utf-8"))
    assert saved_request["seed_image"] == {"mime_type": "image/png", "bytes": 9}
    saved_result = json.loads((run_dir / "result.json").read_text(encoding="utf-8"))
    assert saved_result["status"] == "succeeded"
    assert saved_result["artifact"]["bytes"] == len(b"mp4-bytes")
