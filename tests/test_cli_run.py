import sys
from pathlib import Path
from typing import List

import pytest

import cli
from core.errors import GenerationError
from core.models import (
    Artifact,
    ErrorKind,
    GenerationRequest,
    KeyValidation,
    OperationRunning,
    OperationSucceeded,
)
from core.polling import PollSettings


class ChainBackend:
    """Completes every video operation on the first status check."""

    def __init__(self) -> None:
        self.requests: List[GenerationRequest] = []
        self.keys: List[str] = []

    def submit_generation(self, request: GenerationRequest, api_key: str):
        self.requests.append(request)
        self.keys.append(api_key)
        if request.task_type == "generate_image":
            return Artifact(kind="image", data=b"png-bytes", mime_type="image/png")
        return OperationRunning(name=f"models/veo/operations/op-{len(self.requests)}")

    def poll_operation(self, name: str, api_key: str):
        return OperationSucceeded(name=name, video_uri=f"https://files.example.com/{name}")

    def fetch_artifact(self, uri: str, api_key: str) -> Artifact:
        data = f"video-{len(self.requests)}".encode()
        return Artifact(kind="video", data=data, mime_type="video/mp4", source_uri=uri)

    def validate_key(self, api_key: str) -> KeyValidation:
        if api_key == "good":
            return KeyValidation(is_valid=True)
        error = GenerationError(ErrorKind.AUTH_ERROR, detail="API key not valid.")
        return KeyValidation(is_valid=False, error=error.to_job_error())


@pytest.fixture
def backend(monkeypatch) -> ChainBackend:
    fake = ChainBackend()
    monkeypatch.setattr(cli, "build_backend_from_env", lambda: fake)
    monkeypatch.setattr(
        cli,
        "load_poll_settings_from_env",
        lambda: PollSettings(interval_seconds=0, timeout_seconds=None),
    )
    return fake


def _run_main(monkeypatch, argv: List[str]) -> int:
    monkeypatch.setattr(sys, "argv", ["mgs", *argv])
    return cli.main()


def test_video_with_extend_prompt_chains_an_extension(
    monkeypatch, tmp_path: Path, backend: ChainBackend
) -> None:
    code = _run_main(
        monkeypatch,
        [
            "--quiet",
            "--api-key",
            "key-1",
            "--output-dir",
            str(tmp_path),
            "video",
            "--prompt",
            "A paper boat",
            "--extend-prompt",
            "It drifts into a tunnel",
        ],
    )
    assert code == 0
    assert [req.task_type for req in backend.requests] == ["generate_video", "extend_video"]
    extension = backend.requests[1]
    assert extension.prompt == "It drifts into a tunnel"
    assert extension.seed_image is None
    assert extension.seed_video is not None
    assert extension.seed_video.data == b"video-1"
    assert set(backend.keys) == {"key-1"}
    saved = sorted(path.name for path in tmp_path.rglob("video.mp4"))
    assert len(saved) == 2


def test_extend_command_reads_saved_video(
    monkeypatch, tmp_path: Path, backend: ChainBackend
) -> None:
    source = tmp_path / "previous.mp4"
    source.write_bytes(b"old-video")
    code = _run_main(
        monkeypatch,
        [
            "--quiet",
            "--api-key",
            "key-1",
            "--output-dir",
            str(tmp_path / "runs"),
            "extend",
            "--prompt",
            "Camera pulls back",
            "--input-video",
            str(source),
        ],
    )
    assert code == 0
    assert backend.requests[0].seed_video is not None
    assert backend.requests[0].seed_video.data == b"old-video"


def test_image_command_saves_image(monkeypatch, tmp_path: Path, backend: ChainBackend) -> None:
    code = _run_main(
        monkeypatch,
        ["--quiet", "--api-key", "k", "--output-dir", str(tmp_path), "image", "--prompt", "A fox"],
    )
    assert code == 0
    assert list(tmp_path.rglob("image.png"))


def test_output_dir_defaults_to_environment(
    monkeypatch, tmp_path: Path, backend: ChainBackend
) -> None:
    target = tmp_path / "from-env"
    monkeypatch.setenv("MGS_OUTPUT_DIR", str(target))
    code = _run_main(monkeypatch, ["--quiet", "--api-key", "k", "image", "--prompt", "A fox"])
    assert code == 0
    assert list(target.rglob("image.png"))


def test_empty_prompt_exits_with_failure(
    monkeypatch, tmp_path: Path, backend: ChainBackend, capsys
) -> None:
    code = _run_main(
        monkeypatch,
        ["--quiet", "--api-key", "k", "--output-dir", str(tmp_path), "video", "--prompt", " "],
    )
    assert code == 1
    assert backend.requests == []
    assert "failed:" in capsys.readouterr().err


def test_missing_input_file_is_reported(
    monkeypatch, tmp_path: Path, backend: ChainBackend, capsys
) -> None:
    code = _run_main(
        monkeypatch,
        [
            "--quiet",
            "--output-dir",
            str(tmp_path),
            "extend",
            "--prompt",
            "more",
            "--input-video",
            str(tmp_path / "missing.mp4"),
        ],
    )
    assert code == 1
    assert "file not found" in capsys.readouterr().err


def test_validate_key_exit_codes(monkeypatch, backend: ChainBackend, capsys) -> None:
    assert _run_main(monkeypatch, ["--api-key", "good", "validate-key"]) == 0
    assert "API key is valid." in capsys.readouterr().out
    assert _run_main(monkeypatch, ["--api-key", "bad", "validate-key"]) == 1
    assert "invalid:" in capsys.readouterr().err
