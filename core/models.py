import base64
import mimetypes
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TASK_GENERATE_IMAGE = "generate_image"
TASK_EDIT_IMAGE = "edit_image"
TASK_GENERATE_VIDEO = "generate_video"
TASK_EXTEND_VIDEO = "extend_video"
TaskType = Literal[TASK_GENERATE_IMAGE, TASK_EDIT_IMAGE, TASK_GENERATE_VIDEO, TASK_EXTEND_VIDEO]
IMAGE_TASKS = {TASK_GENERATE_IMAGE, TASK_EDIT_IMAGE}
VIDEO_TASKS = {TASK_GENERATE_VIDEO, TASK_EXTEND_VIDEO}

ArtifactKind = Literal["image", "video"]


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    AUTH_ERROR = "auth_error"
    QUOTA_EXCEEDED = "quota_exceeded"
    MODEL_UNAVAILABLE = "model_unavailable"
    NETWORK_ERROR = "network_error"
    UPSTREAM_MALFORMED = "upstream_malformed"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobPhase(str, Enum):
    SUBMITTING = "submitting"
    POLLING = "polling"
    FETCHING = "fetching"
    DONE = "done"


class MediaPayload(BaseModel):
    """Binary content plus its MIME type, as sent to or received from the backend."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    data: bytes = Field(repr=False)
    mime_type: str = Field(min_length=1)

    @field_validator("data")
    @classmethod
    def ensure_non_empty(cls, value: bytes) -> bytes:
        if not value:
            raise ValueError("media payload must not be empty")
        return value

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def summary(self) -> Dict[str, Any]:
        return {"mime_type": self.mime_type, "bytes": len(self.data)}


class GenerationRequest(BaseModel):
    """Parameters for a single submission.

    The prompt is not length-constrained here. An empty prompt fails at
    submission with ``INVALID_INPUT`` and is reported through the job stream.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    task_type: TaskType
    model: str = Field(min_length=1)
    prompt: str = ""
    negative_prompt: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    seed_image: Optional[MediaPayload] = None
    seed_video: Optional[MediaPayload] = None

    @field_validator("model")
    @classmethod
    def ensure_model_non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("model must not be blank")
        return value.strip()

    @field_validator("negative_prompt", "aspect_ratio", "resolution")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        text = value.strip()
        return text or None

    @model_validator(mode="after")
    def ensure_single_seed(self) -> "GenerationRequest":
        if self.seed_image is not None and self.seed_video is not None:
            raise ValueError("seed_image and seed_video are mutually exclusive")
        return self

    def to_dict(self) -> Dict[str, Any]:
        payload = self.model_dump(exclude={"seed_image", "seed_video"})
        payload["seed_image"] = self.seed_image.summary() if self.seed_image else None
        payload["seed_video"] = self.seed_video.summary() if self.seed_video else None
        return payload


class Artifact(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ArtifactKind
    data: bytes = Field(repr=False)
    mime_type: str
    source_uri: Optional[str] = None
    text: Optional[str] = None

    def to_media(self) -> MediaPayload:
        return MediaPayload(data=self.data, mime_type=self.mime_type)

    def file_extension(self) -> str:
        ext = mimetypes.guess_extension(self.mime_type.split(";", 1)[0].strip())
        if ext in {".jpe", ".jpeg"}:
            return ".jpg"
        if ext:
            return ext
        return ".mp4" if self.kind == "video" else ".png"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "mime_type": self.mime_type,
            "bytes": len(self.data),
            "source_uri": self.source_uri,
            "text": self.text,
        }


class JobError(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ErrorKind
    message: str
    detail: str = ""
    status_code: Optional[int] = None


class OperationRunning(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    state: Literal["running"] = "running"
    name: str = Field(min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def done(self) -> bool:
        return False


class OperationSucceeded(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    state: Literal["succeeded"] = "succeeded"
    name: str = Field(min_length=1)
    video_uri: str = Field(min_length=1)

    @property
    def done(self) -> bool:
        return True


class OperationFailed(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    state: Literal["failed"] = "failed"
    name: str = Field(min_length=1)
    error: JobError

    @property
    def done(self) -> bool:
        return True


Operation = Annotated[
    Union[OperationRunning, OperationSucceeded, OperationFailed],
    Field(discriminator="state"),
]


class KeyValidation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    is_valid: bool
    error: Optional[JobError] = None


class JobUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    status: JobStatus
    phase: JobPhase
    poll_count: int = Field(default=0, ge=0)
    operation_name: Optional[str] = None
    artifact: Optional[Artifact] = None
    error: Optional[JobError] = None

    @model_validator(mode="after")
    def ensure_terminal_fields(self) -> "JobUpdate":
        if self.status == JobStatus.SUCCEEDED and self.artifact is None:
            raise ValueError("succeeded update requires an artifact")
        if self.status == JobStatus.FAILED and self.error is None:
            raise ValueError("failed update requires an error")
        return self

    @property
    def terminal(self) -> bool:
        return self.status != JobStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "phase": self.phase.value,
            "poll_count": self.poll_count,
            "operation_name": self.operation_name,
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "error": self.error.model_dump(mode="json") if self.error else None,
        }
