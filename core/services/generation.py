import logging
import os
from typing import Optional

from pydantic import ValidationError

from backends import GeminiBackend
from backends.gemini import GEMINI_BASE_URL_DEFAULT
from core.errors import GenerationError
from core.io_utils import infer_aspect_ratio
from core.models import (
    IMAGE_TASKS,
    ErrorKind,
    GenerationRequest,
    MediaPayload,
)
from core.polling import PollSettings
from core.services.catalog import VIDEO_RESOLUTIONS, aspect_ratio_choices, default_model

LOGGER = logging.getLogger("media_gen_studio")

API_KEY_ENVS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")
ASPECT_RATIO_AUTO = "auto"
OUTPUT_DIR_ENV = "MGS_OUTPUT_DIR"


def build_backend_from_env() -> GeminiBackend:
    timeout = int(os.getenv("HTTP_TIMEOUT_SECONDS", "120"))
    base_url = os.getenv("GEMINI_BASE_URL", "").strip() or GEMINI_BASE_URL_DEFAULT
    return GeminiBackend(base_url=base_url, timeout_seconds=timeout)


def load_poll_settings_from_env() -> PollSettings:
    timeout = float(os.getenv("VIDEO_POLL_TIMEOUT_SECONDS", "900"))
    return PollSettings(
        interval_seconds=float(os.getenv("VIDEO_POLL_INTERVAL_SECONDS", "10")),
        timeout_seconds=timeout if timeout > 0 else None,
        max_consecutive_errors=int(os.getenv("VIDEO_POLL_MAX_ERRORS", "3")),
    )


def resolve_output_dir(explicit: Optional[str] = None) -> str:
    if explicit and explicit.strip():
        return explicit.strip()
    return os.getenv(OUTPUT_DIR_ENV, "").strip() or "runs"


def resolve_api_key(explicit: Optional[str] = None) -> str:
    if explicit and explicit.strip():
        return explicit.strip()
    for name in API_KEY_ENVS:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return ""


def build_request(
    task_type: str,
    prompt: str,
    model: Optional[str] = None,
    negative_prompt: Optional[str] = None,
    aspect_ratio: Optional[str] = None,
    resolution: Optional[str] = None,
    seed_image: Optional[MediaPayload] = None,
    seed_video: Optional[MediaPayload] = None,
) -> GenerationRequest:
    """Assemble a request from form/CLI values, reporting bad input as INVALID_INPUT."""
    choices = aspect_ratio_choices(task_type) if task_type else []
    if aspect_ratio == ASPECT_RATIO_AUTO:
        aspect_ratio = infer_aspect_ratio(seed_image, choices) or (choices[0] if choices else None)
        LOGGER.info("aspect ratio auto-detected: %s", aspect_ratio)
    if aspect_ratio and aspect_ratio not in choices:
        raise GenerationError(
            ErrorKind.INVALID_INPUT,
            detail=(
                f"aspect ratio {aspect_ratio} not supported for {task_type} "
                f"({', '.join(choices)})"
            ),
        )
    if resolution and (task_type in IMAGE_TASKS or resolution not in VIDEO_RESOLUTIONS):
        raise GenerationError(
            ErrorKind.INVALID_INPUT,
            detail=f"resolution {resolution} not supported for {task_type}",
        )
    try:
        return GenerationRequest(
            task_type=task_type,
            model=model or default_model(task_type),
            prompt=prompt,
            negative_prompt=negative_prompt,
            aspect_ratio=aspect_ratio,
            resolution=resolution,
            seed_image=seed_image,
            seed_video=seed_video,
        )
    except (ValidationError, KeyError) as exc:
        raise GenerationError(ErrorKind.INVALID_INPUT, detail=str(exc)) from exc
