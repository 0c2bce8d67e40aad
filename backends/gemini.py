import base64
import binascii
import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlsplit

import requests

from backends.base import BackendClient
from core.errors import (
    GenerationError,
    error_from_operation,
    error_from_payload,
)
from core.models import (
    TASK_EDIT_IMAGE,
    TASK_EXTEND_VIDEO,
    TASK_GENERATE_IMAGE,
    TASK_GENERATE_VIDEO,
    Artifact,
    ErrorKind,
    GenerationRequest,
    KeyValidation,
    MediaPayload,
    Operation,
    OperationFailed,
    OperationRunning,
    OperationSucceeded,
)

LOGGER = logging.getLogger("media_gen_studio")

GEMINI_BASE_URL_DEFAULT = "https://generativelanguage.googleapis.com/v1beta"
KEY_CHECK_MODEL = "gemini-2.5-flash"
DEFAULT_VIDEO_MIME = "video/mp4"


class GeminiBackend(BackendClient):
    provider = "gemini"

    def __init__(self, base_url: str = GEMINI_BASE_URL_DEFAULT, timeout_seconds: int = 120):
        super().__init__(base_url=base_url, timeout_seconds=timeout_seconds)

    def build_headers(self, api_key: str) -> Dict[str, str]:
        if not api_key or not api_key.strip():
            raise GenerationError(ErrorKind.AUTH_ERROR, detail="GEMINI_API_KEY is missing")
        return {
            "x-goog-api-key": api_key.strip(),
            "Content-Type": "application/json",
        }

    def submit_generation(
        self, request: GenerationRequest, api_key: str
    ) -> Union[Artifact, Operation]:
        if request.task_type == TASK_GENERATE_IMAGE:
            url = self._model_url(request.model, "predict")
            raw = self._post_json(url, api_key, self.build_image_payload(request))
            return self.extract_predicted_image(raw)
        if request.task_type == TASK_EDIT_IMAGE:
            url = self._model_url(request.model, "generateContent")
            raw = self._post_json(url, api_key, self.build_edit_payload(request))
            return self.extract_edited_image(raw)
        if request.task_type in {TASK_GENERATE_VIDEO, TASK_EXTEND_VIDEO}:
            url = self._model_url(request.model, "predictLongRunning")
            raw = self._post_json(url, api_key, self.build_video_payload(request))
            operation = decode_operation(raw)
            LOGGER.info("video operation started: %s", operation.name)
            return operation
        raise GenerationError(
            ErrorKind.INVALID_INPUT, detail=f"Unsupported task_type: {request.task_type}"
        )

    def poll_operation(self, name: str, api_key: str) -> Operation:
        raw = self._get_json(f"{self.base_url}/{name.lstrip('/')}", api_key)
        return decode_operation(raw)

    def fetch_artifact(self, uri: str, api_key: str) -> Artifact:
        if not api_key or not api_key.strip():
            raise GenerationError(ErrorKind.AUTH_ERROR, detail="GEMINI_API_KEY is missing")
        LOGGER.debug("fetching artifact from %s", _strip_query(uri))
        try:
            resp = requests.get(
                uri,
                params={"key": api_key.strip()},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            # The exception text carries the full URL, key included.
            raise GenerationError(
                ErrorKind.NETWORK_ERROR,
                detail=f"{type(exc).__name__} fetching {_strip_query(uri)}",
            ) from exc
        if not resp.ok:
            raise error_from_payload(self._json_or_text(resp), status_code=resp.status_code)
        if not resp.content:
            raise GenerationError(
                ErrorKind.UPSTREAM_MALFORMED, detail=f"empty artifact body from {_strip_query(uri)}"
            )
        mime = resp.headers.get("content-type", DEFAULT_VIDEO_MIME).split(";")[0].strip()
        if not mime or mime == "application/octet-stream":
            mime = DEFAULT_VIDEO_MIME
        return Artifact(kind="video", data=resp.content, mime_type=mime, source_uri=uri)

    def validate_key(self, api_key: str) -> KeyValidation:
        if not api_key or not api_key.strip():
            error = GenerationError(ErrorKind.AUTH_ERROR, detail="API key is required.")
            return KeyValidation(is_valid=False, error=error.to_job_error())
        payload = {
            "contents": [{"parts": [{"text": "ping"}]}],
            "generationConfig": {"maxOutputTokens": 1, "thinkingConfig": {"thinkingBudget": 0}},
        }
        try:
            self._post_json(self._model_url(KEY_CHECK_MODEL, "generateContent"), api_key, payload)
        except GenerationError as exc:
            LOGGER.info("API key validation failed: %s", exc.detail)
            return KeyValidation(is_valid=False, error=exc.to_job_error())
        return KeyValidation(is_valid=True)

    def build_image_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        parameters: Dict[str, Any] = {"sampleCount": 1}
        if request.aspect_ratio:
            parameters["aspectRatio"] = request.aspect_ratio
        if request.negative_prompt:
            parameters["negativePrompt"] = request.negative_prompt
        return {"instances": [{"prompt": request.prompt}], "parameters": parameters}

    def build_edit_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = []
        if request.seed_image is not None:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": request.seed_image.mime_type,
                        "data": request.seed_image.to_base64(),
                    }
                }
            )
        parts.append({"text": request.prompt})
        return {
            "contents": [{"parts": parts}],
            "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
        }

    def build_video_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        instance: Dict[str, Any] = {"prompt": request.prompt}
        if request.seed_image is not None:
            instance["image"] = _encoded_media(request.seed_image)
        if request.seed_video is not None:
            instance["video"] = _encoded_media(request.seed_video)

        parameters: Dict[str, Any] = {}
        if request.aspect_ratio:
            parameters["aspectRatio"] = request.aspect_ratio
        if request.resolution:
            parameters["resolution"] = request.resolution
        if request.negative_prompt:
            parameters["negativePrompt"] = request.negative_prompt
        if request.model.startswith("veo-3"):
            parameters["generateAudio"] = True
        return {"instances": [instance], "parameters": parameters}

    def extract_predicted_image(self, raw: Dict[str, Any]) -> Artifact:
        predictions = raw.get("predictions")
        if isinstance(predictions, list):
            for item in predictions:
                if not isinstance(item, dict):
                    continue
                data = item.get("bytesBase64Encoded")
                if isinstance(data, str) and data:
                    mime = _mime_type(item.get("mimeType"))
                    return Artifact(kind="image", data=_decode_b64(data), mime_type=mime)
        raise GenerationError(
            ErrorKind.UPSTREAM_MALFORMED,
            detail=f"no image in prediction response: {_filter_reason(raw) or str(raw)[:300]}",
        )

    def extract_edited_image(self, raw: Dict[str, Any]) -> Artifact:
        texts: List[str] = []
        media: Optional[MediaPayload] = None
        for part in _candidate_parts(raw):
            text = part.get("text")
            if isinstance(text, str):
                texts.append(text)
                continue
            for key in ("inlineData", "inline_data"):
                inline = part.get(key)
                if not isinstance(inline, dict):
                    continue
                data = inline.get("data")
                if not isinstance(data, str) or not data:
                    raise GenerationError(
                        ErrorKind.UPSTREAM_MALFORMED, detail=f"{key} part without image data"
                    )
                mime = _mime_type(inline.get("mimeType", inline.get("mime_type")))
                media = MediaPayload(data=_decode_b64(data), mime_type=mime)
        commentary = "".join(texts).strip() or None
        if media is None:
            raise GenerationError(
                ErrorKind.UPSTREAM_MALFORMED,
                detail=commentary or f"no image part in response: {str(raw)[:300]}",
            )
        return Artifact(kind="image", data=media.data, mime_type=media.mime_type, text=commentary)

    def _model_url(self, model: str, method: str) -> str:
        model_path = model if model.startswith("models/") else f"models/{model}"
        return f"{self.base_url}/{model_path}:{method}"


def decode_operation(raw: Any) -> Operation:
    """Decode a long-running operation payload into its tagged variant.

    A payload without a usable ``name`` is rejected outright. A done operation
    that carries neither an error nor a video reference becomes a failed
    operation with ``UPSTREAM_MALFORMED``.
    """
    if not isinstance(raw, dict):
        raise GenerationError(
            ErrorKind.UPSTREAM_MALFORMED, detail=f"operation is not an object: {str(raw)[:500]}"
        )
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise GenerationError(
            ErrorKind.UPSTREAM_MALFORMED, detail=f"operation without name: {str(raw)[:500]}"
        )
    done = raw.get("done", False)
    if not isinstance(done, bool):
        raise GenerationError(
            ErrorKind.UPSTREAM_MALFORMED, detail=f"operation {name} has non-boolean done"
        )

    if not done:
        metadata = raw.get("metadata")
        return OperationRunning(name=name, metadata=metadata if isinstance(metadata, dict) else {})

    if raw.get("error") is not None:
        return OperationFailed(name=name, error=error_from_operation(raw["error"]))

    response = raw.get("response")
    uri = _find_video_uri(response)
    if uri:
        return OperationSucceeded(name=name, video_uri=uri)

    reason = _filter_reason(response)
    detail = f"operation {name} completed without a video reference"
    if reason:
        detail = f"{detail}: {reason}"
    error = GenerationError(ErrorKind.UPSTREAM_MALFORMED, detail=detail)
    return OperationFailed(name=name, error=error.to_job_error())


def _find_video_uri(response: Any) -> Optional[str]:
    if not isinstance(response, dict):
        return None
    containers = [response]
    nested = response.get("generateVideoResponse")
    if isinstance(nested, dict):
        containers.append(nested)
    for container in containers:
        for key in ("generatedSamples", "generatedVideos"):
            samples = container.get(key)
            if not isinstance(samples, list):
                continue
            for sample in samples:
                video = sample.get("video") if isinstance(sample, dict) else None
                if isinstance(video, dict):
                    uri = video.get("uri")
                    if isinstance(uri, str) and uri.strip():
                        return uri.strip()
    return None


def _filter_reason(node: Any) -> str:
    if not isinstance(node, dict):
        return ""
    for key in ("raiMediaFilteredReasons", "raiFilteredReasons"):
        reasons = node.get(key)
        if isinstance(reasons, list) and reasons:
            return "; ".join(str(item) for item in reasons)
    nested = node.get("generateVideoResponse")
    if isinstance(nested, dict):
        return _filter_reason(nested)
    return ""


def _candidate_parts(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    candidates = raw.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return []
    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def _encoded_media(media: MediaPayload) -> Dict[str, str]:
    return {"bytesBase64Encoded": media.to_base64(), "mimeType": media.mime_type}


def _decode_b64(value: str) -> bytes:
    try:
        decoded = base64.b64decode(value, validate=True)
    except (ValueError, binascii.Error) as exc:
        raise GenerationError(
            ErrorKind.UPSTREAM_MALFORMED, detail=f"invalid base64 payload: {exc}"
        ) from exc
    if not decoded:
        raise GenerationError(ErrorKind.UPSTREAM_MALFORMED, detail="empty base64 payload")
    return decoded


def _mime_type(value: Any, default: str = "image/png") -> str:
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise GenerationError(
            ErrorKind.UPSTREAM_MALFORMED, detail=f"invalid mimeType: {str(value)[:100]}"
        )
    return value.strip()


def _strip_query(uri: str) -> str:
    parts = urlsplit(uri)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"
