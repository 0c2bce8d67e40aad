import io
import json
import mimetypes
import re
from pathlib import Path
from typing import Any, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from core.errors import GenerationError
from core.models import ErrorKind, MediaPayload

VIDEO_EXTENSION_MIME = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
}


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def json_dump(path: Path, payload: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2, default=str)


def safe_name(value: str, max_len: int = 40) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "-", value).strip("-.")
    return cleaned[:max_len]


def load_media_file(path: str, expect: Optional[str] = None) -> MediaPayload:
    """Read a seed file into a MediaPayload.

    Images are opened with Pillow so the MIME type reflects the real format;
    videos are typed by extension.
    """
    source = Path(path)
    if not source.exists() or not source.is_file():
        raise GenerationError(ErrorKind.INVALID_INPUT, detail=f"file not found: {path}")
    data = source.read_bytes()
    if not data:
        raise GenerationError(ErrorKind.INVALID_INPUT, detail=f"file is empty: {path}")

    video_mime = VIDEO_EXTENSION_MIME.get(source.suffix.lower())
    guessed = mimetypes.guess_type(source.name)[0] or ""
    if video_mime is None and guessed.startswith("video/"):
        video_mime = guessed

    if video_mime is not None:
        if expect == "image":
            raise GenerationError(ErrorKind.INVALID_INPUT, detail=f"expected an image: {path}")
        return MediaPayload(data=data, mime_type=video_mime)

    if expect == "video":
        raise GenerationError(ErrorKind.INVALID_INPUT, detail=f"expected a video: {path}")
    mime = image_mime_type(data)
    if mime is None:
        raise GenerationError(ErrorKind.INVALID_INPUT, detail=f"unsupported image file: {path}")
    return MediaPayload(data=data, mime_type=mime)


def image_mime_type(data: bytes) -> Optional[str]:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
    except (UnidentifiedImageError, OSError):
        return None
    if not image_format:
        return None
    return Image.MIME.get(image_format.upper())


def image_dimensions(media: MediaPayload) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(io.BytesIO(media.data)) as image:
            return image.size
    except (UnidentifiedImageError, OSError):
        return None


def infer_aspect_ratio(media: Optional[MediaPayload], choices: Sequence[str]) -> Optional[str]:
    """Pick the supported ratio closest to the seed image's own shape."""
    if media is None or not media.mime_type.startswith("image/") or not choices:
        return None
    dimensions = image_dimensions(media)
    if not dimensions:
        return None
    width, height = dimensions
    if width <= 0 or height <= 0:
        return None
    exact = _reduce_ratio(width, height)
    if exact in choices:
        return exact
    target = width / height
    return min(choices, key=lambda ratio: abs(_ratio_value(ratio) - target))


def _ratio_value(ratio: str) -> float:
    left, right = ratio.split(":", 1)
    return int(left) / int(right)


def _reduce_ratio(width: int, height: int) -> str:
    left = width
    right = height
    while right:
        left, right = right, left % right
    return f"{width // left}:{height // left}"
