import io
from pathlib import Path

import pytest
from PIL import Image

from core.errors import GenerationError
from core.io_utils import image_dimensions, infer_aspect_ratio, load_media_file, safe_name
from core.models import ErrorKind, MediaPayload
from core.services.catalog import IMAGE_ASPECT_RATIOS, VIDEO_ASPECT_RATIOS


def _image_bytes(size, image_format: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buffer, format=image_format)
    return buffer.getvalue()


def test_load_media_file_sniffs_image_format(tmp_path: Path) -> None:
    # Extension says png, content is jpeg.
    path = tmp_path / "seed.png"
    path.write_bytes(_image_bytes((32, 16), "JPEG"))
    media = load_media_file(str(path), expect="image")
    assert media.mime_type == "image/jpeg"
    assert image_dimensions(media) == (32, 16)


def test_load_media_file_types_video_by_extension(tmp_path: Path) -> None:
    path = tmp_path / "clip.MP4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    media = load_media_file(str(path), expect="video")
    assert media.mime_type == "video/mp4"


@pytest.mark.parametrize(
    ("name", "content", "expect"),
    [
        ("clip.mp4", b"video", "image"),
        ("seed.png", None, "video"),
        ("notes.txt", b"plain text", None),
        ("empty.png", b"", None),
    ],
)
def test_load_media_file_rejects_bad_input(tmp_path: Path, name, content, expect) -> None:
    path = tmp_path / name
    path.write_bytes(_image_bytes((8, 8)) if content is None else content)
    with pytest.raises(GenerationError) as info:
        load_media_file(str(path), expect=expect)
    assert info.value.kind == ErrorKind.INVALID_INPUT


def test_load_media_file_missing(tmp_path: Path) -> None:
    with pytest.raises(GenerationError) as info:
        load_media_file(str(tmp_path / "nope.png"))
    assert info.value.kind == ErrorKind.INVALID_INPUT


@pytest.mark.parametrize(
    ("size", "choices", "expected"),
    [
        ((1600, 900), VIDEO_ASPECT_RATIOS, "16:9"),
        ((720, 1280), VIDEO_ASPECT_RATIOS, "9:16"),
        ((512, 512), VIDEO_ASPECT_RATIOS, "1:1"),
        ((1000, 700), VIDEO_ASPECT_RATIOS, "16:9"),
        ((1000, 700), IMAGE_ASPECT_RATIOS, "4:3"),
        ((600, 800), IMAGE_ASPECT_RATIOS, "3:4"),
    ],
)
def test_infer_aspect_ratio(size, choices, expected) -> None:
    media = MediaPayload(data=_image_bytes(size), mime_type="image/png")
    assert infer_aspect_ratio(media, choices) == expected


def test_infer_aspect_ratio_ignores_non_images() -> None:
    video = MediaPayload(data=b"mp4", mime_type="video/mp4")
    assert infer_aspect_ratio(video, VIDEO_ASPECT_RATIOS) is None
    assert infer_aspect_ratio(None, VIDEO_ASPECT_RATIOS) is None


def test_safe_name() -> None:
    assert safe_name("models/veo/operations/a b?c") == "models-veo-operations-a-b-c"
    assert len(safe_name("x" * 100)) == 40
