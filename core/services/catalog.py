from typing import Dict, List, Optional

from core.models import (
    TASK_EDIT_IMAGE,
    TASK_EXTEND_VIDEO,
    TASK_GENERATE_IMAGE,
    TASK_GENERATE_VIDEO,
)

CATALOG_SNAPSHOT_DATE = "2025-09-01"
IMAGE_ASPECT_RATIOS = ["1:1", "16:9", "9:16", "4:3", "3:4"]
VIDEO_ASPECT_RATIOS = ["16:9", "9:16", "1:1"]
VIDEO_RESOLUTIONS = ["720p", "1080p"]
VIDEO_DOCS = "https://ai.google.dev/gemini-api/docs/video"
MODEL_CATALOG = [
    {
        "id": "imagen-4.0-generate-001",
        "tasks": [TASK_GENERATE_IMAGE],
        "status": "recommended",
        "note": "Imagen 4 text-to-image",
        "docs": "https://ai.google.dev/gemini-api/docs/imagen",
    },
    {
        "id": "imagen-4.0-ultra-generate-001",
        "tasks": [TASK_GENERATE_IMAGE],
        "status": "available",
        "note": "Imagen 4 Ultra, higher fidelity",
        "docs": "https://ai.google.dev/gemini-api/docs/imagen",
    },
    {
        "id": "gemini-2.5-flash-image-preview",
        "tasks": [TASK_EDIT_IMAGE],
        "status": "recommended",
        "note": "Gemini image editing with text commentary",
        "docs": "https://ai.google.dev/gemini-api/docs/image-generation",
    },
    {
        "id": "veo-2.0-generate-001",
        "tasks": [TASK_GENERATE_VIDEO, TASK_EXTEND_VIDEO],
        "status": "recommended",
        "note": "Veo 2, silent video",
        "docs": VIDEO_DOCS,
    },
    {
        "id": "veo-3.0-preview-001",
        "tasks": [TASK_GENERATE_VIDEO, TASK_EXTEND_VIDEO],
        "status": "available",
        "note": "Veo 3 preview with audio",
        "docs": VIDEO_DOCS,
    },
    {
        "id": "veo-3.0-fast-preview-001",
        "tasks": [TASK_GENERATE_VIDEO, TASK_EXTEND_VIDEO],
        "status": "available",
        "note": "Veo 3 fast preview with audio",
        "docs": VIDEO_DOCS,
    },
]
DEFAULT_MODELS = {
    TASK_GENERATE_IMAGE: "imagen-4.0-generate-001",
    TASK_EDIT_IMAGE: "gemini-2.5-flash-image-preview",
    TASK_GENERATE_VIDEO: "veo-2.0-generate-001",
    TASK_EXTEND_VIDEO: "veo-2.0-generate-001",
}


def list_model_entries(task_type: Optional[str], recommend_only: bool) -> List[Dict[str, str]]:
    rows: List[Dict[str, str]] = []
    for item in MODEL_CATALOG:
        tasks = list(item["tasks"])
        if task_type and task_type not in tasks:
            continue
        if recommend_only and item["status"] != "recommended":
            continue
        rows.append(
            {
                "id": str(item["id"]),
                "tasks": ",".join(tasks),
                "status": str(item["status"]),
                "note": str(item["note"]),
                "docs": str(item["docs"]),
            }
        )
    return rows


def default_model(task_type: str) -> str:
    return DEFAULT_MODELS[task_type]


def aspect_ratio_choices(task_type: str) -> List[str]:
    if task_type in {TASK_GENERATE_VIDEO, TASK_EXTEND_VIDEO}:
        return list(VIDEO_ASPECT_RATIOS)
    return list(IMAGE_ASPECT_RATIOS)
