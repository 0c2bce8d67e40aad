from .catalog import CATALOG_SNAPSHOT_DATE as CATALOG_SNAPSHOT_DATE
from .catalog import IMAGE_ASPECT_RATIOS as IMAGE_ASPECT_RATIOS
from .catalog import VIDEO_ASPECT_RATIOS as VIDEO_ASPECT_RATIOS
from .catalog import VIDEO_RESOLUTIONS as VIDEO_RESOLUTIONS
from .catalog import aspect_ratio_choices as aspect_ratio_choices
from .catalog import default_model as default_model
from .catalog import list_model_entries as list_model_entries
from .generation import ASPECT_RATIO_AUTO as ASPECT_RATIO_AUTO
from .generation import build_backend_from_env as build_backend_from_env
from .generation import build_request as build_request
from .generation import load_poll_settings_from_env as load_poll_settings_from_env
from .generation import resolve_output_dir as resolve_output_dir
from .generation import resolve_api_key as resolve_api_key

__all__ = [
    "CATALOG_SNAPSHOT_DATE",
    "IMAGE_ASPECT_RATIOS",
    "VIDEO_ASPECT_RATIOS",
    "VIDEO_RESOLUTIONS",
    "ASPECT_RATIO_AUTO",
    "aspect_ratio_choices",
    "build_backend_from_env",
    "build_request",
    "default_model",
    "list_model_entries",
    "load_poll_settings_from_env",
    "resolve_api_key",
    "resolve_output_dir",
]
