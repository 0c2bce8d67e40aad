import argparse
import json
import logging
import sys
import threading
import time
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from textwrap import dedent
from typing import Dict, List, Optional, cast

from dotenv import load_dotenv

from backends import BackendClient
from core.errors import GenerationError, user_message
from core.io_utils import ensure_dir, load_media_file
from core.models import (
    TASK_EDIT_IMAGE,
    TASK_EXTEND_VIDEO,
    TASK_GENERATE_IMAGE,
    TASK_GENERATE_VIDEO,
    GenerationRequest,
    JobStatus,
    JobUpdate,
    MediaPayload,
)
from core.polling import CancelToken, PollSettings
from core.runner import build_extension_request, persist_job_output, run_job
from core.services import (
    ASPECT_RATIO_AUTO,
    CATALOG_SNAPSHOT_DATE,
    IMAGE_ASPECT_RATIOS,
    VIDEO_ASPECT_RATIOS,
    VIDEO_RESOLUTIONS,
    build_backend_from_env,
    build_request,
    list_model_entries,
    load_poll_settings_from_env,
    resolve_api_key,
    resolve_output_dir,
)

PACKAGE_NAME = "media-gen-studio"
LOGGER = logging.getLogger("media_gen_studio")
EXIT_CANCELLED = 130
ALL_TASKS = [TASK_GENERATE_IMAGE, TASK_EDIT_IMAGE, TASK_GENERATE_VIDEO, TASK_EXTEND_VIDEO]


def main() -> int:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()
    _configure_logging(verbose=args.verbose, quiet=args.quiet)

    try:
        if args.command == "models":
            _run_models(args)
            return 0

        backend = build_backend_from_env()
        api_key = resolve_api_key(args.api_key)

        if args.command == "validate-key":
            return _run_validate_key(backend, api_key, quiet=args.quiet)

        request = _request_from_args(args)
        settings = load_poll_settings_from_env()
        output_root = ensure_dir(Path(args.output_dir))
        update = _run_and_save(backend, api_key, request, settings, output_root, args.quiet)
        exit_code = _exit_code(update)
        extend_prompt = getattr(args, "extend_prompt", None)
        if exit_code != 0 or not extend_prompt:
            return exit_code

        extension = build_extension_request(request, update.artifact, prompt=extend_prompt)
        update = _run_and_save(backend, api_key, extension, settings, output_root, args.quiet)
        return _exit_code(update)
    except GenerationError as exc:
        _console_error(f"error: {user_message(exc.to_job_error())}")
        if exc.detail:
            _console_error(f"detail: {exc.detail}")
        return 1
    except Exception as exc:  # noqa: BLE001
        _console_error(f"error: {exc}")
        LOGGER.debug("CLI execution failed", exc_info=True)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate and edit images and generate/extend videos with Gemini models",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog=_root_help_epilog(),
    )
    parser.add_argument(
        "--output-dir",
        default=resolve_output_dir(),
        help="Where results are saved (default: MGS_OUTPUT_DIR or runs)",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="Gemini API key (default: GEMINI_API_KEY / GOOGLE_API_KEY from env or .env).",
    )
    verbosity_group = parser.add_mutually_exclusive_group()
    verbosity_group.add_argument("--verbose", action="store_true", help="Show debug logs.")
    verbosity_group.add_argument("--quiet", action="store_true", help="Only show errors.")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_app_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    image = _new_subparser(subparsers, "image", "Create an image from a prompt", _image_epilog())
    image.add_argument("--prompt", required=True)
    image.add_argument("--model", default=None)
    image.add_argument("--aspect-ratio", choices=IMAGE_ASPECT_RATIOS, default="1:1")
    _attach_negative_prompt(image)

    edit = _new_subparser(subparsers, "edit", "Edit an image with a prompt", _edit_epilog())
    edit.add_argument("--prompt", required=True)
    edit.add_argument("--input-image", required=True, help="Path to the image to edit")
    edit.add_argument("--model", default=None)

    video = _new_subparser(subparsers, "video", "Create a video", _video_epilog())
    video.add_argument("--prompt", required=True)
    video.add_argument("--input-image", default=None, help="Optional inspiration image")
    video.add_argument("--extend-prompt", default=None, help="Extend the result right away")
    _attach_video_options(video)

    extend = _new_subparser(subparsers, "extend", "Extend an existing video", _extend_epilog())
    extend.add_argument("--prompt", required=True)
    extend.add_argument("--input-video", required=True, help="Path to a previously saved video")
    _attach_video_options(extend)

    _new_subparser(
        subparsers,
        "validate-key",
        "Check that the API key is accepted",
        "Example:\n  mgs validate-key --api-key AIza...",
    )

    models = _new_subparser(subparsers, "models", "Show built-in model IDs", _models_epilog())
    models.add_argument("--task-type", choices=ALL_TASKS, default=None)
    models.add_argument(
        "--recommend",
        action="store_true",
        help="Only show models marked as recommended in the built-in catalog.",
    )
    models.add_argument("--format", choices=["text", "json"], default="text")
    return parser


def _new_subparser(subparsers, name: str, help_text: str, epilog: str):
    return subparsers.add_parser(
        name,
        help=help_text,
        description=help_text,
        formatter_class=argparse.RawTextHelpFormatter,
        epilog=epilog,
    )


def _attach_negative_prompt(subparser) -> None:
    subparser.add_argument(
        "--negative-prompt-enabled",
        choices=["on", "off"],
        default="off",
        help="Enable or disable negative prompt input (default: off).",
    )
    subparser.add_argument("--negative-prompt", default=None)


def _attach_video_options(subparser) -> None:
    subparser.add_argument("--model", default=None)
    subparser.add_argument(
        "--aspect-ratio",
        choices=VIDEO_ASPECT_RATIOS + [ASPECT_RATIO_AUTO],
        default=VIDEO_ASPECT_RATIOS[0],
        help="'auto' picks the ratio closest to --input-image.",
    )
    subparser.add_argument("--resolution", choices=VIDEO_RESOLUTIONS, default=None)
    _attach_negative_prompt(subparser)


def _app_version() -> str:
    try:
        return version(PACKAGE_NAME)
    except PackageNotFoundError:
        return "0.1.0-dev"


def _request_from_args(args) -> GenerationRequest:
    seed_image: Optional[MediaPayload] = None
    seed_video: Optional[MediaPayload] = None
    input_image = getattr(args, "input_image", None)
    input_video = getattr(args, "input_video", None)
    if input_image:
        seed_image = load_media_file(input_image, expect="image")
    if input_video:
        seed_video = load_media_file(input_video, expect="video")

    task_type = {
        "image": TASK_GENERATE_IMAGE,
        "edit": TASK_EDIT_IMAGE,
        "video": TASK_GENERATE_VIDEO,
        "extend": TASK_EXTEND_VIDEO,
    }[args.command]
    return build_request(
        task_type=task_type,
        prompt=args.prompt,
        model=args.model,
        negative_prompt=_negative_prompt_from_args(args),
        aspect_ratio=getattr(args, "aspect_ratio", None),
        resolution=getattr(args, "resolution", None),
        seed_image=seed_image,
        seed_video=seed_video,
    )


def _negative_prompt_from_args(args) -> Optional[str]:
    if getattr(args, "negative_prompt_enabled", "off") != "on":
        return None
    text = (cast(Optional[str], getattr(args, "negative_prompt", None)) or "").strip()
    if not text:
        raise ValueError("negative_prompt is required when --negative-prompt-enabled is on")
    return text


def _run_and_save(
    backend: BackendClient,
    api_key: str,
    request: GenerationRequest,
    settings: PollSettings,
    output_root: Path,
    quiet: bool,
) -> JobUpdate:
    update = _run_job_with_progress(backend, api_key, request, settings, quiet)
    if update.status == JobStatus.SUCCEEDED:
        run_dir = persist_job_output(output_root, request, update)
        _console_print(f"ok task={request.task_type} run_dir={run_dir}", quiet=quiet)
        if update.artifact is not None and update.artifact.text:
            _console_print(f"model says: {update.artifact.text}", quiet=quiet)
    elif update.status == JobStatus.FAILED and update.error is not None:
        _console_error(f"failed: {user_message(update.error)}")
        if update.error.detail:
            LOGGER.info("failure detail: %s", update.error.detail)
    elif update.status == JobStatus.CANCELLED:
        _console_error("cancelled")
    return update


def _run_job_with_progress(
    backend: BackendClient,
    api_key: str,
    request: GenerationRequest,
    settings: PollSettings,
    quiet: bool,
) -> JobUpdate:
    token = CancelToken()
    state: Dict[str, Optional[JobUpdate]] = {"latest": None}

    def _target() -> None:
        for update in run_job(backend, request, api_key, settings=settings, cancel_token=token):
            state["latest"] = update

    thread = threading.Thread(target=_target, daemon=True)
    thread.start()
    spinner = "|/-\\"
    spin_idx = 0
    started = time.monotonic()
    while thread.is_alive():
        try:
            if not quiet:
                sys.stdout.write(
                    f"\r[waiting {spinner[spin_idx % len(spinner)]}] "
                    f"{_describe_progress(request, state['latest'])} "
                    f"... {int(time.monotonic() - started)}s"
                )
                sys.stdout.flush()
            spin_idx += 1
            thread.join(0.2)
        except KeyboardInterrupt:
            token.cancel()
            if not quiet:
                sys.stdout.write("\ncancelling after the current request ...\n")

    if not quiet:
        # Clear spinner line.
        sys.stdout.write("\r" + (" " * 120) + "\r")
        sys.stdout.flush()
        _console_print(f"done in {int(time.monotonic() - started)}s: {request.task_type}", False)
    latest = state["latest"]
    if latest is None or not latest.terminal:
        raise RuntimeError("job stream ended without a terminal update")
    return latest


def _describe_progress(request: GenerationRequest, update: Optional[JobUpdate]) -> str:
    if update is None:
        return f"{request.task_type} starting"
    text = f"{request.task_type} {update.phase.value}"
    if update.poll_count:
        text += f" (check #{update.poll_count})"
    return text


def _exit_code(update: JobUpdate) -> int:
    if update.status == JobStatus.SUCCEEDED:
        return 0
    if update.status == JobStatus.CANCELLED:
        return EXIT_CANCELLED
    return 1


def _run_validate_key(backend: BackendClient, api_key: str, quiet: bool) -> int:
    result = backend.validate_key(api_key)
    if result.is_valid:
        _console_print("API key is valid.", quiet=quiet)
        return 0
    message = user_message(result.error) if result.error else "API key is not valid."
    _console_error(f"invalid: {message}")
    return 1


def _collect_model_entries(task_type: Optional[str], recommend_only: bool) -> List[Dict[str, str]]:
    return list_model_entries(task_type=task_type, recommend_only=recommend_only)


def _run_models(args) -> None:
    entries = _collect_model_entries(task_type=args.task_type, recommend_only=args.recommend)
    if args.format == "json":
        payload = {
            "snapshot_date": CATALOG_SNAPSHOT_DATE,
            "task_type_filter": args.task_type,
            "recommend_filter": args.recommend,
            "models": entries,
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    print(f"Built-in model IDs (curated snapshot: {CATALOG_SNAPSHOT_DATE}):")
    print("")
    headers = ("model_id", "tasks", "status", "note")
    print(f"{headers[0]:<32} {headers[1]:<30} {headers[2]:<12} {headers[3]}")
    print("-" * 110)
    for row in entries:
        print(f"{row['id']:<32} {row['tasks']:<30} {row['status']:<12} {row['note']}")
        print(f"{'':<32} docs: {row['docs']}")


def _root_help_epilog() -> str:
    return dedent(
        """\
        Quick Examples:
          1) Create an image:
             mgs image --prompt "A lighthouse at dusk" --aspect-ratio 16:9
          2) Edit an image:
             mgs edit --prompt "Make it winter" --input-image photo.png
          3) Create a video, then extend it:
             mgs video --prompt "A paper boat on a stream"
               --extend-prompt "The boat drifts into a tunnel"
          4) Extend a saved video:
             mgs extend --prompt "Camera pulls back" --input-video runs/.../video.mp4
          5) Check a key / list models:
             mgs validate-key
             mgs models --task-type generate_video

        Tips:
          - Results are saved under '--output-dir' (default: MGS_OUTPUT_DIR or runs).
          - Video jobs poll every VIDEO_POLL_INTERVAL_SECONDS (default 10s) until
            VIDEO_POLL_TIMEOUT_SECONDS (default 900s); Ctrl-C cancels.
          - Use '--verbose' to print debug logs.
        """
    )


def _image_epilog() -> str:
    return dedent(
        """\
        Example:
          mgs image --prompt "A cozy cabin in snow" --aspect-ratio 4:3
        """
    )


def _edit_epilog() -> str:
    return dedent(
        """\
        Example:
          mgs edit --prompt "Turn into watercolor" --input-image input.png

        Notes:
          - The model may answer with text next to the image; it is printed.
        """
    )


def _video_epilog() -> str:
    return dedent(
        """\
        Examples:
          mgs video --prompt "Waves crashing on cliffs" --resolution 1080p
          mgs video --prompt "Bring this to life" --input-image still.png --aspect-ratio auto

        Notes:
          - '--extend-prompt' submits an extension of the fresh video in the same run.
        """
    )


def _extend_epilog() -> str:
    return dedent(
        """\
        Example:
          mgs extend --prompt "The sun sets" --input-video runs/latest/video.mp4
        """
    )


def _models_epilog() -> str:
    return dedent(
        """\
        Examples:
          mgs models
          mgs models --recommend
          mgs models --task-type edit_image --format json
        """
    )


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    if quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _console_print(message: str, quiet: bool) -> None:
    if quiet:
        return
    print(message)


def _console_error(message: str) -> None:
    print(message, file=sys.stderr)


if __name__ == "__main__":
    raise SystemExit(main())
