import argparse


def run() -> None:
    parser = argparse.ArgumentParser(
        prog="mgs-tui",
        description="Terminal UI for Gemini image and video generation",
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Where saved results go (default: MGS_OUTPUT_DIR or runs).",
    )
    args = parser.parse_args()
    try:
        from ui.tui.app import run_tui_app
    except ModuleNotFoundError as exc:
        if exc.name in {"textual", "rich"}:
            raise SystemExit(f"{exc.name} is not installed. Run: pip install -e .[tui]") from exc
        raise
    run_tui_app(output_dir=args.output_dir)
