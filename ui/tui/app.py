import asyncio
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from dotenv import load_dotenv
from rich.text import Text
from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, VerticalScroll
from textual.widgets import (
    Button,
    Footer,
    Header,
    Input,
    Select,
    Static,
    TabbedContent,
    TabPane,
    TextArea,
)

from core.errors import GenerationError, user_message
from core.io_utils import load_media_file
from core.models import (
    TASK_EDIT_IMAGE,
    TASK_GENERATE_IMAGE,
    TASK_GENERATE_VIDEO,
    GenerationRequest,
    JobStatus,
    JobUpdate,
)
from core.polling import CancelToken
from core.runner import build_extension_request, persist_job_output, run_job
from core.services import (
    ASPECT_RATIO_AUTO,
    IMAGE_ASPECT_RATIOS,
    VIDEO_ASPECT_RATIOS,
    VIDEO_RESOLUTIONS,
    build_backend_from_env,
    build_request,
    default_model,
    list_model_entries,
    load_poll_settings_from_env,
    resolve_api_key,
    resolve_output_dir,
)

TAB_IMAGE = "image"
TAB_EDIT = "edit"
TAB_VIDEO = "video"
TAB_BUTTONS = {
    TAB_IMAGE: ["image-run", "image-save"],
    TAB_EDIT: ["edit-run", "edit-save"],
    TAB_VIDEO: ["video-run", "video-extend", "video-save"],
}


def _model_options(task_type: str) -> List[Tuple[str, str]]:
    return [
        (f"{row['id']} ({row['status']})", row["id"])
        for row in list_model_entries(task_type=task_type, recommend_only=False)
    ]


class MediaStudioTuiApp(App[None]):
    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit", show=True),
    ]

    CSS = """
    Screen {
        layout: vertical;
    }

    TabbedContent {
        height: 1fr;
    }

    .section {
        padding: 1;
    }

    .form-row {
        height: auto;
        margin-bottom: 1;
    }

    .form-row > * {
        width: 1fr;
        margin-right: 1;
    }

    .prompt {
        height: 6;
    }

    .status {
        height: 6;
        border: solid $primary;
        padding: 0 1;
    }
    """

    def __init__(self, output_dir: str = "runs") -> None:
        super().__init__()
        self.output_root = Path(output_dir)
        self.backend = build_backend_from_env()
        self.poll_settings = load_poll_settings_from_env()
        self.api_key = resolve_api_key()
        self._tokens: Dict[str, CancelToken] = {}
        self._tasks: Dict[str, asyncio.Task[None]] = {}
        self._results: Dict[str, Tuple[GenerationRequest, JobUpdate]] = {}

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with TabbedContent():
            with TabPane("API Key", id="tab-key"):
                with VerticalScroll(classes="section"):
                    yield Input(
                        value=self.api_key,
                        placeholder="Paste your Gemini API key here",
                        password=True,
                        id="key-input",
                    )
                    yield Button("Validate", id="key-validate", variant="primary")
                    yield Static("", id="key-status", classes="status")
            with TabPane("Create Image", id="tab-image"):
                with VerticalScroll(classes="section"):
                    yield TextArea(id="image-prompt", classes="prompt")
                    with Horizontal(classes="form-row"):
                        yield Select(
                            _model_options(TASK_GENERATE_IMAGE),
                            value=default_model(TASK_GENERATE_IMAGE),
                            allow_blank=False,
                            id="image-model",
                        )
                        yield Select(
                            [(ratio, ratio) for ratio in IMAGE_ASPECT_RATIOS],
                            value=IMAGE_ASPECT_RATIOS[0],
                            allow_blank=False,
                            id="image-aspect",
                        )
                        yield Input(placeholder="Negative prompt (optional)", id="image-negative")
                    with Horizontal(classes="form-row"):
                        yield Button("Generate", id="image-run", variant="primary")
                        yield Button("Cancel", id="image-cancel")
                        yield Button("Save", id="image-save")
                    yield Static("Ready.", id="image-status", classes="status")
            with TabPane("Edit Image", id="tab-edit"):
                with VerticalScroll(classes="section"):
                    yield TextArea(id="edit-prompt", classes="prompt")
                    with Horizontal(classes="form-row"):
                        yield Input(placeholder="Image to edit (path)", id="edit-input-image")
                        yield Select(
                            _model_options(TASK_EDIT_IMAGE),
                            value=default_model(TASK_EDIT_IMAGE),
                            allow_blank=False,
                            id="edit-model",
                        )
                    with Horizontal(classes="form-row"):
                        yield Button("Edit", id="edit-run", variant="primary")
                        yield Button("Cancel", id="edit-cancel")
                        yield Button("Save", id="edit-save")
                    yield Static("Ready.", id="edit-status", classes="status")
            with TabPane("Create Video", id="tab-video"):
                with VerticalScroll(classes="section"):
                    yield TextArea(id="video-prompt", classes="prompt")
                    with Horizontal(classes="form-row"):
                        yield Select(
                            _model_options(TASK_GENERATE_VIDEO),
                            value=default_model(TASK_GENERATE_VIDEO),
                            allow_blank=False,
                            id="video-model",
                        )
                        yield Select(
                            [(ratio, ratio) for ratio in VIDEO_ASPECT_RATIOS]
                            + [("auto (from image)", ASPECT_RATIO_AUTO)],
                            value=VIDEO_ASPECT_RATIOS[0],
                            allow_blank=False,
                            id="video-aspect",
                        )
                        yield Select(
                            [(item, item) for item in VIDEO_RESOLUTIONS],
                            value=VIDEO_RESOLUTIONS[0],
                            allow_blank=False,
                            id="video-resolution",
                        )
                    with Horizontal(classes="form-row"):
                        yield Input(
                            placeholder="Inspiration image (optional path)",
                            id="video-input-image",
                        )
                        yield Input(placeholder="Negative prompt (optional)", id="video-negative")
                    with Horizontal(classes="form-row"):
                        yield Button("Generate", id="video-run", variant="primary")
                        yield Button("Extend", id="video-extend")
                        yield Button("Cancel", id="video-cancel")
                        yield Button("Save", id="video-save")
                    yield Static("Ready.", id="video-status", classes="status")
        yield Footer()

    def on_mount(self) -> None:
        for tab in TAB_BUTTONS:
            self._sync_buttons(tab)

    def on_unmount(self) -> None:
        for token in self._tokens.values():
            token.cancel()

    @on(Input.Changed, "#key-input")
    def on_key_changed(self) -> None:
        self.api_key = self.query_one("#key-input", Input).value.strip()

    @on(Button.Pressed, "#key-validate")
    async def on_key_validate(self) -> None:
        button = self.query_one("#key-validate", Button)
        button.disabled = True
        self._set_status("key", "Validating ...")
        try:
            result = await asyncio.to_thread(self.backend.validate_key, self.api_key)
        finally:
            button.disabled = False
        if result.is_valid:
            self._set_status("key", Text("API key is valid.", style="bold green"))
            return
        message = user_message(result.error) if result.error else "API key is not valid."
        self._set_status("key", Text(message, style="bold red"))

    @on(Button.Pressed, "#image-run")
    def on_image_run(self) -> None:
        self._start_job(TAB_IMAGE, self._collect_image_request)

    @on(Button.Pressed, "#edit-run")
    def on_edit_run(self) -> None:
        self._start_job(TAB_EDIT, self._collect_edit_request)

    @on(Button.Pressed, "#video-run")
    def on_video_run(self) -> None:
        self._start_job(TAB_VIDEO, self._collect_video_request)

    @on(Button.Pressed, "#video-extend")
    def on_video_extend(self) -> None:
        self._start_job(TAB_VIDEO, self._collect_extension_request)

    @on(Button.Pressed, "#image-cancel")
    @on(Button.Pressed, "#edit-cancel")
    @on(Button.Pressed, "#video-cancel")
    def on_cancel(self, event: Button.Pressed) -> None:
        tab = (event.button.id or "").split("-", 1)[0]
        token = self._tokens.get(tab)
        if token is None or tab not in self._tasks:
            self._set_status(tab, "Nothing to cancel.")
            return
        token.cancel()
        self._set_status(tab, "Cancelling after the current request ...")

    @on(Button.Pressed, "#image-save")
    @on(Button.Pressed, "#edit-save")
    @on(Button.Pressed, "#video-save")
    def on_save(self, event: Button.Pressed) -> None:
        tab = (event.button.id or "").split("-", 1)[0]
        self._set_status(tab, self._save_result(tab))

    def _save_result(self, tab: str) -> Union[str, Text]:
        result = self._results.get(tab)
        if result is None:
            return "Nothing to save yet."
        request, update = result
        try:
            run_dir = persist_job_output(self.output_root, request, update)
        except OSError as exc:
            return Text(f"Could not save: {exc}", style="bold red")
        return f"Saved to {run_dir}"

    def _collect_image_request(self) -> GenerationRequest:
        return build_request(
            task_type=TASK_GENERATE_IMAGE,
            prompt=self.query_one("#image-prompt", TextArea).text,
            model=self._select_value("#image-model"),
            aspect_ratio=self._select_value("#image-aspect"),
            negative_prompt=self.query_one("#image-negative", Input).value,
        )

    def _collect_edit_request(self) -> GenerationRequest:
        path = self.query_one("#edit-input-image", Input).value.strip()
        return build_request(
            task_type=TASK_EDIT_IMAGE,
            prompt=self.query_one("#edit-prompt", TextArea).text,
            model=self._select_value("#edit-model"),
            seed_image=load_media_file(path, expect="image") if path else None,
        )

    def _collect_video_request(self) -> GenerationRequest:
        path = self.query_one("#video-input-image", Input).value.strip()
        return build_request(
            task_type=TASK_GENERATE_VIDEO,
            prompt=self.query_one("#video-prompt", TextArea).text,
            model=self._select_value("#video-model"),
            aspect_ratio=self._select_value("#video-aspect"),
            resolution=self._select_value("#video-resolution"),
            negative_prompt=self.query_one("#video-negative", Input).value,
            seed_image=load_media_file(path, expect="image") if path else None,
        )

    def _collect_extension_request(self) -> GenerationRequest:
        previous = self._results.get(TAB_VIDEO)
        base = previous[0] if previous else self._collect_video_request()
        artifact = previous[1].artifact if previous else None
        prompt = self.query_one("#video-prompt", TextArea).text
        request = build_extension_request(base, artifact, prompt=prompt)
        # The seed video replaces any inspiration image.
        self.query_one("#video-input-image", Input).value = ""
        return request

    def _start_job(self, tab: str, collect: Callable[[], GenerationRequest]) -> None:
        if tab in self._tasks:
            self._set_status(tab, "A job is already running.")
            return
        try:
            request = collect()
        except GenerationError as exc:
            self._set_status(tab, Text(f"{exc.message}\n{exc.detail}", style="bold red"))
            return
        token = CancelToken()
        self._tokens[tab] = token
        self._tasks[tab] = asyncio.create_task(self._run_job_worker(tab, request, token))
        self._sync_buttons(tab)

    async def _run_job_worker(
        self, tab: str, request: GenerationRequest, token: CancelToken
    ) -> None:
        try:
            update = await asyncio.to_thread(self._drain_job, tab, request, token)
        finally:
            self._tasks.pop(tab, None)
            self._tokens.pop(tab, None)
        if update.status == JobStatus.SUCCEEDED:
            self._results[tab] = (request, update)
        self._show_terminal(tab, request, update)
        self._sync_buttons(tab)

    def _drain_job(self, tab: str, request: GenerationRequest, token: CancelToken) -> JobUpdate:
        last: Optional[JobUpdate] = None
        for update in run_job(
            self.backend,
            request,
            self.api_key,
            settings=self.poll_settings,
            cancel_token=token,
        ):
            last = update
            if not update.terminal:
                self.call_from_thread(self._show_progress, tab, update)
        if last is None:
            raise RuntimeError("job stream ended without an update")
        return last

    def _show_progress(self, tab: str, update: JobUpdate) -> None:
        line = f"Running: {update.phase.value}"
        if update.operation_name:
            line += f"\noperation: {update.operation_name}"
        if update.poll_count:
            line += f"\nstatus checks: {update.poll_count}"
        self._set_status(tab, line)

    def _show_terminal(self, tab: str, request: GenerationRequest, update: JobUpdate) -> None:
        if update.status == JobStatus.SUCCEEDED and update.artifact is not None:
            artifact = update.artifact
            lines = [
                f"Done: {request.task_type} -> {artifact.mime_type}, {len(artifact.data)} bytes.",
                "Press Save to write it to disk.",
            ]
            if artifact.text:
                lines.append(f"Model: {artifact.text}")
            self._set_status(tab, Text("\n".join(lines), style="green"))
            return
        if update.status == JobStatus.CANCELLED:
            self._set_status(tab, Text("Cancelled.", style="yellow"))
            return
        if update.error is not None:
            self._set_status(tab, Text(user_message(update.error), style="bold red"))

    def _sync_buttons(self, tab: str) -> None:
        running = tab in self._tasks
        for button_id in TAB_BUTTONS[tab]:
            button = self.query_one(f"#{button_id}", Button)
            button.disabled = running
            if button_id.endswith("-save"):
                button.disabled = running or tab not in self._results
        if tab == TAB_VIDEO and not running:
            result = self._results.get(TAB_VIDEO)
            has_video = bool(result and result[1].artifact and result[1].artifact.kind == "video")
            self.query_one("#video-extend", Button).disabled = not has_video

    def _set_status(self, tab: str, message) -> None:
        self.query_one(f"#{tab}-status", Static).update(message)

    def _select_value(self, selector: str) -> Optional[str]:
        value = self.query_one(selector, Select).value
        if not isinstance(value, str):
            return None
        return value


def run_tui_app(output_dir: Optional[str] = None) -> None:
    load_dotenv()
    app = MediaStudioTuiApp(output_dir=resolve_output_dir(output_dir))
    app.run()
