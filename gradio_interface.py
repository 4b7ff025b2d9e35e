import asyncio
import logging
import os
import socket
import sys
from typing import List, Optional, Tuple

import gradio as gr
from PIL import Image

from providers.session import OcrSession
from providers.types import ModelKind, OcrOutcome, OutcomeStatus, UploadedFile
from wordlens.core.overlay import render_overlay
from wordlens.core.settings import get_settings

# Set up logging to a file
logging.basicConfig(filename="debug.log", level=logging.DEBUG)
logger = logging.getLogger(__name__)

SESSION: Optional[OcrSession] = None

WORD_HEADERS = ["id", "text", "color"]


def get_session() -> OcrSession:
    global SESSION
    if SESSION is None:
        SESSION = OcrSession(get_settings())
    return SESSION


def status_message(outcome: OcrOutcome) -> str:
    if outcome.status == OutcomeStatus.OK:
        return f"Found {len(outcome.words)} words in {outcome.meta.get('elapsed_s', 0)}s"
    if outcome.status == OutcomeStatus.NO_TEXT:
        return "No words found."
    if outcome.status == OutcomeStatus.PARTIAL:
        return f"Found {len(outcome.words)} words; some batches failed: {'; '.join(outcome.errors)}"
    if outcome.status == OutcomeStatus.MODEL_UNAVAILABLE:
        return "Models are not loaded: " + "; ".join(outcome.errors)
    if outcome.status == OutcomeStatus.INVALID_IMAGE:
        return "Could not read this image: " + "; ".join(outcome.errors)
    if outcome.status == OutcomeStatus.STALE:
        return "Superseded by a newer request."
    return "Analysis failed: " + "; ".join(outcome.errors)


def word_rows(session: OcrSession) -> List[List]:
    return [[w.id, w.text, w.color] for w in session.words]


def current_overlay(session: OcrSession) -> Optional[Image.Image]:
    if session.image is None:
        return None
    return render_overlay(session.image, session.shapes, session.words)


def _activate_only(session: OcrSession, shape_id: Optional[int]) -> None:
    for word in session.words:
        word.is_active = word.id == shape_id


async def on_upload(image_path: Optional[str]):
    session = get_session()
    if not image_path:
        session.clear()
        return None, [], ""
    with open(image_path, "rb") as f:
        uploaded = UploadedFile(image=f.read(), filename=os.path.basename(image_path))
    outcome = await session.upload(uploaded)
    if outcome.status == OutcomeStatus.STALE:
        # a newer upload or model switch owns the view now
        return gr.update(), gr.update(), status_message(outcome)
    logger.debug(f"Upload {uploaded.filename}: {outcome.status.value}, {len(outcome.words)} words")
    return current_overlay(session), word_rows(session), status_message(outcome)


async def on_model_change(kind: ModelKind, name: str):
    session = get_session()
    loaded = await session.select_model(kind, name)
    config = session.configs[kind]
    msg = f"Loaded {config.display_name}" if loaded else f"Could not load {config.display_name}; check the logs"
    return None, [], msg


async def on_detection_change(name: str):
    return await on_model_change(ModelKind.DETECTION, name)


async def on_recognition_change(name: str):
    return await on_model_change(ModelKind.RECOGNITION, name)


def on_word_select(evt: gr.SelectData):
    """Highlight the shape of the word picked in the list."""
    session = get_session()
    row = evt.index[0] if isinstance(evt.index, (list, tuple)) else evt.index
    if row is None or not (0 <= row < len(session.words)):
        return gr.update(), ""
    word = session.words[row]
    _activate_only(session, word.id)
    return current_overlay(session), f"#{word.id}: {word.text}"


def on_image_click(evt: gr.SelectData):
    """Select the word under the clicked point and report its position in the list."""
    session = get_session()
    if session.image is None:
        return gr.update(), ""
    x, y = evt.index
    height, width = session.image.shape[:2]
    shape_id = session.shape_at(x / width, y / height)
    _activate_only(session, shape_id)
    if shape_id is None:
        return current_overlay(session), ""
    index = session.word_index(shape_id)
    if index is None:
        return current_overlay(session), ""
    word = session.words[index]
    return current_overlay(session), f"#{word.id} (row {index + 1}): {word.text}"


def create_interface():
    settings = get_settings()
    det_choices: List[Tuple[str, str]] = [(c.display_name, c.name) for c in settings.detection_models.values()]
    reco_choices: List[Tuple[str, str]] = [(c.display_name, c.name) for c in settings.recognition_models.values()]

    with gr.Blocks(title="wordlens OCR demo", theme=gr.themes.Soft()) as interface:
        gr.Markdown("## wordlens OCR demo")
        with gr.Row():
            with gr.Column(scale=1):
                gr.Markdown("### Model selection")
                det_dropdown = gr.Dropdown(
                    choices=det_choices,
                    value=settings.default_detection,
                    label="Text detection architecture (backbone)",
                )
                reco_dropdown = gr.Dropdown(
                    choices=reco_choices,
                    value=settings.default_recognition,
                    label="Text recognition architecture (backbone)",
                )
                upload = gr.Image(type="filepath", label="Upload an image", sources=["upload"])
                status_output = gr.Textbox(label="Status", interactive=False)
            with gr.Column(scale=2):
                annotated = gr.Image(type="pil", label="Detected words", interactive=False)
            with gr.Column(scale=1):
                words_table = gr.Dataframe(headers=WORD_HEADERS, label="Words", interactive=False)
                selected_word = gr.Textbox(label="Selected word", interactive=False)

        upload.change(fn=on_upload, inputs=[upload], outputs=[annotated, words_table, status_output])
        det_dropdown.change(fn=on_detection_change, inputs=[det_dropdown], outputs=[annotated, words_table, status_output])
        reco_dropdown.change(fn=on_recognition_change, inputs=[reco_dropdown], outputs=[annotated, words_table, status_output])
        words_table.select(fn=on_word_select, inputs=None, outputs=[annotated, selected_word])
        annotated.select(fn=on_image_click, inputs=None, outputs=[annotated, selected_word])

    return interface


def find_free_port(start_port: int) -> int:
    for port in range(start_port, start_port + 10):
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(("", port))
                return port
        except OSError:
            continue
    return start_port


if __name__ == "__main__":
    port = int(os.environ.get("GRADIO_SERVER_PORT", 7860))
    for arg in sys.argv:
        if arg.startswith("--server_port="):
            port = int(arg.split("=")[1])

    results = asyncio.run(get_session().load_models())
    for kind, ok in results.items():
        if not ok:
            print(f"⚠️ {kind.value} model failed to load; uploads will report it until a reload succeeds")

    available_port = find_free_port(port)
    if available_port != port:
        print(f"⚠️ Port {port} is busy, using port {available_port} instead")

    create_interface().launch(server_name="0.0.0.0", server_port=available_port)
