"""
Lingua tutor API: local conversational language practice.

One tutoring session at a time: the machine's microphone streams to the Gemini Live
API, the tutor's voice plays on the machine's speakers, and the page at /demo shows
the language selector, transcript and status, driven over /ws/session.
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

import config
import metrics.session_metrics as session_metrics
from core.languages import LANGUAGES, UnknownLanguageError, find_language
from core.presentation import MODALS, PresentationState
from streaming.capture import open_microphone
from streaming.live_channel import create_live_channel
from streaming.output_context import OutputContext, open_output
from streaming.session_controller import SessionActiveError, SessionController
from streaming.websocket_server import build_ws_session_handler

logger = logging.getLogger(__name__)

STATIC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "static")

if not config.GEMINI_API_KEY:
    print("WARNING: GEMINI_API_KEY is not set; starting a session will fail.")


async def _open_output(sample_rate: int) -> OutputContext:
    return await open_output(sample_rate=sample_rate, channels=1, device=config.OUTPUT_DEVICE)


def _open_channel(handler, language_name: str):
    return create_live_channel(
        handler,
        language_name,
        api_key=config.GEMINI_API_KEY,
        model=config.LIVE_MODEL,
        max_pending_frames=config.MAX_PENDING_FRAMES,
        metrics=session_metrics,
    )


async def _open_capture(handler):
    return await open_microphone(
        handler,
        sample_rate=config.INPUT_SAMPLE_RATE,
        frame_size=config.CAPTURE_FRAME_SIZE,
        device=config.INPUT_DEVICE,
    )


controller = SessionController(
    channel_factory=_open_channel,
    output_factory=_open_output,
    capture_factory=_open_capture,
    input_sample_rate=config.INPUT_SAMPLE_RATE,
    output_sample_rate=config.OUTPUT_SAMPLE_RATE,
    decode_error_policy=config.DECODE_ERROR_POLICY,
    metrics=session_metrics,
)
presentation = PresentationState(theme=config.DEFAULT_THEME)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    # process teardown releases mic, speaker and channel like a page unload
    controller.stop()


app = FastAPI(title="Lingua Tutor API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if os.path.isdir(STATIC_DIR):
    app.mount("/demo-static", StaticFiles(directory=STATIC_DIR), name="static")


class StartRequest(BaseModel):
    language: Optional[str] = None


class ThemeRequest(BaseModel):
    theme: str


@app.get("/demo", include_in_schema=False)
@app.get("/demo/", include_in_schema=False)
async def serve_demo():
    try:
        with open(os.path.join(STATIC_DIR, "index.html"), "r", encoding="utf-8") as f:
            return HTMLResponse(content=f.read())
    except OSError:
        raise HTTPException(status_code=404, detail="Demo UI not found.")


@app.get("/")
def health_check():
    return {
        "status": "ok",
        "message": "Lingua tutor API is running",
        "session_state": controller.state.value,
        "model": config.LIVE_MODEL,
    }


@app.get("/languages")
def list_languages():
    try:
        default = find_language(config.DEFAULT_LANGUAGE).name
    except UnknownLanguageError:
        default = LANGUAGES[0].name
    return {"default": default, "languages": [option.to_dict() for option in LANGUAGES]}


@app.get("/session")
def get_session():
    return controller.snapshot()


@app.post("/session/start")
async def start_session(request: Optional[StartRequest] = None):
    name = (request.language if request else None) or config.DEFAULT_LANGUAGE
    try:
        language = find_language(name)
    except UnknownLanguageError as e:
        raise HTTPException(status_code=404, detail=str(e))
    try:
        await controller.start(language.name)
    except SessionActiveError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return controller.snapshot()


@app.post("/session/stop")
def stop_session():
    controller.stop()
    return controller.snapshot()


@app.get("/ui")
def get_ui():
    return presentation.to_dict()


@app.put("/ui/theme")
def set_theme(request: ThemeRequest):
    try:
        presentation.set_theme(request.theme)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return presentation.to_dict()


@app.post("/ui/theme/toggle")
def toggle_theme():
    presentation.toggle_theme()
    return presentation.to_dict()


@app.post("/ui/modals/{name}/{action}")
def set_modal(name: str, action: str):
    if name not in MODALS or action not in ("open", "close"):
        raise HTTPException(status_code=400, detail=f"Unknown modal action: {name}/{action}")
    if action == "open":
        presentation.open_modal(name)
    else:
        presentation.close_modal(name)
    return presentation.to_dict()


@app.get("/metrics/session", include_in_schema=False)
def metrics_session():
    """JSON snapshot of session metrics: sessions, chunks scheduled, interruptions, decode failures, frames."""
    return session_metrics.get_snapshot()


app.websocket("/ws/session")(
    build_ws_session_handler(
        get_controller=lambda: controller,
        get_presentation=lambda: presentation,
    )
)


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=os.environ.get("HOST", config.HOST), port=int(os.environ.get("PORT", config.PORT)))
