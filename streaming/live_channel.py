"""
Realtime channel to the Gemini Live API (google-genai).

LiveChannel owns one live session: it connects in a background task, reports
open/message/error/close to a handler object, queues outbound mic frames until
the session is open, and can be closed at any time from any state. Every callback
receives the channel itself so the handler can ignore a channel it has already
replaced or closed.

Handler protocol:
    on_channel_open(channel)
    on_channel_message(channel, event: ServerEvent)
    on_channel_error(channel, exc: BaseException)
    on_channel_close(channel, info: CloseInfo)
"""
import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from google.genai import types
from websockets.exceptions import ConnectionClosed

from core.audio_codec import AudioBlob
from core.prompts import build_system_instruction
from streaming.send_queue import OutboundQueue

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


@dataclass
class CloseInfo:
    code: int = NORMAL_CLOSURE
    reason: str = ""

    def describe(self) -> str:
        text = f"Connection closed: {self.code}"
        if self.reason:
            text += f" ({self.reason})"
        return text

    @classmethod
    def from_exception(cls, exc: ConnectionClosed) -> "CloseInfo":
        rcvd = getattr(exc, "rcvd", None)
        if rcvd is None:
            return cls(code=ABNORMAL_CLOSURE)
        return cls(code=getattr(rcvd, "code", ABNORMAL_CLOSURE), reason=getattr(rcvd, "reason", "") or "")


def _field(obj: Any, *names: str) -> Any:
    """Read the first present attribute/key among names (SDK objects or wire dicts)."""
    if obj is None:
        return None
    for name in names:
        if isinstance(obj, dict):
            if name in obj and obj[name] is not None:
                return obj[name]
        else:
            value = getattr(obj, name, None)
            if value is not None:
                return value
    return None


def _as_base64(data: Any) -> Optional[str]:
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        # SDK messages carry inline data already decoded
        return base64.b64encode(bytes(data)).decode("ascii")
    return str(data)


@dataclass
class ServerEvent:
    """One inbound message reduced to the fields the tutor session reacts to."""

    input_transcription: Optional[str] = None
    output_transcription: Optional[str] = None
    turn_complete: bool = False
    interrupted: bool = False
    audio: List[str] = field(default_factory=list)

    @classmethod
    def from_message(cls, message: Any) -> "ServerEvent":
        """
        Accepts a google-genai LiveServerMessage or a JSON-like dict in wire shape
        ({"serverContent": {"modelTurn": {"parts": [{"inlineData": {"data": ...}}]}, ...}}).
        Inline audio is normalized to base64 text.
        """
        content = _field(message, "server_content", "serverContent")
        if content is None:
            return cls()
        input_tr = _field(_field(content, "input_transcription", "inputTranscription"), "text")
        output_tr = _field(_field(content, "output_transcription", "outputTranscription"), "text")
        audio: List[str] = []
        model_turn = _field(content, "model_turn", "modelTurn")
        for part in _field(model_turn, "parts") or []:
            inline = _field(part, "inline_data", "inlineData")
            data = _as_base64(_field(inline, "data"))
            if data:
                audio.append(data)
        return cls(
            input_transcription=input_tr,
            output_transcription=output_tr,
            turn_complete=bool(_field(content, "turn_complete", "turnComplete")),
            interrupted=bool(_field(content, "interrupted")),
            audio=audio,
        )


def build_live_config(language_name: str) -> types.LiveConnectConfig:
    """Audio-only replies, transcription both ways, tutor instruction for language_name."""
    return types.LiveConnectConfig(
        response_modalities=[types.Modality.AUDIO],
        input_audio_transcription=types.AudioTranscriptionConfig(),
        output_audio_transcription=types.AudioTranscriptionConfig(),
        system_instruction=types.Content(
            parts=[types.Part.from_text(text=build_system_instruction(language_name))],
            role="user",
        ),
    )


class LiveChannel:
    def __init__(
        self,
        client: Any,
        model: str,
        config: Any,
        handler: Any,
        max_pending_frames: int = 64,
        metrics: Optional[Any] = None,
    ):
        """
        Args:
            metrics: Optional module with record_frame_sent(), called once per frame
                actually written to the session.
        """
        self._client = client
        self.model = model
        self.config = config
        self._handler = handler
        self._pending: OutboundQueue[AudioBlob] = OutboundQueue(max_frames=max_pending_frames)
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._sender: Optional[asyncio.Task] = None
        self._session = None
        self.is_open = False
        self.closed = False
        self.frames_sent = 0
        self.metrics = metrics
        self._close_reported = False

    async def connect(self) -> None:
        """Start connecting; returns immediately. Open is reported via the handler."""
        if self._task is not None or self.closed:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        try:
            async with self._client.aio.live.connect(model=self.model, config=self.config) as session:
                if self.closed:
                    return
                self._session = session
                self.is_open = True
                logger.info("Live session open (model=%s)", self.model)
                self._handler.on_channel_open(self)
                if self.closed:
                    return
                self._sender = asyncio.create_task(self._send_loop(session))
                self._wakeup.set()
                await self._receive_loop(session)
        except ConnectionClosed as e:
            self._report_close(CloseInfo.from_exception(e))
        except Exception as e:
            if not self.closed:
                logger.error("Live session error: %s", e)
                self._handler.on_channel_error(self, e)
        finally:
            self.is_open = False
            self._session = None
            if self._sender is not None and not self._sender.done():
                self._sender.cancel()

    async def _receive_loop(self, session) -> None:
        while not self.closed:
            received = 0
            async for message in session.receive():
                received += 1
                self._handler.on_channel_message(self, ServerEvent.from_message(message))
                if self.closed:
                    return
            if received == 0:
                # receive() ended without yielding: the server is done with us
                self._report_close(CloseInfo(code=NORMAL_CLOSURE, reason="server ended the session"))
                return

    def _report_close(self, info: CloseInfo) -> None:
        # receiver and sender can both see the same close
        if self.closed or self._close_reported:
            return
        self._close_reported = True
        logger.info("Live session closed by server: %s", info.describe())
        self._handler.on_channel_close(self, info)

    async def _send_loop(self, session) -> None:
        try:
            while not self.closed:
                await self._wakeup.wait()
                self._wakeup.clear()
                for blob in self._pending.drain():
                    await session.send_realtime_input(
                        audio=types.Blob(data=blob.to_bytes(), mime_type=blob.mime_type)
                    )
                    self.frames_sent += 1
                    if self.metrics is not None:
                        self.metrics.record_frame_sent()
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            self._report_close(CloseInfo.from_exception(e))
        except Exception as e:
            if not self.closed:
                logger.error("Live session send failed: %s", e)
                self._handler.on_channel_error(self, e)

    def send(self, blob: AudioBlob) -> bool:
        """
        Queue one encoded frame; sent as soon as the session is open.
        Returns False if the frame was not accepted as-is (channel closed, or an
        older frame was dropped to make room).
        """
        if self.closed:
            return False
        accepted = self._pending.append(blob)
        if self.is_open:
            self._wakeup.set()
        return accepted

    def pending_count(self) -> int:
        return len(self._pending)

    def dropped_count(self) -> int:
        return self._pending.dropped_count()

    def close(self) -> None:
        """Close the session and silence all further callbacks. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        self._pending.clear()
        self._wakeup.set()
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in (self._sender, self._task):
            # closing from inside our own callback: the task sees `closed` and exits the session cleanly
            if task is not None and task is not current and not task.done():
                task.cancel()


def create_live_channel(
    handler,
    language_name: str,
    api_key: str,
    model: str,
    max_pending_frames: int = 64,
    metrics: Optional[Any] = None,
) -> LiveChannel:
    from google import genai

    client = genai.Client(api_key=api_key or None)
    return LiveChannel(
        client=client,
        model=model,
        config=build_live_config(language_name),
        handler=handler,
        max_pending_frames=max_pending_frames,
        metrics=metrics,
    )
