"""
Tutor session lifecycle: idle -> connecting -> listening -> idle, or -> error.

SessionController is the single owner of everything a conversation holds: the
realtime channel, the microphone capture, the output context, the playback
scheduler, the turn accumulator and the transcript. Channels and captures call back
into the controller with themselves as the first argument; callbacks from anything
that is no longer current (after a stop, an error or a restart) are ignored.

stop() may run at any point, including while start() is still waiting on the
output device or the microphone. Whatever start() acquires after that is
released as soon as it arrives.
"""
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.audio_codec import AudioDecodeError, decode_to_buffer, encode_samples
from core.presentation import selector_disabled, status_text
from core.transcript import TranscriptLog, TurnAccumulator
from streaming.playback import PlaybackScheduler
from streaming.send_queue import samples_to_duration_ms

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LISTENING = "listening"
    ERROR = "error"


class SessionActiveError(RuntimeError):
    """start() while a session is already connecting or listening."""


class SessionController:
    def __init__(
        self,
        channel_factory: Callable[[Any, str], Any],
        output_factory: Callable[[int], Awaitable[Any]],
        capture_factory: Callable[[Any], Awaitable[Any]],
        input_sample_rate: int = 16000,
        output_sample_rate: int = 24000,
        output_channels: int = 1,
        decode_error_policy: str = "drop",
        metrics: Optional[Any] = None,
    ):
        """
        Args:
            channel_factory: (controller, language_name) -> channel with async connect(),
                send(blob) and close().
            output_factory: async (sample_rate) -> started output context (current_time,
                create_source, close, state).
            capture_factory: async (controller) -> open microphone capture with close().
            decode_error_policy: "drop" logs and skips a malformed audio chunk;
                "escalate" ends the session with an error.
            metrics: Optional module with record_* hooks (see metrics.session_metrics).
        """
        self._channel_factory = channel_factory
        self._output_factory = output_factory
        self._capture_factory = capture_factory
        self.input_sample_rate = input_sample_rate
        self.output_sample_rate = output_sample_rate
        self.output_channels = output_channels
        self.decode_error_policy = decode_error_policy
        self.metrics = metrics

        self.state = SessionState.IDLE
        self.error: Optional[str] = None
        self.language: Optional[str] = None
        self.transcript = TranscriptLog()
        self.turn = TurnAccumulator()
        self.scheduler: Optional[PlaybackScheduler] = None

        self._channel = None
        self._capture = None
        self._output = None
        self._generation = 0
        self._session_counted = False
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []

    # ----- listeners -----

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event: Dict[str, Any]) -> None:
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception("Session listener failed on %s event", event.get("type"))

    def _record(self, name: str, *args) -> None:
        if self.metrics is not None and hasattr(self.metrics, name):
            getattr(self.metrics, name)(*args)

    def _set_state(self, state: SessionState) -> None:
        if state == self.state:
            return
        logger.info("Session state %s -> %s", self.state.value, state.value)
        self.state = state
        self._emit({
            "type": "state",
            "state": state.value,
            "error": self.error,
            "status_text": status_text(state.value, self.error),
        })

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.CONNECTING, SessionState.LISTENING)

    @property
    def playback_cursor(self) -> float:
        return self.scheduler.cursor if self.scheduler is not None else 0.0

    @property
    def active_playback_count(self) -> int:
        return len(self.scheduler.active) if self.scheduler is not None else 0

    # ----- lifecycle -----

    async def start(self, language_name: str) -> None:
        """
        Open a session for language_name. Returns once setup is under way; the
        channel reports open (-> listening) or failure (-> error) on its own.
        """
        if self.is_active:
            raise SessionActiveError(f"Session already {self.state.value}")
        self._generation += 1
        generation = self._generation
        self.error = None
        self.language = language_name
        self.transcript.clear()
        self.turn.reset()
        self._emit({"type": "transcript_reset"})
        self._set_state(SessionState.CONNECTING)

        try:
            output = await self._output_factory(self.output_sample_rate)
            if generation != self._generation:
                # stopped while the output device was opening
                output.close()
                return
            self._output = output
            self.scheduler = PlaybackScheduler(self._output)
            self._channel = self._channel_factory(self, language_name)
            await self._channel.connect()
            capture = await self._capture_factory(self)
        except Exception as e:
            if generation == self._generation:
                logger.error("Session setup failed: %s", e)
                self._fail(e)
            else:
                logger.info("Session setup failed after it was stopped: %s", e)
            return

        if generation != self._generation:
            # stopped or failed while the microphone was opening
            capture.close()
            return
        self._capture = capture

    def stop(self) -> None:
        """Release everything and go idle. Safe from any state, any number of times."""
        self._release()
        self._set_state(SessionState.IDLE)

    def _fail(self, exc: BaseException) -> None:
        message = str(exc) or exc.__class__.__name__
        self._release()
        self.error = message
        self._record("record_session_error")
        self._set_state(SessionState.ERROR)
        self._emit({"type": "error", "message": message})

    def _release(self) -> None:
        self._generation += 1
        channel, self._channel = self._channel, None
        capture, self._capture = self._capture, None
        scheduler, self.scheduler = self.scheduler, None
        output, self._output = self._output, None

        if channel is not None:
            try:
                channel.close()
            except Exception as e:
                logger.warning("Closing realtime channel failed: %s", e)
        if capture is not None:
            try:
                capture.close()
            except Exception as e:
                logger.warning("Closing microphone failed: %s", e)
        if scheduler is not None:
            scheduler.flush()
        if output is not None and getattr(output, "state", None) != "closed":
            try:
                output.close()
            except Exception as e:
                logger.warning("Closing output context failed: %s", e)
        if self._session_counted:
            self._session_counted = False
            self._record("record_session_close")

    # ----- capture callback -----

    def on_audio_frame(self, capture, samples) -> None:
        if not self.is_active or self._channel is None:
            return
        if self._capture is not None and capture is not self._capture:
            return
        channel = self._channel
        if getattr(channel, "closed", False):
            return
        accepted = channel.send(encode_samples(samples))
        self._record("record_frame_captured", samples_to_duration_ms(len(samples), self.input_sample_rate))
        if not accepted:
            # an open channel only refuses a frame when its queue overflowed
            self._record("record_dropped_frame")

    # ----- channel callbacks -----

    def on_channel_open(self, channel) -> None:
        if channel is not self._channel:
            return
        self._session_counted = True
        self._record("record_session_open")
        self._set_state(SessionState.LISTENING)

    def on_channel_message(self, channel, event) -> None:
        if channel is not self._channel:
            return
        self.handle_message(event)

    def on_channel_error(self, channel, exc: BaseException) -> None:
        if channel is not self._channel:
            return
        self._fail(exc)

    def on_channel_close(self, channel, info) -> None:
        if channel is not self._channel:
            return
        self._fail(ConnectionError(info.describe()))

    # ----- inbound messages -----

    def handle_message(self, event) -> None:
        """Apply one inbound ServerEvent: transcription, turn commit, audio, interruption."""
        if event.output_transcription:
            self.turn.add_output(event.output_transcription)
        if event.input_transcription:
            self.turn.add_input(event.input_transcription)

        if event.turn_complete:
            for entry in self.turn.commit(self.transcript):
                self._emit({"type": "transcript", "entry": entry.to_dict()})

        for payload in event.audio:
            self._play(payload)

        if event.interrupted:
            self._interrupt()

    def _play(self, payload: str) -> None:
        if self.scheduler is None:
            return
        try:
            buffer = decode_to_buffer(payload, self.output_sample_rate, self.output_channels)
        except AudioDecodeError as e:
            self._record("record_decode_failure")
            if self.decode_error_policy == "escalate":
                self._fail(e)
            else:
                logger.warning("Dropping malformed audio chunk: %s", e)
            return
        self.scheduler.schedule(buffer)
        self._record("record_chunk_scheduled", buffer.duration)

    def _interrupt(self) -> None:
        if self.scheduler is None:
            return
        stopped = self.scheduler.flush()
        self._record("record_interruption")
        logger.debug("Interrupted; stopped %d playback source(s)", stopped)

    # ----- view -----

    def snapshot(self) -> Dict[str, Any]:
        state = self.state.value
        return {
            "state": state,
            "error": self.error,
            "language": self.language,
            "status_text": status_text(state, self.error),
            "selector_disabled": selector_disabled(state),
            "transcript": self.transcript.to_list(),
            "playback": {
                "cursor": round(self.playback_cursor, 4),
                "active_sources": self.active_playback_count,
            },
        }
