"""
Realtime session layer.

- output_context / playback: speaker clock and gapless chunk scheduling.
- capture: microphone frames at 16 kHz.
- send_queue / live_channel: Gemini Live channel with queued outbound audio.
- session_controller: lifecycle owner of all of the above.
- websocket_server: WebSocket handler for /ws/session (import separately to avoid pulling FastAPI).
"""

from streaming.playback import PlaybackScheduler
from streaming.send_queue import OutboundQueue, samples_to_duration_ms
from streaming.session_controller import SessionActiveError, SessionController, SessionState

__all__ = [
    "OutboundQueue",
    "PlaybackScheduler",
    "SessionActiveError",
    "SessionController",
    "SessionState",
    "samples_to_duration_ms",
]
