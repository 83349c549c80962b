"""
Session observability metrics.

Thread-safe counters for the tutor session: lifecycle, playback scheduling,
interruptions, decode failures and outbound mic frames.
Exposed via GET /metrics/session (JSON snapshot).
"""

import threading
from collections import deque
from typing import Any, Dict

# ----- Shared state (module-level for singleton behavior) -----
_lock = threading.Lock()
_active_sessions = 0
_sessions_started = 0
_session_errors = 0
_chunks_scheduled = 0
_audio_seconds_scheduled = 0.0
_chunk_durations: deque = deque(maxlen=1000)  # last N chunk durations (s) for avg
_interruptions = 0
_decode_failures = 0
_frames_captured = 0
_frames_sent = 0
_captured_ms = 0.0
_dropped_frames = 0


def record_session_open() -> None:
    """Call when the realtime channel reports open."""
    global _active_sessions, _sessions_started
    with _lock:
        _active_sessions += 1
        _sessions_started += 1


def record_session_close() -> None:
    """Call when an open session is torn down (stop or error)."""
    global _active_sessions
    with _lock:
        _active_sessions = max(0, _active_sessions - 1)


def record_session_error() -> None:
    global _session_errors
    with _lock:
        _session_errors += 1


def record_chunk_scheduled(duration_seconds: float) -> None:
    global _chunks_scheduled, _audio_seconds_scheduled
    with _lock:
        _chunks_scheduled += 1
        _audio_seconds_scheduled += max(0.0, duration_seconds)
        _chunk_durations.append(duration_seconds)


def record_interruption() -> None:
    global _interruptions
    with _lock:
        _interruptions += 1


def record_decode_failure() -> None:
    """Call when an inbound audio chunk is malformed."""
    global _decode_failures
    with _lock:
        _decode_failures += 1


def record_frame_captured(duration_ms: float = 0.0) -> None:
    """Call per mic frame handed to a live channel (sent now or queued)."""
    global _frames_captured, _captured_ms
    with _lock:
        _frames_captured += 1
        _captured_ms += max(0.0, duration_ms)


def record_frame_sent() -> None:
    """Call per frame actually written to the realtime session."""
    global _frames_sent
    with _lock:
        _frames_sent += 1


def record_dropped_frame() -> None:
    """Call when the outbound queue overflowed and discarded a frame."""
    global _dropped_frames
    with _lock:
        _dropped_frames += 1


def get_snapshot() -> Dict[str, Any]:
    """
    Return a JSON-serializable snapshot of session metrics.
    Used by GET /metrics/session.
    """
    with _lock:
        durations = list(_chunk_durations)
        snapshot = {
            "active_sessions": _active_sessions,
            "sessions_started": _sessions_started,
            "session_errors": _session_errors,
            "chunks_scheduled": _chunks_scheduled,
            "audio_seconds_scheduled": round(_audio_seconds_scheduled, 3),
            "interruptions": _interruptions,
            "decode_failures": _decode_failures,
            "frames_captured": _frames_captured,
            "frames_sent": _frames_sent,
            "captured_seconds": round(_captured_ms / 1000.0, 3),
            "dropped_frames": _dropped_frames,
        }
    n = len(durations)
    snapshot["avg_chunk_ms"] = round(sum(durations) / n * 1000.0, 2) if n else None
    return snapshot


def reset() -> None:
    """Zero every counter (tests, or a fresh process-level view)."""
    global _active_sessions, _sessions_started, _session_errors, _chunks_scheduled
    global _audio_seconds_scheduled, _interruptions, _decode_failures, _frames_sent
    global _frames_captured, _captured_ms, _dropped_frames
    with _lock:
        _active_sessions = 0
        _sessions_started = 0
        _session_errors = 0
        _chunks_scheduled = 0
        _audio_seconds_scheduled = 0.0
        _chunk_durations.clear()
        _interruptions = 0
        _decode_failures = 0
        _frames_captured = 0
        _frames_sent = 0
        _captured_ms = 0.0
        _dropped_frames = 0
