"""
Observability metrics for tutor sessions.
"""

from metrics.session_metrics import (
    get_snapshot,
    record_session_open,
    record_session_close,
    record_session_error,
    record_chunk_scheduled,
    record_interruption,
    record_decode_failure,
    record_frame_captured,
    record_frame_sent,
    record_dropped_frame,
)

__all__ = [
    "get_snapshot",
    "record_session_open",
    "record_session_close",
    "record_session_error",
    "record_chunk_scheduled",
    "record_interruption",
    "record_decode_failure",
    "record_frame_captured",
    "record_frame_sent",
    "record_dropped_frame",
]
