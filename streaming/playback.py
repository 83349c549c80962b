"""
Gapless playback scheduling for model audio.

Keeps a "next start time" cursor on the output clock. Each chunk starts at
max(cursor, current_time) and pushes the cursor forward by its duration, so chunks
arriving faster than real time queue back to back and a chunk arriving after a stall
is never scheduled in the past. flush() silences everything in flight (barge-in or
stop) and rewinds the cursor.
"""
import logging
from typing import Set

from core.audio_codec import AudioBuffer

logger = logging.getLogger(__name__)


class PlaybackScheduler:
    def __init__(self, context):
        """
        Args:
            context: Output clock with current_time and create_source(buffer);
                sources expose start(when), stop() and an on_ended callback slot.
        """
        self.context = context
        self.cursor = 0.0
        self.active: Set = set()

    def schedule(self, buffer: AudioBuffer):
        """Start buffer right after everything already queued. Returns the source."""
        self.cursor = max(self.cursor, self.context.current_time)
        source = self.context.create_source(buffer)
        source.on_ended = self._on_source_ended
        source.start(self.cursor)
        self.cursor += buffer.duration
        self.active.add(source)
        return source

    def _on_source_ended(self, source) -> None:
        self.active.discard(source)

    def flush(self) -> int:
        """Stop every active source, empty the set, reset the cursor. Returns how many were stopped."""
        stopped = 0
        for source in list(self.active):
            try:
                source.stop()
            except Exception as e:
                logger.warning("Failed to stop playback source: %s", e)
            stopped += 1
        self.active.clear()
        self.cursor = 0.0
        return stopped
