"""
Outbound frame queue for the realtime channel.

Mic frames start flowing before the connection is open. They are held here in
arrival order and drained once the channel reports open, instead of chaining each
send onto the pending connection. Past max_frames the oldest frames are dropped,
so a stalled connect can't grow memory without bound.
"""
from collections import deque
from typing import Deque, Generic, List, TypeVar

T = TypeVar("T")


def samples_to_duration_ms(num_samples: int, sample_rate: int = 16000) -> float:
    """Convert a mono sample count to milliseconds."""
    if num_samples <= 0 or sample_rate <= 0:
        return 0.0
    return (num_samples / sample_rate) * 1000.0


class OutboundQueue(Generic[T]):
    def __init__(self, max_frames: int = 64):
        """
        Args:
            max_frames: Frames kept while waiting; 0 or less means unbounded.
        """
        self.max_frames = max_frames
        self._frames: Deque[T] = deque()
        self._dropped = 0
        self._total_enqueued = 0

    def append(self, frame: T) -> bool:
        """Queue a frame. Returns False when an older frame had to be dropped to make room."""
        self._frames.append(frame)
        self._total_enqueued += 1
        if self.max_frames > 0 and len(self._frames) > self.max_frames:
            self._frames.popleft()
            self._dropped += 1
            return False
        return True

    def drain(self) -> List[T]:
        """Remove and return everything queued, oldest first."""
        frames = list(self._frames)
        self._frames.clear()
        return frames

    def clear(self) -> None:
        self._frames.clear()

    def dropped_count(self) -> int:
        return self._dropped

    def total_enqueued(self) -> int:
        return self._total_enqueued

    def __len__(self) -> int:
        return len(self._frames)
