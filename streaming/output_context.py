"""
Speaker output with a running clock, for scheduled playback.

The PortAudio callback mixes every scheduled source into the block being rendered
and advances the frame counter; current_time is that counter in seconds. Sources are
started at absolute times on this clock, so the scheduler can place chunks back to back.
Ended notifications are handed to the asyncio loop; the render thread never touches
controller state.
"""
import asyncio
import logging
import threading
from typing import Callable, List, Optional

import numpy as np

from core.audio_codec import AudioBuffer

logger = logging.getLogger(__name__)


def _load_sounddevice():
    import sounddevice as sd
    return sd


class PlaybackSource:
    """One buffer scheduled on an OutputContext."""

    def __init__(self, context: "OutputContext", buffer: AudioBuffer):
        self._context = context
        self.buffer = buffer
        self.start_frame: Optional[int] = None
        self.on_ended: Optional[Callable[["PlaybackSource"], None]] = None
        self.stopped = False

    @property
    def start_time(self) -> Optional[float]:
        if self.start_frame is None:
            return None
        return self.start_frame / float(self._context.sample_rate)

    def start(self, when: float = 0.0) -> None:
        self._context._start_source(self, when)

    def stop(self) -> None:
        self._context._stop_source(self)


class OutputContext:
    def __init__(
        self,
        sample_rate: int = 24000,
        channels: int = 1,
        device=None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.device = device
        self.state = "suspended"
        self._loop = loop
        self._lock = threading.Lock()
        self._frames_rendered = 0
        self._scheduled: List[PlaybackSource] = []
        self._stream = None

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / float(self.sample_rate)

    def start(self) -> None:
        """Open and start the output stream."""
        if self.state == "closed":
            raise RuntimeError("Output context is closed")
        if self._stream is not None:
            return
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                self._loop = None
        sd = _load_sounddevice()
        self._stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="float32",
            device=self.device,
            callback=self._render,
        )
        self._stream.start()
        self.state = "running"

    def create_source(self, buffer: AudioBuffer) -> PlaybackSource:
        if buffer.channels != self.channels:
            raise ValueError(f"Buffer has {buffer.channels} channels; context has {self.channels}")
        return PlaybackSource(self, buffer)

    def _start_source(self, source: PlaybackSource, when: float) -> None:
        if self.state == "closed":
            return
        with self._lock:
            # a start time already in the past plays from the next rendered frame
            source.start_frame = max(int(round(when * self.sample_rate)), self._frames_rendered)
            self._scheduled.append(source)

    def _stop_source(self, source: PlaybackSource) -> None:
        with self._lock:
            source.stopped = True
            if source in self._scheduled:
                self._scheduled.remove(source)

    def _render(self, outdata, frames, time_info, status) -> None:
        # PortAudio thread
        if status:
            logger.warning("Output stream status: %s", status)
        outdata.fill(0)
        finished: List[PlaybackSource] = []
        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            for source in self._scheduled:
                if source.start_frame >= block_end:
                    continue
                data = source.buffer.samples
                offset = max(0, source.start_frame - block_start)
                pos = block_start + offset - source.start_frame
                n = min(frames - offset, len(data) - pos)
                if n > 0:
                    outdata[offset:offset + n] += data[pos:pos + n]
                if source.start_frame + len(data) <= block_end:
                    finished.append(source)
            for source in finished:
                self._scheduled.remove(source)
            self._frames_rendered = block_end
        np.clip(outdata, -1.0, 1.0, out=outdata)
        for source in finished:
            self._notify_ended(source)

    def _notify_ended(self, source: PlaybackSource) -> None:
        callback = source.on_ended
        if callback is None:
            return
        loop = self._loop
        if loop is None:
            callback(source)
        elif not loop.is_closed():
            loop.call_soon_threadsafe(callback, source)

    def close(self) -> None:
        """Stop the stream and drop every scheduled source. Safe to call twice."""
        if self.state == "closed":
            return
        self.state = "closed"
        with self._lock:
            for source in self._scheduled:
                source.stopped = True
            self._scheduled.clear()
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                # abort discards what PortAudio already buffered; stop would play it out
                stream.abort()
            finally:
                stream.close()

    def scheduled_count(self) -> int:
        with self._lock:
            return len(self._scheduled)


async def open_output(sample_rate: int = 24000, channels: int = 1, device=None) -> OutputContext:
    """Create and start an OutputContext without blocking the loop on the device open."""
    loop = asyncio.get_running_loop()
    context = OutputContext(sample_rate=sample_rate, channels=channels, device=device, loop=loop)
    await loop.run_in_executor(None, context.start)
    return context
