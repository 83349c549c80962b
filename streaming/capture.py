"""
Microphone capture: fixed-size mono float frames at 16 kHz.

The PortAudio callback copies channel 0 and hands it to the asyncio loop, where
handler.on_audio_frame(capture, samples) runs. Opening the device blocks (and is
where a denied or missing microphone fails), so open_microphone() runs it in the
default executor.
"""
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def _load_sounddevice():
    import sounddevice as sd
    return sd


class MicrophoneCapture:
    def __init__(
        self,
        handler,
        sample_rate: int = 16000,
        frame_size: int = 4096,
        device=None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.handler = handler
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self.device = device
        self._loop = loop
        self._stream = None
        self.active = False

    def open(self) -> None:
        """Open and start the input stream (blocking)."""
        sd = _load_sounddevice()
        stream = sd.InputStream(
            samplerate=self.sample_rate,
            blocksize=self.frame_size,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=self._callback,
        )
        self._stream = stream
        self.active = True
        try:
            stream.start()
        except Exception:
            self.close()
            raise

    def _callback(self, indata, frames, time_info, status) -> None:
        # PortAudio thread
        if status:
            logger.warning("Input stream status: %s", status)
        if not self.active:
            return
        samples = indata[:, 0].copy()
        loop = self._loop
        if loop is None:
            self._deliver(samples)
        elif not loop.is_closed():
            loop.call_soon_threadsafe(self._deliver, samples)

    def _deliver(self, samples) -> None:
        if self.active:
            self.handler.on_audio_frame(self, samples)

    def close(self) -> None:
        """Stop and release the stream. Safe to call twice."""
        self.active = False
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


async def open_microphone(handler, sample_rate: int = 16000, frame_size: int = 4096, device=None) -> MicrophoneCapture:
    loop = asyncio.get_running_loop()
    capture = MicrophoneCapture(handler, sample_rate=sample_rate, frame_size=frame_size, device=device, loop=loop)
    await loop.run_in_executor(None, capture.open)
    return capture
