"""
PCM transport codec for the realtime channel.

Outbound: float mic samples in [-1, 1] -> 16-bit signed little-endian PCM -> base64,
tagged with the 16 kHz mono MIME descriptor the Live API expects.
Inbound: base64 16-bit PCM (24 kHz mono from the model) -> float buffer ready for playback.
"""
import base64
import binascii
from dataclasses import dataclass
from typing import Union

import numpy as np

INPUT_MIME_TYPE = "audio/pcm;rate=16000"
SAMPLE_WIDTH = 2  # bytes per int16 sample
INT16_SCALE = 32768.0


class AudioDecodeError(ValueError):
    """Received audio payload cannot be turned into a playable buffer."""


@dataclass(frozen=True)
class AudioBlob:
    """Encoded outbound audio: base64 PCM plus its MIME descriptor."""

    data: str
    mime_type: str = INPUT_MIME_TYPE

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data)


@dataclass
class AudioBuffer:
    """Decoded playable audio. samples has shape (frames, channels), float32."""

    samples: np.ndarray
    sample_rate: int
    channels: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Length in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / float(self.sample_rate)


def float_to_pcm16(samples) -> bytes:
    """
    Scale [-1, 1] floats to int16 and pack little-endian.

    Values are truncated toward zero, then clamped to the int16 range, so 1.0 maps
    to 32767 rather than wrapping.
    """
    arr = np.asarray(samples, dtype=np.float64).reshape(-1)
    scaled = np.trunc(arr * INT16_SCALE)
    clipped = np.clip(scaled, -32768, 32767)
    return clipped.astype("<i2").tobytes()


def encode_samples(samples) -> AudioBlob:
    """Encode one captured frame of float samples as a transport blob."""
    pcm = float_to_pcm16(samples)
    return AudioBlob(data=base64.b64encode(pcm).decode("ascii"), mime_type=INPUT_MIME_TYPE)


def pcm16_to_buffer(raw: bytes, sample_rate: int, channels: int = 1) -> AudioBuffer:
    """Reinterpret interleaved int16 LE bytes as a float buffer."""
    if channels < 1:
        raise AudioDecodeError(f"Invalid channel count: {channels}")
    if len(raw) % SAMPLE_WIDTH != 0:
        raise AudioDecodeError(
            f"Byte length {len(raw)} is not a multiple of the {SAMPLE_WIDTH}-byte sample width"
        )
    ints = np.frombuffer(raw, dtype="<i2")
    if ints.size % channels != 0:
        raise AudioDecodeError(f"{ints.size} samples do not divide into {channels} channels")
    samples = (ints.astype(np.float32) / INT16_SCALE).reshape(-1, channels)
    return AudioBuffer(samples=samples, sample_rate=sample_rate, channels=channels)


def decode_to_buffer(payload: Union[str, bytes], sample_rate: int, channels: int = 1) -> AudioBuffer:
    """
    Decode a base64 PCM payload into a playable buffer.

    Args:
        payload: Base64 text (str or ASCII bytes) of 16-bit signed LE PCM.
        sample_rate: Rate of the decoded audio (24000 for model output).
        channels: Interleaved channel count.

    Raises:
        AudioDecodeError: payload is not base64, or the byte length is not a whole
            number of samples.
    """
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AudioDecodeError(f"Audio payload is not valid base64: {e}") from e
    return pcm16_to_buffer(raw, sample_rate, channels)
