"""
Turn-based transcript: partial transcription buffers and the committed log.

Fragments for the turn in progress accumulate in TurnAccumulator. When the channel
signals turn completion, commit() finalizes the trimmed input text (the learner) and
then the trimmed output text (the tutor) as TranscriptEntry items and clears both
buffers. Empty sides produce no entry.
"""
import itertools
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List


class Speaker(str, Enum):
    USER = "user"
    ASSISTANT = "ai"


@dataclass(frozen=True)
class TranscriptEntry:
    id: int
    speaker: Speaker
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "speaker": self.speaker.value, "text": self.text}


class TranscriptLog:
    """Ordered committed entries with monotonically increasing ids."""

    def __init__(self):
        self._entries: List[TranscriptEntry] = []
        self._ids = itertools.count(1)

    def append(self, speaker: Speaker, text: str) -> TranscriptEntry:
        entry = TranscriptEntry(id=next(self._ids), speaker=speaker, text=text)
        self._entries.append(entry)
        return entry

    def clear(self) -> None:
        # ids keep increasing across sessions so the UI never reuses a key
        self._entries.clear()

    @property
    def entries(self) -> List[TranscriptEntry]:
        return list(self._entries)

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)


class TurnAccumulator:
    def __init__(self):
        self.input_text = ""
        self.output_text = ""

    def add_input(self, fragment: str) -> None:
        if fragment:
            self.input_text += fragment

    def add_output(self, fragment: str) -> None:
        if fragment:
            self.output_text += fragment

    def commit(self, log: TranscriptLog) -> List[TranscriptEntry]:
        """Finalize the current turn into log; returns the new entries (0, 1 or 2)."""
        committed = []
        full_input = self.input_text.strip()
        full_output = self.output_text.strip()
        if full_input:
            committed.append(log.append(Speaker.USER, full_input))
        if full_output:
            committed.append(log.append(Speaker.ASSISTANT, full_output))
        self.reset()
        return committed

    def reset(self) -> None:
        self.input_text = ""
        self.output_text = ""
