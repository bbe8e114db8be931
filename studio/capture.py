"""Local audio capture buffer for the direct-capture conversion path."""
from typing import List, Optional

import numpy as np

from .audio_utils import encode_wav


class AudioRecorder:
    """Collects frames pushed by an input device callback into one WAV blob."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.recording = False
        self._chunks: List[np.ndarray] = []
        self._blob: Optional[bytes] = None

    def start(self) -> None:
        self._chunks = []
        self._blob = None
        self.recording = True

    def write(self, frames: np.ndarray) -> None:
        if not self.recording:
            raise RuntimeError("recorder is not started")
        chunk = np.asarray(frames, dtype=np.float32)
        if self.channels == 1 and chunk.ndim > 1:
            chunk = chunk.mean(axis=1)
        self._chunks.append(chunk)

    def stop(self) -> bytes:
        self.recording = False
        if self._chunks:
            samples = np.concatenate(self._chunks)
        else:
            samples = np.zeros(0, dtype=np.float32)
        self._chunks = []
        self._blob = encode_wav(samples, self.sample_rate)
        return self._blob

    @property
    def blob(self) -> Optional[bytes]:
        return self._blob

    @property
    def duration_sec(self) -> float:
        total = sum(len(chunk) for chunk in self._chunks)
        return total / float(self.sample_rate)
