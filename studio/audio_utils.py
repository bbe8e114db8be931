"""Audio helpers for captured and inline audio."""
import io
from typing import Union

import numpy as np
import soundfile as sf


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode float or int16 samples as 16-bit PCM WAV bytes."""
    buf = io.BytesIO()
    sf.write(buf, samples, sample_rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


def wav_duration_sec(data: Union[bytes, bytearray]) -> float:
    try:
        info = sf.info(io.BytesIO(bytes(data)))
    except RuntimeError:
        return 0.0
    if not info.samplerate:
        return 0.0
    return float(info.frames) / float(info.samplerate)
