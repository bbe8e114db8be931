"""Environment-driven configuration for the studio engine."""
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


@dataclass
class ConversionParams:
    diffusion_steps: int = 10
    length_adjust: float = 1.0
    inference_cfg_rate: float = 0.7
    f0_condition: bool = False
    pitch_shift: int = 0

    def as_payload(self) -> Dict[str, Any]:
        return {
            "diffusion_steps": self.diffusion_steps,
            "length_adjust": self.length_adjust,
            "inference_cfg_rate": self.inference_cfg_rate,
            "f0_condition": self.f0_condition,
            "pitch_shift": self.pitch_shift,
        }


@dataclass
class StudioConfig:
    data_root: str = "data"
    drafts_path: Optional[str] = None
    voices_path: Optional[str] = None
    tts_url: str = "http://127.0.0.1:7201/generate-voice"
    lipsync_url: str = "http://127.0.0.1:7202/generate-lipsync"
    i2v_url: str = "http://127.0.0.1:7203/generate-video"
    keyframe_url: str = "http://127.0.0.1:7204/generate-keyframe"
    conversion_url: str = "http://127.0.0.1:7205/seed-vc"
    conversion_api_key: str = ""
    http_timeout_sec: float = 300.0
    poll_interval_sec: float = 2.0
    poll_timeout_sec: float = 600.0
    merge_window_sec: float = 300.0
    fps: int = 30
    prompt_max_tokens: int = 120
    default_voice_id: str = "en_us_001"
    clone_sentinel: str = "recording"
    default_duration_sec: float = 3.0
    default_pause_sec: float = 0.5
    conversion: ConversionParams = field(default_factory=ConversionParams)

    def __post_init__(self) -> None:
        if not self.drafts_path:
            self.drafts_path = os.path.join(self.data_root, "studio", "drafts.json")
        if not self.voices_path:
            self.voices_path = os.path.join(self.data_root, "studio", "voices.json")

    @property
    def log_dir(self) -> str:
        return os.path.join(self.data_root, "logs")

    @classmethod
    def from_env(cls) -> "StudioConfig":
        return cls(
            data_root=_env_str("DATA_ROOT", "data"),
            drafts_path=_env_str("STUDIO_DRAFTS_PATH") or None,
            voices_path=_env_str("STUDIO_VOICES_PATH") or None,
            tts_url=_env_str("STUDIO_TTS_URL", cls.tts_url),
            lipsync_url=_env_str("STUDIO_LIPSYNC_URL", cls.lipsync_url),
            i2v_url=_env_str("STUDIO_I2V_URL", cls.i2v_url),
            keyframe_url=_env_str("STUDIO_KEYFRAME_URL", cls.keyframe_url),
            conversion_url=_env_str("STUDIO_CONVERSION_URL", cls.conversion_url),
            conversion_api_key=_env_str("STUDIO_CONVERSION_API_KEY"),
            http_timeout_sec=_env_float("STUDIO_HTTP_TIMEOUT_SEC", "300"),
            poll_interval_sec=_env_float("STUDIO_POLL_INTERVAL_SEC", "2"),
            poll_timeout_sec=_env_float("STUDIO_POLL_TIMEOUT_SEC", "600"),
            merge_window_sec=_env_float("STUDIO_MERGE_WINDOW_SEC", "300"),
            fps=int(os.getenv("STUDIO_FPS", "30")),
            prompt_max_tokens=int(os.getenv("STUDIO_PROMPT_MAX_TOKENS", "120")),
            default_voice_id=_env_str("STUDIO_DEFAULT_VOICE_ID", "en_us_001"),
            clone_sentinel=_env_str("STUDIO_CLONE_SENTINEL", "recording"),
            default_duration_sec=_env_float("STUDIO_DEFAULT_DURATION_SEC", "3"),
            default_pause_sec=_env_float("STUDIO_DEFAULT_PAUSE_SEC", "0.5"),
            conversion=ConversionParams(
                diffusion_steps=int(os.getenv("STUDIO_CONVERT_DIFFUSION_STEPS", "10")),
                length_adjust=_env_float("STUDIO_CONVERT_LENGTH_ADJUST", "1.0"),
                inference_cfg_rate=_env_float("STUDIO_CONVERT_CFG_RATE", "0.7"),
                f0_condition=os.getenv("STUDIO_CONVERT_F0", "0").strip().lower() in {"1", "true", "yes", "on"},
                pitch_shift=int(os.getenv("STUDIO_CONVERT_PITCH_SHIFT", "0")),
            ),
        )
