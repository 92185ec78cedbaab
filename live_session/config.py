"""
Live session configuration.

Loads remote service, relay, audio and location settings from environment variables.
"""
import os
from dataclasses import dataclass
from typing import Optional

HIGH_SENSITIVITY_GAIN = 3.0


def _clean_env(key: str) -> Optional[str]:
    """
    Read an environment variable, stripping inline comments and whitespace.

    "300  # comment" -> "300", "" -> None
    """
    value = os.environ.get(key)
    if not value:
        return None
    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()
    return value or None


def _parse_int_env(key: str, default: int) -> int:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_optional_float_env(key: str) -> Optional[float]:
    value = _clean_env(key)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_bool_env(key: str, default: bool) -> bool:
    value = _clean_env(key)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    return default


@dataclass
class LiveSessionConfig:
    """Live session configuration."""

    # Remote conversational service
    gemini_api_key: str
    live_model: str = "gemini-2.5-flash-native-audio-preview-12-2025"
    context_model: str = "gemini-2.5-flash"
    voice_name: str = "Kore"
    scenario: str = "default"

    # Signal relay (telemetry, actuation, state log)
    relay_url: Optional[str] = None
    relay_timeout_seconds: float = 10.0

    # Audio
    capture_sample_rate: int = 16000
    capture_frame_size: int = 4096
    playback_sample_rate: int = 24000
    mic_gain: float = 1.0
    high_sensitivity: bool = False

    # Background nudges while open
    nudge_on_open: bool = True
    nudge_interval_seconds: float = 20.0

    # Location
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_url: str = "https://ipapi.co/json/"

    # Control plane HTTP server
    control_host: str = "0.0.0.0"
    control_port: int = 8000

    @property
    def effective_gain(self) -> float:
        """Gain applied to capture frames before encoding."""
        if self.high_sensitivity:
            return HIGH_SENSITIVITY_GAIN
        return self.mic_gain

    @property
    def has_static_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def from_env(cls) -> "LiveSessionConfig":
        """
        Load configuration from environment variables.

        Raises KeyError when neither GEMINI_API_KEY nor API_KEY is set.
        """
        api_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")
        if not api_key:
            raise KeyError("GEMINI_API_KEY")

        return cls(
            gemini_api_key=api_key,
            live_model=os.environ.get("LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-12-2025"),
            context_model=os.environ.get("CONTEXT_MODEL", "gemini-2.5-flash"),
            voice_name=os.environ.get("LIVE_VOICE", "Kore"),
            scenario=os.environ.get("AGENT_SCENARIO", "default"),
            relay_url=os.environ.get("SYSTEM_CONTROL_URL") or None,
            relay_timeout_seconds=_parse_float_env("RELAY_TIMEOUT_SECONDS", default=10.0),
            capture_sample_rate=_parse_int_env("CAPTURE_SAMPLE_RATE", default=16000),
            capture_frame_size=_parse_int_env("CAPTURE_FRAME_SIZE", default=4096),
            playback_sample_rate=_parse_int_env("PLAYBACK_SAMPLE_RATE", default=24000),
            mic_gain=_parse_float_env("MIC_GAIN", default=1.0),
            high_sensitivity=_parse_bool_env("HIGH_SENSITIVITY", default=False),
            nudge_on_open=_parse_bool_env("NUDGE_ON_OPEN", default=True),
            nudge_interval_seconds=_parse_float_env("NUDGE_INTERVAL_SECONDS", default=20.0),
            latitude=_parse_optional_float_env("LOCATION_LAT"),
            longitude=_parse_optional_float_env("LOCATION_LON"),
            location_url=os.environ.get("LOCATION_URL", "https://ipapi.co/json/"),
            control_host=os.environ.get("CONTROL_HOST", "0.0.0.0"),
            control_port=_parse_int_env("CONTROL_PORT", default=8000),
        )


def get_config() -> LiveSessionConfig:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = LiveSessionConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[LiveSessionConfig] = None
