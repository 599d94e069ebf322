"""
Stream manager configuration and audio format presets.

Workers are ffmpeg processes that capture one audio device and push the
encoded stream to an Icecast mountpoint. Format presets cover the
MP3 → AAC → OGG fallback used when the local ffmpeg build lacks an encoder.
"""

import sys
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

ALLOWED_BITRATES = (128, 192, 256, 320)
MAX_NAME_LENGTH = 50


class AudioFormat(str, Enum):
    """Output formats a worker can encode to."""

    MP3 = "mp3"
    AAC = "aac"
    OGG = "ogg"


@dataclass
class FormatConfig:
    """Encoder settings for one output format."""

    name: str
    codec: str  # ffmpeg -acodec
    container: str  # ffmpeg -f for the output
    content_type: str  # Icecast content type header


FORMAT_PRESETS: Dict[AudioFormat, FormatConfig] = {
    AudioFormat.MP3: FormatConfig(
        name="MP3",
        codec="libmp3lame",
        container="mp3",
        content_type="audio/mpeg",
    ),
    AudioFormat.AAC: FormatConfig(
        name="AAC",
        codec="aac",
        container="adts",
        content_type="audio/aac",
    ),
    AudioFormat.OGG: FormatConfig(
        name="OGG Vorbis",
        codec="libvorbis",
        container="ogg",
        content_type="application/ogg",
    ),
}

FORMAT_FALLBACK_ORDER = [AudioFormat.MP3, AudioFormat.AAC, AudioFormat.OGG]


def default_input_format(platform: Optional[str] = None) -> str:
    """Return the ffmpeg capture input format for the platform."""
    platform = platform or sys.platform
    if platform.startswith("win"):
        return "dshow"
    if platform == "darwin":
        return "avfoundation"
    return "pulse"


class StreamManagerSettings(BaseSettings):
    """Stream manager configuration from environment variables."""

    # Worker binary
    ffmpeg_binary: str = Field(
        default="ffmpeg",
        description="Path to the ffmpeg binary used for capture workers",
    )

    # Persistence
    registry_path: str = Field(
        default="data/streams.json",
        description="Path of the persisted stream registry",
    )

    log_dir: str = Field(
        default="logs/streams",
        description="Directory receiving one stderr log per stream",
    )

    # Capture / encoding
    input_format: Optional[str] = Field(
        default=None,
        description="ffmpeg input format (dshow, pulse, alsa, avfoundation); platform default if unset",
    )

    audio_format: AudioFormat = Field(
        default=AudioFormat.MP3,
        description="Preferred output format; later formats are tried if the encoder is missing",
    )

    sample_rate: int = Field(
        default=44100,
        description="Output sample rate in Hz",
        ge=8000,
        le=96000,
    )

    channels: int = Field(
        default=2,
        description="Output channel count",
        ge=1,
        le=2,
    )

    ffmpeg_log_level: str = Field(
        default="info",
        description="ffmpeg -loglevel for worker processes",
    )

    # Process management
    start_grace_period: float = Field(
        default=2.0,
        description="Seconds a worker must stay alive before it counts as running",
        ge=0.1,
        le=30.0,
    )

    start_poll_interval: float = Field(
        default=0.25,
        description="Poll interval while verifying a worker start (seconds)",
        gt=0.0,
        le=5.0,
    )

    stop_timeout: float = Field(
        default=5.0,
        description="Seconds to wait after SIGTERM before force killing a worker",
        ge=0.5,
        le=60.0,
    )

    kill_timeout: float = Field(
        default=2.0,
        description="Seconds to wait after SIGKILL before giving up",
        ge=0.1,
        le=30.0,
    )

    stderr_tail_chars: int = Field(
        default=2000,
        description="Characters of worker stderr kept for diagnosis",
        ge=100,
        le=100000,
    )

    stop_streams_on_shutdown: bool = Field(
        default=True,
        description="Stop workers spawned by this instance when the control plane exits",
    )

    model_config = ConfigDict(
        env_prefix="STREAM_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_input_format(self) -> str:
        """Input format to hand ffmpeg, resolving the platform default."""
        return self.input_format or default_input_format()

    def get_format_chain(self) -> List[AudioFormat]:
        """Formats to try in order, starting with the preferred one."""
        start = FORMAT_FALLBACK_ORDER.index(self.audio_format)
        return FORMAT_FALLBACK_ORDER[start:]


def get_settings() -> StreamManagerSettings:
    """
    Get stream manager configuration from environment variables.

    Returns:
        StreamManagerSettings: Configuration instance
    """
    return StreamManagerSettings()


def get_format_config(audio_format: AudioFormat) -> FormatConfig:
    """
    Get encoder settings for a format.

    Args:
        audio_format: Output format

    Returns:
        FormatConfig: Encoder settings

    Raises:
        KeyError: If the format is unknown
    """
    if audio_format not in FORMAT_PRESETS:
        raise KeyError(f"Unknown audio format: {audio_format}")
    return FORMAT_PRESETS[audio_format]
