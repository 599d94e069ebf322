"""
Worker command builder.

Constructs the ffmpeg command that captures one audio device and pushes the
encoded audio to an Icecast mountpoint.
"""

import logging
import re
from typing import List, Optional
from urllib.parse import quote

from stream_manager.config import AudioFormat, StreamManagerSettings, get_format_config

logger = logging.getLogger(__name__)

_CREDENTIALS_PATTERN = re.compile(r"(icecast://[^:/]+:)[^@]*(@)")


def mask_command(cmd: List[str]) -> str:
    """Join a command for logging with the source password masked."""
    return " ".join(_CREDENTIALS_PATTERN.sub(r"\1***\2", part) for part in cmd)


class WorkerCommandBuilder:
    """
    Builds ffmpeg capture/encode/push commands.

    One command per stream: device input, audio encoding at the stream's
    bitrate, and an icecast:// output whose path is the stream id.
    """

    def __init__(self, config: StreamManagerSettings):
        """
        Initialize command builder.

        Args:
            config: Stream manager configuration
        """
        self.config = config

    def build_command(
        self,
        stream_id: str,
        device_id: str,
        bitrate: int,
        host: str,
        port: int,
        source_password: str,
        audio_format: AudioFormat = AudioFormat.MP3,
        source_user: str = "source",
    ) -> List[str]:
        """
        Build the complete worker command.

        Args:
            stream_id: Stream id, also used as the mountpoint name
            device_id: Capture device identifier
            bitrate: Output bitrate in kbps
            host: Icecast host the worker pushes to
            port: Icecast port
            source_password: Icecast source password
            audio_format: Output format
            source_user: Icecast source user

        Returns:
            List of command arguments for subprocess

        Raises:
            ValueError: If stream_id or device_id is empty
        """
        if not stream_id or not stream_id.strip():
            raise ValueError("stream_id cannot be empty")
        if not device_id or not device_id.strip():
            raise ValueError("device_id cannot be empty")

        cmd = [self.config.ffmpeg_binary, "-hide_banner"]

        cmd.extend(self._build_input(device_id))
        cmd.extend(self._build_audio_encoding(bitrate, audio_format))
        cmd.append(
            self.build_icecast_url(host, port, stream_id, source_password, source_user)
        )
        cmd.extend(["-loglevel", self.config.ffmpeg_log_level])

        logger.debug(f"Built worker command: {mask_command(cmd)}")
        return cmd

    def _build_input(self, device_id: str) -> List[str]:
        input_format = self.config.get_input_format()
        device = device_id

        if input_format == "dshow" and not device.startswith("audio="):
            device = f"audio={device}"
        elif input_format == "avfoundation" and not device.startswith(":"):
            # avfoundation takes "video:audio"; audio-only capture has an empty video index
            device = f":{device}"

        return ["-f", input_format, "-i", device]

    def _build_audio_encoding(self, bitrate: int, audio_format: AudioFormat) -> List[str]:
        fmt = get_format_config(audio_format)
        return [
            "-acodec",
            fmt.codec,
            "-b:a",
            f"{bitrate}k",
            "-ar",
            str(self.config.sample_rate),
            "-ac",
            str(self.config.channels),
            "-content_type",
            fmt.content_type,
            "-f",
            fmt.container,
        ]

    @staticmethod
    def build_icecast_url(
        host: str,
        port: int,
        stream_id: str,
        source_password: str,
        source_user: str = "source",
    ) -> str:
        """Icecast push URL for a mountpoint."""
        password = quote(source_password, safe="")
        return f"icecast://{source_user}:{password}@{host}:{port}/{stream_id}"

    @staticmethod
    def build_listen_url(host: str, port: int, stream_id: str, scheme: Optional[str] = None) -> str:
        """Listener URL for a mountpoint."""
        return f"{scheme or 'http'}://{host}:{port}/{stream_id}"
