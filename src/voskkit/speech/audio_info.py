"""Audio file metadata for display before transcription"""

import json
import subprocess
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from loguru import logger

# Vosk decodes at roughly 0.3x real time on a desktop CPU
TRANSCRIPTION_SPEED_FACTOR = 0.3
FFPROBE_TIMEOUT = 10


@dataclass(frozen=True)
class AudioInfo:
    duration_seconds: int
    format: str
    sample_rate: int
    channels: int
    file_size_bytes: int

    @classmethod
    def from_file(cls, path: Union[str, Path], ffprobe: str = "ffprobe") -> "AudioInfo":
        """Probe ``path``; unknown properties are reported as zero"""
        path = Path(path)
        size = path.stat().st_size if path.exists() else 0

        if path.suffix.lower() == ".wav":
            try:
                with wave.open(str(path), "rb") as wav:
                    frames = wav.getnframes()
                    rate = wav.getframerate()
                    duration = int(frames / rate) if rate > 0 else 0
                    return cls(duration, "WAV", rate, wav.getnchannels(), size)
            except (wave.Error, EOFError, OSError) as e:
                logger.debug(f"wave could not read {path.name}: {e}")

        try:
            return cls._probe(path, ffprobe, size)
        except (OSError, subprocess.SubprocessError, ValueError, KeyError) as e:
            logger.warning(f"Could not probe audio file {path.name}: {e}")
            return cls(0, "UNKNOWN", 0, 0, size)

    @classmethod
    def _probe(cls, path: Path, ffprobe: str, size: int) -> "AudioInfo":
        result = subprocess.run(
            [
                ffprobe,
                "-v", "quiet",
                "-print_format", "json",
                "-show_format",
                "-show_streams",
                str(path),
            ],
            capture_output=True,
            timeout=FFPROBE_TIMEOUT,
            check=True,
        )
        data = json.loads(result.stdout)

        audio = next((s for s in data.get("streams", []) if s.get("codec_type") == "audio"), {})
        duration = float(data.get("format", {}).get("duration") or audio.get("duration") or 0)
        return cls(
            duration_seconds=int(duration),
            format=path.suffix.lstrip(".").upper() or "UNKNOWN",
            sample_rate=int(audio.get("sample_rate") or 0),
            channels=int(audio.get("channels") or 0),
            file_size_bytes=size,
        )

    @property
    def formatted_duration(self) -> str:
        hours, rest = divmod(self.duration_seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours > 0:
            return f"{hours}:{minutes:02d}:{seconds:02d}"
        return f"{minutes}:{seconds:02d}"

    @property
    def formatted_size(self) -> str:
        if self.file_size_bytes < 1024:
            return f"{self.file_size_bytes} B"
        if self.file_size_bytes < 1024 * 1024:
            return f"{self.file_size_bytes / 1024:.1f} KB"
        return f"{self.file_size_bytes / (1024 * 1024):.1f} MB"

    @property
    def estimated_transcription_seconds(self) -> int:
        return int(self.duration_seconds * TRANSCRIPTION_SPEED_FACTOR)

    def __str__(self) -> str:
        return (
            f"{self.format} | {self.formatted_duration} | {self.sample_rate} Hz | "
            f"{self.channels} ch | {self.formatted_size}"
        )
