"""Audio input normalization

Compressed formats are transcoded by an ffmpeg subprocess into a temporary
WAV file. WAV (or raw PCM) input is then read as a PCM stream; anything that
is not already 16 kHz mono 16-bit little-endian goes through an in-process
downmix and resample.
"""

import os
import shutil
import subprocess
import tempfile
import wave
from math import gcd
from pathlib import Path
from typing import Optional, Union

import numpy as np
from loguru import logger
from scipy import signal

from ..core.cancellation import CancellationToken
from ..utils.exceptions import ConversionError, TranscriptionCancelledError

TARGET_SAMPLE_RATE = 16000
TARGET_CHANNELS = 1
TARGET_SAMPLE_WIDTH = 2

TRANSCODE_EXTENSIONS = frozenset({".mp3", ".m4a", ".flac", ".ogg", ".aac", ".wma", ".opus"})
RAW_PCM_EXTENSIONS = frozenset({".raw", ".pcm"})

CANCELLED_MESSAGE = "Conversion cancelled by user"


def needs_transcoding(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in TRANSCODE_EXTENSIONS


class AudioTranscoder:
    """Runs ffmpeg to produce a canonical 16 kHz mono PCM WAV file"""

    def __init__(self, ffmpeg: str = "ffmpeg", poll_interval: float = 0.1):
        """
        Args:
            ffmpeg: ffmpeg executable name or path
            poll_interval: Seconds between cancellation checks while ffmpeg runs
        """
        self.ffmpeg = ffmpeg
        self.poll_interval = poll_interval

    def transcode(self, source: Union[str, Path], token: Optional[CancellationToken] = None) -> Path:
        """Convert ``source`` into a temporary WAV file

        The caller owns the returned file and must delete it.

        Raises:
            TranscriptionCancelledError: If cancelled before, during or after ffmpeg runs
            ConversionError: If ffmpeg is missing or fails
        """
        source = Path(source)
        token = token or CancellationToken()
        token.raise_if_cancelled(CANCELLED_MESSAGE, TranscriptionCancelledError)

        executable = shutil.which(self.ffmpeg)
        if executable is None:
            raise ConversionError(
                f"ffmpeg executable not found: {self.ffmpeg}",
                context={"ffmpeg": self.ffmpeg},
            )

        fd, tmp_name = tempfile.mkstemp(prefix="voskkit_", suffix=".wav")
        os.close(fd)
        output = Path(tmp_name)

        logger.info(f"Converting {source.name} to WAV format...")
        try:
            self._run(executable, source, output, token)
            token.raise_if_cancelled(CANCELLED_MESSAGE, TranscriptionCancelledError)
        except BaseException:
            output.unlink(missing_ok=True)
            raise

        logger.debug(f"Conversion complete: {output}")
        return output

    def _run(self, executable: str, source: Path, output: Path, token: CancellationToken) -> None:
        cmd = [
            executable,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-i", str(source),
            "-vn",
            "-acodec", "pcm_s16le",
            "-ar", str(TARGET_SAMPLE_RATE),
            "-ac", str(TARGET_CHANNELS),
            "-f", "wav",
            str(output),
        ]

        with tempfile.TemporaryFile() as stderr_file:
            try:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=stderr_file,
                )
            except OSError as e:
                raise ConversionError(
                    f"Failed to start ffmpeg: {e}", context={"cmd": cmd}, original_exception=e
                ) from e

            while True:
                try:
                    returncode = process.wait(timeout=self.poll_interval)
                    break
                except subprocess.TimeoutExpired:
                    if token.is_cancelled:
                        process.kill()
                        process.wait()
                        logger.info(f"ffmpeg conversion of {source.name} cancelled")
                        raise TranscriptionCancelledError(CANCELLED_MESSAGE)

            if returncode != 0:
                stderr_file.seek(0)
                details = stderr_file.read().decode("utf-8", errors="replace").strip()
                raise ConversionError(
                    f"Audio conversion failed. The file may be corrupted or in an "
                    f"unsupported format.\nError: {details or f'ffmpeg exited with {returncode}'}",
                    context={"source": str(source), "returncode": returncode},
                )


class PcmStream:
    """Readable PCM sample stream"""

    sample_rate = TARGET_SAMPLE_RATE
    channels = TARGET_CHANNELS
    sample_width = TARGET_SAMPLE_WIDTH

    def read(self, size: int) -> bytes:
        raise NotImplementedError

    def close(self) -> None:
        pass

    @property
    def is_canonical(self) -> bool:
        return (
            self.sample_rate == TARGET_SAMPLE_RATE
            and self.channels == TARGET_CHANNELS
            and self.sample_width == TARGET_SAMPLE_WIDTH
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class WaveStream(PcmStream):
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        try:
            self._wave = wave.open(str(self.path), "rb")
        except (wave.Error, EOFError) as e:
            raise ConversionError(
                f"Unsupported or corrupted WAV file {self.path.name}: {e}",
                context={"path": str(self.path)},
                original_exception=e,
            ) from e
        except OSError as e:
            raise ConversionError(
                f"Cannot open audio file {self.path}: {e}",
                context={"path": str(self.path)},
                original_exception=e,
            ) from e

        self.sample_rate = self._wave.getframerate()
        self.channels = self._wave.getnchannels()
        self.sample_width = self._wave.getsampwidth()
        self._frame_size = self.channels * self.sample_width

    def read(self, size: int) -> bytes:
        frames = max(size // self._frame_size, 1)
        return self._wave.readframes(frames)

    def close(self) -> None:
        self._wave.close()


class RawPcmStream(PcmStream):
    """Headerless canonical PCM"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        try:
            self._file = open(self.path, "rb")
        except OSError as e:
            raise ConversionError(
                f"Cannot open audio file {self.path}: {e}",
                context={"path": str(self.path)},
                original_exception=e,
            ) from e

    def read(self, size: int) -> bytes:
        return self._file.read(size)

    def close(self) -> None:
        self._file.close()


def pcm_to_float(data: bytes, sample_width: int, channels: int) -> np.ndarray:
    """Decode interleaved PCM to mono float samples on the int16 scale"""
    frame_size = sample_width * channels
    data = data[: len(data) - len(data) % frame_size]

    if sample_width == 1:
        samples = (np.frombuffer(data, dtype=np.uint8).astype(np.float32) - 128.0) * 256.0
    elif sample_width == 2:
        samples = np.frombuffer(data, dtype="<i2").astype(np.float32)
    elif sample_width == 3:
        raw = np.frombuffer(data, dtype=np.uint8).reshape(-1, 3).astype(np.int32)
        ints = raw[:, 0] | (raw[:, 1] << 8) | (raw[:, 2] << 16)
        ints = np.where(ints >= 1 << 23, ints - (1 << 24), ints)
        samples = ints.astype(np.float32) / 256.0
    elif sample_width == 4:
        samples = np.frombuffer(data, dtype="<i4").astype(np.float32) / 65536.0
    else:
        raise ConversionError(f"Unsupported sample width: {sample_width} bytes")

    if channels > 1:
        samples = samples.reshape(-1, channels).mean(axis=1)
    return samples


class ResamplingStream(PcmStream):
    """Wraps a non-canonical stream and yields 16 kHz mono int16 PCM

    Works block by block (one second of source audio at a time) so long
    files are never loaded whole.
    """

    def __init__(self, source: PcmStream, target_rate: int = TARGET_SAMPLE_RATE):
        if source.sample_width not in (1, 2, 3, 4):
            raise ConversionError(f"Unsupported sample width: {source.sample_width} bytes")

        self._source = source
        self.sample_rate = target_rate
        self.channels = TARGET_CHANNELS
        self.sample_width = TARGET_SAMPLE_WIDTH

        divisor = gcd(target_rate, source.sample_rate)
        self._up = target_rate // divisor
        self._down = source.sample_rate // divisor
        self._block_bytes = source.sample_rate * source.channels * source.sample_width
        self._buffer = bytearray()
        self._eof = False

        logger.debug(
            f"Resampling {source.sample_rate} Hz/{source.channels} ch/"
            f"{source.sample_width * 8} bit to {target_rate} Hz mono 16 bit"
        )

    def read(self, size: int) -> bytes:
        while len(self._buffer) < size and not self._eof:
            block = self._source.read(self._block_bytes)
            if not block:
                self._eof = True
                break
            self._buffer.extend(self._convert(block))

        chunk = bytes(self._buffer[:size])
        del self._buffer[:size]
        return chunk

    def _convert(self, block: bytes) -> bytes:
        samples = pcm_to_float(block, self._source.sample_width, self._source.channels)
        if self._up != self._down and samples.size:
            samples = signal.resample_poly(samples, self._up, self._down)
        return np.clip(np.round(samples), -32768, 32767).astype("<i2").tobytes()

    def close(self) -> None:
        self._source.close()


def open_pcm_stream(path: Union[str, Path]) -> PcmStream:
    """Open ``path`` as canonical PCM, resampling when needed

    Raises:
        ConversionError: If the file cannot be read as PCM audio
    """
    path = Path(path)
    if path.suffix.lower() in RAW_PCM_EXTENSIONS:
        return RawPcmStream(path)

    stream = WaveStream(path)
    if stream.is_canonical:
        return stream
    try:
        return ResamplingStream(stream)
    except ConversionError:
        stream.close()
        raise
