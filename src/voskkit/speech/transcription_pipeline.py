"""Streaming file transcription against an opened engine handle"""

from pathlib import Path
from typing import Callable, List, Optional, Union

from loguru import logger

from ..core.cancellation import CancellationToken
from ..core.task_events import EventStream, run_in_background
from ..utils.exceptions import ConversionError, EngineError, TranscriptionCancelledError, VoskKitError
from .audio_converter import TARGET_SAMPLE_RATE, AudioTranscoder, needs_transcoding, open_pcm_stream
from .engine import EngineHandle, Recognizer, extract_text

DEFAULT_BUFFER_SIZE = 4096

TextCallback = Callable[[str], None]


class TranscriptionPipeline:
    """Feeds an audio file through a recognizer and reports text as it decodes

    Steps:
    1. Transcode compressed formats (mp3, flac, ...) to 16 kHz mono WAV via ffmpeg
    2. Open the PCM stream, resampling in process when the format differs
    3. Read fixed-size buffers into the recognizer, emitting each completed utterance
    4. Flush the trailing utterance

    Cancellation is checked before every buffer; a cancelled run raises
    :class:`TranscriptionCancelledError` without flushing.
    """

    def __init__(self, transcoder: Optional[AudioTranscoder] = None, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.transcoder = transcoder or AudioTranscoder()
        self.buffer_size = buffer_size

    @classmethod
    def from_config(cls, config) -> "TranscriptionPipeline":
        return cls(
            transcoder=AudioTranscoder(ffmpeg=config.get_setting("transcription.ffmpeg", "ffmpeg")),
            buffer_size=config.get_setting("transcription.buffer_size", DEFAULT_BUFFER_SIZE),
        )

    def transcribe(
        self,
        audio_file: Union[str, Path],
        engine: EngineHandle,
        on_text: TextCallback,
        token: Optional[CancellationToken] = None,
    ) -> List[str]:
        """Transcribe ``audio_file`` on the calling thread

        Args:
            audio_file: WAV, raw PCM or any ffmpeg-readable compressed format
            engine: Opened engine handle (borrowed, not closed here)
            on_text: Receives each non-empty decoded fragment
            token: Cancellation token polled once per buffer

        Returns:
            The fragments passed to ``on_text``, in order

        Raises:
            TranscriptionCancelledError: If cancelled
            ConversionError: If the audio cannot be converted or read
            EngineError: If the engine fails while decoding
        """
        audio_file = Path(audio_file)
        token = token or CancellationToken()

        if not audio_file.is_file():
            raise ConversionError(
                f"Audio file not found: {audio_file}",
                context={"path": str(audio_file)},
                recovery_suggestions=["Check the audio file path"],
            )

        temp_file: Optional[Path] = None
        try:
            source = audio_file
            if needs_transcoding(audio_file):
                temp_file = self.transcoder.transcode(audio_file, token)
                source = temp_file

            logger.info(f"Transcribing {audio_file.name} with model {engine.name}")
            fragments = self._decode(source, engine, on_text, token)
        finally:
            if temp_file is not None:
                temp_file.unlink(missing_ok=True)
                logger.debug(f"Removed temporary file {temp_file}")

        logger.info(f"Transcription of {audio_file.name} finished: {len(fragments)} fragment(s)")
        return fragments

    def transcribe_async(
        self,
        audio_file: Union[str, Path],
        engine: EngineHandle,
        token: Optional[CancellationToken] = None,
    ) -> EventStream:
        """Transcribe on a worker thread

        Returns:
            Stream of :class:`TextEvent` ending in a completed event carrying
            the fragment list, or a failed event
        """
        return run_in_background(
            "transcribe",
            lambda stream: self.transcribe(audio_file, engine, stream.text, stream.token),
            token=token,
        )

    def _decode(
        self, source: Path, engine: EngineHandle, on_text: TextCallback, token: CancellationToken
    ) -> List[str]:
        fragments: List[str] = []

        def emit(result_json: str) -> None:
            text = extract_text(result_json)
            if text:
                fragments.append(text)
                on_text(text)

        stream = open_pcm_stream(source)
        try:
            recognizer: Recognizer = _engine_call(engine.create_recognizer, TARGET_SAMPLE_RATE)
            try:
                while True:
                    token.raise_if_cancelled("Transcription cancelled by user", TranscriptionCancelledError)
                    data = stream.read(self.buffer_size)
                    if not data:
                        break
                    if _engine_call(recognizer.accept_waveform, data):
                        emit(_engine_call(recognizer.result))

                emit(_engine_call(recognizer.final_result))
            finally:
                recognizer.close()
        finally:
            stream.close()

        return fragments


def _engine_call(func, *args):
    try:
        return func(*args)
    except VoskKitError:
        raise
    except Exception as e:
        raise EngineError(f"Speech engine failed: {e}", original_exception=e) from e
