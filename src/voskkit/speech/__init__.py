"""Speech engine handles, audio normalization and file transcription"""

from .audio_converter import AudioTranscoder, needs_transcoding, open_pcm_stream
from .audio_info import AudioInfo
from .engine import EngineHandle, Recognizer, VoskEngineHandle, extract_text
from .transcription_pipeline import TranscriptionPipeline

__all__ = [
    "AudioInfo",
    "AudioTranscoder",
    "EngineHandle",
    "Recognizer",
    "TranscriptionPipeline",
    "VoskEngineHandle",
    "extract_text",
    "needs_transcoding",
    "open_pcm_stream",
]
