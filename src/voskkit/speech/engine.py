"""Speech engine handles

An :class:`EngineHandle` is an opened model bound to one installed package.
:class:`ModelStore` owns the handles and closes each one exactly once; the
transcription pipeline only borrows them to create recognizers.
"""

import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union

from loguru import logger

from ..utils.exceptions import EngineError

try:
    import vosk
except ImportError:
    logger.error("vosk not installed. Please run: pip install vosk")
    vosk = None

TARGET_SAMPLE_RATE = 16000

_TEXT_FIELD = '"text"'


def extract_text(result_json: str) -> str:
    """Pull the ``"text"`` value out of an engine result string

    This is a scan for the field name and the quoted value after it, not a
    JSON parse. Missing or malformed fields give an empty string.
    """
    if not result_json:
        return ""
    idx = result_json.find(_TEXT_FIELD)
    if idx == -1:
        return ""
    start = result_json.find('"', idx + len(_TEXT_FIELD))
    if start == -1:
        return ""
    end = result_json.find('"', start + 1)
    if end == -1:
        return ""
    return result_json[start + 1:end]


class Recognizer(ABC):
    """Streaming decoder created from an engine handle"""

    @abstractmethod
    def accept_waveform(self, data: bytes) -> bool:
        """Feed PCM bytes; True when an utterance has been completed"""

    @abstractmethod
    def result(self) -> str:
        """Result JSON of the last completed utterance"""

    @abstractmethod
    def final_result(self) -> str:
        """Flush and return the trailing utterance"""

    def close(self) -> None:
        pass


class EngineHandle(ABC):
    """An opened model; closed exactly once"""

    def __init__(self, name: str, path: Union[str, Path]):
        self.name = name
        self.path = Path(path)
        self._closed = False
        self._close_lock = threading.Lock()

    @abstractmethod
    def create_recognizer(self, sample_rate: int = TARGET_SAMPLE_RATE) -> Recognizer:
        pass

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._release()
        logger.debug(f"Engine handle closed: {self.name}")

    def _release(self) -> None:
        """Free native resources; called once from :meth:`close`"""

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, closed={self._closed})"


class VoskRecognizer(Recognizer):
    def __init__(self, recognizer):
        self._recognizer = recognizer

    def accept_waveform(self, data: bytes) -> bool:
        return bool(self._recognizer.AcceptWaveform(data))

    def result(self) -> str:
        return self._recognizer.Result()

    def final_result(self) -> str:
        return self._recognizer.FinalResult()

    def close(self) -> None:
        self._recognizer = None


class VoskEngineHandle(EngineHandle):
    """Engine handle backed by ``vosk.Model``"""

    def __init__(self, name: str, path: Union[str, Path]):
        super().__init__(name, path)
        if vosk is None:
            raise EngineError("vosk library is not available", context={"model": name})

        vosk.SetLogLevel(-1)
        logger.info(f"Loading Vosk model {name} from {self.path}")
        try:
            self._model = vosk.Model(str(self.path))
        except Exception as e:
            raise EngineError(
                f"Failed to load model {name}: {e}",
                context={"model": name, "path": str(self.path)},
                original_exception=e,
            ) from e

    def create_recognizer(self, sample_rate: int = TARGET_SAMPLE_RATE) -> Recognizer:
        if self.closed:
            raise EngineError(f"Engine handle for {self.name} is closed")
        return VoskRecognizer(vosk.KaldiRecognizer(self._model, sample_rate))

    def _release(self) -> None:
        self._model = None


def open_vosk_engine(name: str, path: Union[str, Path]) -> EngineHandle:
    """Default engine factory used by :class:`ModelStore`"""
    return VoskEngineHandle(name, path)
