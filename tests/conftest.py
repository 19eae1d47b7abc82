"""pytest configuration and shared fixtures"""
import io
import json
import sys
import wave
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import numpy as np
import pytest
import requests

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from voskkit.speech.engine import EngineHandle, Recognizer


PACKAGE_FILES = {
    "am/final.mdl": b"acoustic-model",
    "conf/mfcc.conf": b"--sample-frequency=16000\n",
    "conf/model.conf": b"--min-active=200\n",
    "graph/HCLG.fst": b"graph",
    "README": b"test model\n",
}

CATALOG_HTML = """
<html><body>
<h2>Model list</h2>
<h3>English</h3>
<table>
  <tr><th>Model</th><th>Size</th><th>WER</th><th>Notes</th><th>License</th></tr>
  <tr>
    <td><a href="https://alphacephei.com/vosk/models/vosk-model-small-en-us-0.15.zip">vosk-model-small-en-us-0.15</a></td>
    <td>40M</td><td>9.85</td><td>Lightweight wideband model</td><td>Apache 2.0</td>
  </tr>
  <tr>
    <td>vosk-model-en-us-0.22</td><td>1.8G</td><td>5.69</td><td>Accurate generic US English model</td><td>Apache 2.0</td>
  </tr>
</table>
<h3>Russian Other</h3>
<table>
  <tr><td>vosk-model-ru-0.42</td><td>1.8G</td><td>4.5</td><td>Big Russian model</td></tr>
  <tr><td>too-short</td><td>1M</td></tr>
</table>
<h2>Punctuation models</h2>
<h3>English</h3>
<table>
  <tr><td>vosk-recasepunc-en-0.22</td><td>1.6G</td><td></td><td>Punctuation for English</td><td>Apache 2.0</td></tr>
</table>
<h2>Speaker identification model</h2>
<h3>Model list</h3>
<table>
  <tr><td>vosk-model-spk-0.4</td><td>13M</td><td></td><td>Speaker model</td><td>Apache 2.0</td></tr>
</table>
</body></html>
"""


# ============= Package / archive helpers =============

def write_package(root: Path, files: Optional[Dict[str, bytes]] = None) -> Path:
    """Create a model package directory tree under ``root``"""
    for rel, content in (files or PACKAGE_FILES).items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    return root


def build_zip(files: Dict[str, bytes], directories: Iterable[str] = ()) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for directory in directories:
            archive.writestr(zipfile.ZipInfo(directory.rstrip("/") + "/"), b"")
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def package_zip_bytes(prefix: str = "") -> bytes:
    """Zip of a valid package, optionally wrapped in a top-level folder"""
    return build_zip({f"{prefix}{name}": content for name, content in PACKAGE_FILES.items()})


@pytest.fixture
def make_zip(tmp_path):
    """Factory writing a zip file with the given entries"""

    def _make(files: Dict[str, bytes], name: str = "archive.zip", directories: Iterable[str] = ()) -> Path:
        path = tmp_path / name
        path.write_bytes(build_zip(files, directories))
        return path

    return _make


# ============= Audio helpers =============

def write_wav(path: Path, samples: np.ndarray, rate: int = 16000, channels: int = 1, width: int = 2) -> Path:
    with wave.open(str(path), "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(width)
        wav.setframerate(rate)
        wav.writeframes(samples.tobytes())
    return path


@pytest.fixture
def wav_file(tmp_path):
    """One second of canonical 16 kHz mono 16-bit audio"""
    t = np.arange(16000) / 16000.0
    samples = (np.sin(2 * np.pi * 440 * t) * 8000).astype("<i2")
    return write_wav(tmp_path / "speech.wav", samples)


# ============= Engine stubs =============

def result_json(text: str) -> str:
    return json.dumps({"text": text}, indent=2)


class StubRecognizer(Recognizer):
    """Completes an utterance every ``every`` buffers until ``utterances`` runs out"""

    def __init__(self, utterances: List[str], final_text: str = "", every: int = 1):
        self.utterances = list(utterances)
        self.final_text = final_text
        self.every = every
        self.fed: List[bytes] = []
        self.closed = False
        self._pending: Optional[str] = None

    def accept_waveform(self, data: bytes) -> bool:
        self.fed.append(data)
        if self.utterances and len(self.fed) % self.every == 0:
            self._pending = self.utterances.pop(0)
            return True
        return False

    def result(self) -> str:
        text, self._pending = self._pending, None
        return result_json(text or "")

    def final_result(self) -> str:
        return result_json(self.final_text)

    def close(self) -> None:
        self.closed = True


class StubEngine(EngineHandle):
    def __init__(self, name: str = "stub-model", path: Path = Path("."), recognizer: Optional[StubRecognizer] = None):
        super().__init__(name, path)
        self.recognizer = recognizer or StubRecognizer([])
        self.sample_rates: List[int] = []
        self.release_count = 0

    def create_recognizer(self, sample_rate: int = 16000) -> Recognizer:
        self.sample_rates.append(sample_rate)
        return self.recognizer

    def _release(self) -> None:
        self.release_count += 1


@pytest.fixture
def stub_engine():
    return StubEngine()


# ============= HTTP fakes =============

class FakeResponse:
    def __init__(
        self,
        body: bytes = b"",
        status_code: int = 200,
        content_length: Optional[int] = None,
        chunk_size: Optional[int] = None,
        on_chunk=None,
        error: Optional[Exception] = None,
    ):
        self.body = body
        self.status_code = status_code
        self.headers = {}
        if content_length is not None:
            self.headers["content-length"] = str(content_length)
        self.forced_chunk_size = chunk_size
        self.on_chunk = on_chunk
        self.error = error
        self.closed = False

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size: int = 1):
        size = self.forced_chunk_size or chunk_size
        for index, offset in enumerate(range(0, len(self.body), size)):
            if self.on_chunk is not None:
                self.on_chunk(index)
            yield self.body[offset:offset + size]
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Maps URLs to canned responses (or exceptions) and records requests"""

    def __init__(self, responses: Optional[Dict[str, object]] = None):
        self.responses = responses or {}
        self.requests: List[str] = []

    def get(self, url: str, **kwargs):
        self.requests.append(url)
        response = self.responses.get(url)
        if response is None:
            raise requests.ConnectionError(f"No route to {url}")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response()
        return response


@pytest.fixture
def catalog_html():
    return CATALOG_HTML
