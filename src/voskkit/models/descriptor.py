"""Model descriptor value type and the name/size heuristics around it"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from functools import total_ordering
from typing import Any, Optional

BIG_MODEL_BYTES = 500_000_000

_SIZE_MULTIPLIERS = (
    (("GB", "G"), 1024 ** 3),
    (("MB", "M"), 1024 ** 2),
    (("KB", "K"), 1024),
)

# Substring markers in package directory names, e.g. vosk-model-small-en-us-0.15
LANGUAGE_MARKERS = (
    ("-en-", "English"),
    ("-ru-", "Russian"),
    ("-fr-", "French"),
    ("-de-", "German"),
    ("-es-", "Spanish"),
    ("-pt-", "Portuguese"),
    ("-cn-", "Chinese"),
    ("-ja-", "Japanese"),
    ("-it-", "Italian"),
    ("-nl-", "Dutch"),
    ("-ar-", "Arabic"),
    ("-fa-", "Farsi"),
    ("-hi-", "Hindi"),
    ("-uk-", "Ukrainian"),
    ("-tr-", "Turkish"),
    ("-vn-", "Vietnamese"),
    ("-ko-", "Korean"),
)

UNKNOWN_LANGUAGE = "Unknown"


class ModelCategory(Enum):
    """Model category; declaration order is the sort order"""

    SMALL = "Small"
    BIG = "Big"
    PUNCTUATION = "Punctuation"
    SPEAKER_ID = "SpeakerId"

    @property
    def rank(self) -> int:
        return list(ModelCategory).index(self)


class CatalogSection(Enum):
    """Catalog page section a table belongs to"""

    MODELS = "Models"
    PUNCTUATION = "Punctuation"
    SPEAKER_ID = "SpeakerId"


def _strip_to_number(text: str) -> float:
    return float(re.sub(r"[^0-9.]", "", text))


def parse_size_to_bytes(size: Optional[str]) -> int:
    """Convert a human size string (``"1.8G"``, ``"40M"``, ``"900K"``) to bytes

    Unrecognized units or unparseable numbers yield 0.
    """
    if not size:
        return 0

    size = size.strip().upper()
    for suffixes, multiplier in _SIZE_MULTIPLIERS:
        if size.endswith(suffixes):
            try:
                return int(_strip_to_number(size) * multiplier)
            except ValueError:
                return 0
    return 0


def language_from_package_name(name: str) -> str:
    """Guess the language of an installed package from its directory name"""
    for marker, language in LANGUAGE_MARKERS:
        if marker in name:
            return language
    return UNKNOWN_LANGUAGE


def normalize_language_heading(text: str) -> str:
    """Turn a catalog sub-heading into a language label"""
    text = re.sub(r"\s+Other\s*$", "", text.strip())
    if not text or text.lower() == "model list":
        return UNKNOWN_LANGUAGE
    return text


def section_from_heading(text: str) -> CatalogSection:
    if "Punctuation" in text:
        return CatalogSection.PUNCTUATION
    if "Speaker" in text:
        return CatalogSection.SPEAKER_ID
    return CatalogSection.MODELS


def categorize(name: str, section: CatalogSection, size: str) -> ModelCategory:
    """Derive a category from catalog section, name and size string"""
    if section is CatalogSection.PUNCTUATION:
        return ModelCategory.PUNCTUATION
    if section is CatalogSection.SPEAKER_ID:
        return ModelCategory.SPEAKER_ID
    if "small" in name.lower():
        return ModelCategory.SMALL

    size_upper = (size or "").upper()
    try:
        if "G" in size_upper and _strip_to_number(size_upper) >= 0.5:
            return ModelCategory.BIG
        if "M" in size_upper and "G" not in size_upper and _strip_to_number(size_upper) >= 500:
            return ModelCategory.BIG
    except ValueError:
        pass
    return ModelCategory.SMALL


@total_ordering
@dataclass(frozen=True, eq=False)
class ModelDescriptor:
    """Metadata for one model package, installed or not

    Two descriptors are the same model when their names match; every other
    field is ignored by ``==`` and ``hash``.
    """

    name: str
    download_url: str
    language: str = UNKNOWN_LANGUAGE
    size: str = "Unknown"
    accuracy: str = ""
    description: str = ""
    license: str = ""
    category: ModelCategory = ModelCategory.SMALL
    installed: bool = False
    installed_version: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return parse_size_to_bytes(self.size)

    @property
    def is_big(self) -> bool:
        return self.category is ModelCategory.BIG or self.size_bytes > BIG_MODEL_BYTES

    @property
    def display_name(self) -> str:
        return f"{self.name} [{self.language}] ({self.size})"

    def sort_key(self):
        return (self.language, self.category.rank, self.name)

    def as_installed(self, version: Optional[str] = None) -> "ModelDescriptor":
        """Copy of this descriptor marked installed with the given version label"""
        return replace(self, installed=True, installed_version=version or self.name)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ModelDescriptor):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)

    def __lt__(self, other: "ModelDescriptor") -> bool:
        if not isinstance(other, ModelDescriptor):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        return self.display_name


def make_descriptor(name: str, download_url: Optional[str], **fields: Any) -> ModelDescriptor:
    """Validating constructor for :class:`ModelDescriptor`

    Raises:
        ValueError: If ``name`` is empty or ``download_url`` is None
    """
    if not name or not name.strip():
        raise ValueError("Model name is required")
    if download_url is None:
        raise ValueError("Download URL is required")
    return ModelDescriptor(name=name.strip(), download_url=download_url, **fields)
