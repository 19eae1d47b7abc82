"""Remote model catalog client

Fetches the public Vosk model listing (an HTML page of headings followed by
tables) and turns it into sorted :class:`ModelDescriptor` objects. Results
are cached in memory for an hour.

Page structure relied upon:
- ``<h2>`` starts a section (regular models, punctuation, speaker id)
- ``<h3>``/``<h4>`` names the language of the tables that follow
- each ``<table>`` row is ``[name, size, accuracy?, description?, license?]``
"""

import threading
import time
from html.parser import HTMLParser
from typing import Callable, Dict, List, Optional, Set, Tuple

import requests
from loguru import logger

from ..core.task_events import EventStream, run_in_background
from ..utils.exceptions import NetworkError
from ..utils.network import create_http_session
from .descriptor import (
    UNKNOWN_LANGUAGE,
    CatalogSection,
    ModelDescriptor,
    categorize,
    make_descriptor,
    normalize_language_heading,
    section_from_heading,
)

DEFAULT_PAGE_URL = "https://alphacephei.com/vosk/models"
DEFAULT_DOWNLOAD_BASE_URL = "https://alphacephei.com/vosk/models/"
DEFAULT_TIMEOUT = 10
CACHE_SECONDS = 3600

HEADER_PLACEHOLDERS = {"model", "name"}

# ("heading", tag, text) or ("table", rows)
Block = Tuple


def _clean_text(parts: List[str]) -> str:
    return " ".join("".join(parts).split())


class _CatalogPageParser(HTMLParser):
    """Flattens the page into heading and table blocks in document order"""

    HEADING_TAGS = ("h2", "h3", "h4")

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.blocks: List[Block] = []
        self._heading_tag: Optional[str] = None
        self._heading_parts: List[str] = []
        self._table_depth = 0
        self._rows: List[List[str]] = []
        self._row: Optional[List[str]] = None
        self._cell: Optional[List[str]] = None

    def handle_starttag(self, tag, attrs):
        if tag in self.HEADING_TAGS and self._table_depth == 0:
            self._heading_tag = tag
            self._heading_parts = []
        elif tag == "table":
            self._table_depth += 1
            if self._table_depth == 1:
                self._rows = []
                self._row = None
                self._cell = None
        elif tag == "br":
            self.handle_data(" ")
        elif self._table_depth == 1:
            if tag == "tr":
                self._finish_row()
                self._row = []
            elif tag in ("td", "th"):
                self._finish_cell()
                if self._row is None:
                    self._row = []
                # header cells are not data cells
                self._cell = [] if tag == "td" else None

    def handle_endtag(self, tag):
        if tag == self._heading_tag:
            self.blocks.append(("heading", tag, _clean_text(self._heading_parts)))
            self._heading_tag = None
        elif tag == "table" and self._table_depth > 0:
            self._table_depth -= 1
            if self._table_depth == 0:
                self._finish_row()
                self.blocks.append(("table", self._rows))
                self._rows = []
        elif self._table_depth == 1:
            if tag in ("td", "th"):
                self._finish_cell()
            elif tag == "tr":
                self._finish_row()

    def handle_data(self, data):
        if self._heading_tag is not None:
            self._heading_parts.append(data)
        if self._cell is not None:
            self._cell.append(data)

    def close(self):
        super().close()
        if self._table_depth > 0:
            self._finish_row()
            self.blocks.append(("table", self._rows))
            self._table_depth = 0

    def _finish_cell(self):
        if self._cell is not None and self._row is not None:
            self._row.append(_clean_text(self._cell))
        self._cell = None

    def _finish_row(self):
        self._finish_cell()
        if self._row is not None:
            self._rows.append(self._row)
        self._row = None


def parse_catalog_page(html: str, download_base_url: str = DEFAULT_DOWNLOAD_BASE_URL) -> List[ModelDescriptor]:
    """Parse the catalog HTML into a sorted descriptor list

    Malformed rows are logged and skipped; they never abort the parse.
    """
    parser = _CatalogPageParser()
    parser.feed(html)
    parser.close()

    base_url = download_base_url.rstrip("/") + "/"
    section = CatalogSection.MODELS
    language = UNKNOWN_LANGUAGE
    models: List[ModelDescriptor] = []

    for block in parser.blocks:
        if block[0] == "heading":
            _, tag, text = block
            if tag == "h2":
                section = section_from_heading(text)
            else:
                language = normalize_language_heading(text)
            continue

        for cells in block[1]:
            try:
                descriptor = _parse_row(cells, language, section, base_url)
            except Exception as e:
                logger.warning(f"Failed to parse model row {cells!r}: {e}")
                continue
            if descriptor is not None:
                models.append(descriptor)

    models.sort()
    return models


def _parse_row(
    cells: List[str], language: str, section: CatalogSection, base_url: str
) -> Optional[ModelDescriptor]:
    if len(cells) < 4:
        return None

    name = cells[0].strip()
    if not name or name.lower() in HEADER_PLACEHOLDERS:
        return None

    size = cells[1].strip()
    accuracy = cells[2].strip() if len(cells) > 2 else ""
    description = cells[3].strip() if len(cells) > 3 else ""
    license_text = cells[4].strip() if len(cells) > 4 else "Unknown"

    return make_descriptor(
        name,
        f"{base_url}{name}.zip",
        language=language,
        size=size,
        accuracy=accuracy,
        description=description,
        license=license_text,
        category=categorize(name, section, size),
    )


class CatalogClient:
    """Fetches, parses and caches the remote model catalog"""

    def __init__(
        self,
        page_url: str = DEFAULT_PAGE_URL,
        download_base_url: str = DEFAULT_DOWNLOAD_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        cache_seconds: float = CACHE_SECONDS,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            page_url: URL of the HTML model listing
            download_base_url: Prefix for ``<name>.zip`` download URLs
            timeout: Network timeout in seconds
            cache_seconds: Freshness window of the in-memory cache
            session: HTTP session (pooled default session if omitted)
            clock: Monotonic time source
        """
        self.page_url = page_url
        self.download_base_url = download_base_url
        self.timeout = timeout
        self.cache_seconds = cache_seconds
        self._session = session or create_http_session()
        self._clock = clock

        self._lock = threading.Lock()
        self._models: List[ModelDescriptor] = []
        self._by_language: Dict[str, List[ModelDescriptor]] = {}
        self._last_fetch: Optional[float] = None

    @classmethod
    def from_config(cls, config, session: Optional[requests.Session] = None) -> "CatalogClient":
        return cls(
            page_url=config.get_setting("catalog.url", DEFAULT_PAGE_URL),
            download_base_url=config.get_setting("catalog.download_base_url", DEFAULT_DOWNLOAD_BASE_URL),
            timeout=config.get_setting("catalog.timeout", DEFAULT_TIMEOUT),
            cache_seconds=config.get_setting("catalog.cache_seconds", CACHE_SECONDS),
            session=session,
        )

    def fetch(self, force_refresh: bool = False) -> List[ModelDescriptor]:
        """Return the catalog, from cache when fresh

        Args:
            force_refresh: Ignore the cache and hit the network

        Returns:
            Sorted descriptor list (a copy)

        Raises:
            NetworkError: If the page cannot be retrieved
        """
        with self._lock:
            now = self._clock()
            if (
                not force_refresh
                and self._models
                and self._last_fetch is not None
                and now - self._last_fetch < self.cache_seconds
            ):
                return list(self._models)

            html = self._download_page()
            models = parse_catalog_page(html, self.download_base_url)

            by_language: Dict[str, List[ModelDescriptor]] = {}
            for model in models:
                by_language.setdefault(model.language, []).append(model)

            self._models = models
            self._by_language = by_language
            self._last_fetch = now

            logger.info(f"Catalog fetched: {len(models)} models in {len(by_language)} languages")
            return list(models)

    def fetch_async(self, force_refresh: bool = False) -> EventStream:
        """Fetch on a worker thread; the completion event carries the list"""
        return run_in_background("catalog-fetch", lambda stream: self.fetch(force_refresh))

    def models_by_language(self, language: str) -> List[ModelDescriptor]:
        return list(self._by_language.get(language, []))

    def available_languages(self) -> Set[str]:
        return set(self._by_language)

    def find_by_name(self, name: str) -> Optional[ModelDescriptor]:
        for model in self._models:
            if model.name == name:
                return model
        return None

    def _download_page(self) -> str:
        logger.debug(f"Fetching catalog from {self.page_url}")
        try:
            response = self._session.get(self.page_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(
                f"Failed to fetch models from {self.page_url}: {e}",
                context={"url": self.page_url},
                original_exception=e,
            ) from e
        return response.text
