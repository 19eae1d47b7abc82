"""HTTP session factory and connectivity probe"""

import threading
import time
from typing import Callable, Optional

import requests
from loguru import logger
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .. import __version__

USER_AGENT = f"voskkit/{__version__}"
DEFAULT_PROBE_URL = "https://alphacephei.com/vosk/models"


def create_http_session(retries: int = 2) -> requests.Session:
    """Create a pooled ``requests`` session with a small retry budget

    Args:
        retries: Connection-level retries for idempotent requests

    Returns:
        Configured session with the voskkit User-Agent
    """
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})

    retry_strategy = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET", "HEAD"],
    )
    adapter = HTTPAdapter(
        pool_connections=4,
        pool_maxsize=8,
        max_retries=retry_strategy,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class ConnectivityProbe:
    """Short-timeout reachability check with a briefly cached result"""

    def __init__(
        self,
        url: str = DEFAULT_PROBE_URL,
        timeout: float = 3.0,
        cache_seconds: float = 5.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            url: Well-known URL expected to be reachable when online
            timeout: Connect/read timeout in seconds
            cache_seconds: How long a probe result is reused
            session: HTTP session (a fresh one without retries by default)
            clock: Monotonic time source
        """
        self.url = url
        self.timeout = timeout
        self.cache_seconds = cache_seconds
        self._session = session or create_http_session(retries=0)
        self._clock = clock
        self._lock = threading.Lock()
        self._last_check: Optional[float] = None
        self._last_result = False

    def is_available(self) -> bool:
        """Return True if the probe URL answered recently or answers now"""
        with self._lock:
            now = self._clock()
            if self._last_check is not None and now - self._last_check < self.cache_seconds:
                return self._last_result

            self._last_check = now
            self._last_result = self._perform_check()
            return self._last_result

    def invalidate(self) -> None:
        """Forget the cached result"""
        with self._lock:
            self._last_check = None

    def _perform_check(self) -> bool:
        try:
            response = self._session.get(self.url, timeout=self.timeout, stream=True)
            response.close()
            return response.status_code < 500
        except requests.RequestException as e:
            logger.debug(f"Connectivity probe failed: {e}")
            return False
