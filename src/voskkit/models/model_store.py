"""Local model store

Owns the models directory: discovers installed packages, installs new ones
from the catalog, deletes them, and caches opened engine handles.

Directory layout::

    <models_dir>/
        vosk-model-small-en-us-0.15/   installed package
            am/final.mdl
            conf/mfcc.conf
            graph/HCLG.fst
        vosk-model-small-en-us-0.15.zip   only while downloading
"""

import shutil
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import requests
from loguru import logger

from ..core.base.lifecycle_component import LifecycleComponent
from ..core.task_events import EventStream, run_in_background
from ..speech.engine import EngineHandle, open_vosk_engine
from ..utils.exceptions import (
    DownloadCancelledError,
    EngineError,
    NetworkError,
    PackageNotFoundError,
    PackageValidationError,
    StorageError,
)
from ..utils.network import create_http_session
from .archive_installer import ArchiveInstaller
from .catalog import CatalogClient
from .descriptor import ModelDescriptor, language_from_package_name, make_descriptor
from .download_coordinator import DownloadCoordinator, DownloadSession
from .package_layout import is_valid_package

DOWNLOAD_CHUNK_SIZE = 8192
DOWNLOAD_TIMEOUT = 60

ProgressCallback = Callable[[int], None]
EngineFactory = Callable[[str, Path], EngineHandle]


class ModelStore(LifecycleComponent):
    """Installed model packages and their engine handles

    Mutations (scan, install, delete) are serialized; reads work on
    snapshots of the installed map. Only one download runs at a time, as
    arbitrated by the injected :class:`DownloadCoordinator`.
    """

    def __init__(
        self,
        models_dir: Union[str, Path],
        catalog: CatalogClient,
        coordinator: Optional[DownloadCoordinator] = None,
        installer: Optional[ArchiveInstaller] = None,
        engine_factory: Optional[EngineFactory] = None,
        session: Optional[requests.Session] = None,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
        timeout: float = DOWNLOAD_TIMEOUT,
    ):
        """
        Args:
            models_dir: Root directory holding installed packages
            catalog: Source of downloadable descriptors
            coordinator: Download single-flight arbiter
            installer: Archive extractor
            engine_factory: ``(name, path) -> EngineHandle``; opens Vosk models by default
            session: HTTP session used for downloads
            chunk_size: Download read size in bytes
            timeout: Download connect/read timeout in seconds
        """
        super().__init__("ModelStore")

        self.models_dir = Path(models_dir).expanduser()
        self.catalog = catalog
        self.coordinator = coordinator or DownloadCoordinator()
        self._installer = installer or ArchiveInstaller()
        self._engine_factory = engine_factory or open_vosk_engine
        self._session = session or create_http_session()
        self.chunk_size = chunk_size
        self.timeout = timeout

        self._installed: Dict[str, ModelDescriptor] = {}
        self._engines: Dict[str, EngineHandle] = {}

        self._mutation_lock = threading.RLock()
        self._engine_lock = threading.Lock()
        self._model_locks: Dict[str, threading.Lock] = {}
        self._model_locks_guard = threading.Lock()

    # LifecycleComponent implementation

    def _do_start(self) -> bool:
        try:
            self.models_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create models directory {self.models_dir}: {e}")
            return False

        self.scan_installed()
        logger.info(f"Model store ready at {self.models_dir} ({len(self._installed)} installed)")
        return True

    def _do_stop(self) -> bool:
        with self._engine_lock:
            handles = list(self._engines.values())
            self._engines.clear()
        for handle in handles:
            handle.close()
        logger.info(f"Model store stopped, {len(handles)} engine handle(s) released")
        return True

    # Installed packages

    def scan_installed(self) -> List[ModelDescriptor]:
        """Rebuild the installed map from the models directory"""
        with self._mutation_lock:
            found: Dict[str, ModelDescriptor] = {}
            if self.models_dir.is_dir():
                for path in sorted(self.models_dir.iterdir()):
                    if not path.is_dir():
                        continue
                    if not is_valid_package(path):
                        logger.debug(f"Ignoring non-model directory {path.name}")
                        continue
                    found[path.name] = make_descriptor(
                        path.name,
                        "",
                        language=language_from_package_name(path.name),
                        installed=True,
                        installed_version=path.name,
                    )
            self._installed = found

            # Handles for packages that vanished from disk
            with self._engine_lock:
                stale = [name for name in self._engines if name not in found]
            for name in stale:
                self.unload_engine(name)

        logger.debug(f"Scan found {len(found)} installed model(s)")
        return sorted(found.values())

    def list_installed(self) -> List[ModelDescriptor]:
        return sorted(self._installed.values())

    def get_installed(self, name: str) -> Optional[ModelDescriptor]:
        return self._installed.get(name)

    def is_installed(self, name: str) -> bool:
        return name in self._installed

    def package_path(self, name: str) -> Path:
        return self.models_dir / self._check_name(name)

    # Catalog overlay

    def list_available(self, force_refresh: bool = False) -> List[ModelDescriptor]:
        """Catalog entries with installed state filled in

        Raises:
            NetworkError: If the catalog cannot be fetched
        """
        available = self.catalog.fetch(force_refresh)
        installed = dict(self._installed)

        result = []
        for descriptor in available:
            local = installed.get(descriptor.name)
            if local is not None:
                descriptor = descriptor.as_installed(local.installed_version)
            result.append(descriptor)
        return result

    def check_updates(self) -> Dict[str, ModelDescriptor]:
        """Installed packages whose catalog entry differs from the installed version

        Always refreshes the catalog.
        """
        catalog_by_name = {d.name: d for d in self.catalog.fetch(force_refresh=True)}

        updates: Dict[str, ModelDescriptor] = {}
        for installed in list(self._installed.values()):
            available = catalog_by_name.get(installed.name)
            if available is not None and available.name != installed.installed_version:
                updates[installed.name] = available
        return updates

    # Install / delete

    def install(
        self, descriptor: ModelDescriptor, on_progress: Optional[ProgressCallback] = None
    ) -> ModelDescriptor:
        """Download, extract and validate a package on the calling thread

        Args:
            descriptor: Catalog entry to install
            on_progress: Called with whole percents (0-100)

        Returns:
            The installed descriptor

        Raises:
            DownloadBusyError: If another download is in flight
            DownloadCancelledError: If cancelled via the coordinator
            NetworkError: On transport failure
            ExtractionError: If the archive is corrupt or unsafe
            PackageValidationError: If the extracted files are not a model
        """
        self._check_name(descriptor.name)
        session = self.coordinator.begin(descriptor.name)
        try:
            return self._install(descriptor, session, on_progress)
        finally:
            self.coordinator.clear(session)

    def install_async(self, descriptor: ModelDescriptor) -> EventStream:
        """Install on a worker thread

        Returns:
            Stream of :class:`ProgressEvent` ending in a completed event
            carrying the installed descriptor, or a failed event

        Raises:
            DownloadBusyError: If another download is in flight
        """
        name = self._check_name(descriptor.name)
        session = self.coordinator.begin(name)

        def work(stream: EventStream) -> ModelDescriptor:
            try:
                return self._install(descriptor, session, stream.progress)
            finally:
                self.coordinator.clear(session)

        stream = run_in_background(f"install-{name}", work, token=session.token, autostart=False)
        self.coordinator.attach(session, stream.thread)
        stream.start()
        return stream

    def cancel_download(self) -> bool:
        return self.coordinator.cancel()

    def is_download_in_progress(self) -> bool:
        return self.coordinator.has_active()

    def _install(
        self,
        descriptor: ModelDescriptor,
        session: DownloadSession,
        on_progress: Optional[ProgressCallback],
    ) -> ModelDescriptor:
        name = descriptor.name
        self.models_dir.mkdir(parents=True, exist_ok=True)
        archive_path = self.models_dir / f"{name}.zip"
        package_dir = self.models_dir / name

        logger.info(f"Installing model {name} from {descriptor.download_url}")
        try:
            self._download(descriptor.download_url, archive_path, session, on_progress)
            session.token.raise_if_cancelled("Download cancelled by user", DownloadCancelledError)

            # Loads wait on this lock, so they never see a partial package
            with self._mutation_lock:
                self.unload_engine(name)
                try:
                    self._installer.extract(archive_path, package_dir)
                    if not is_valid_package(package_dir):
                        raise PackageValidationError(
                            f"Downloaded model is not valid: {name}",
                            context={"model": name, "path": str(package_dir)},
                        )
                except Exception:
                    self._installed.pop(name, None)
                    if package_dir.exists():
                        shutil.rmtree(package_dir, ignore_errors=True)
                    raise

                installed = descriptor.as_installed(name)
                self._installed[name] = installed

        except Exception as e:
            logger.error(f"Failed to install model {name}: {e}")
            raise
        finally:
            archive_path.unlink(missing_ok=True)

        logger.info(f"Model {name} installed at {package_dir}")
        return installed

    def _download(
        self,
        url: str,
        destination: Path,
        session: DownloadSession,
        on_progress: Optional[ProgressCallback],
    ) -> int:
        try:
            response = self._session.get(url, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkError(
                f"Failed to download {url}: {e}", context={"url": url}, original_exception=e
            ) from e

        try:
            response.raise_for_status()
        except requests.RequestException as e:
            response.close()
            raise NetworkError(
                f"Failed to download {url}: {e}", context={"url": url}, original_exception=e
            ) from e

        downloaded = 0
        last_percent = 0

        try:
            total_size = _content_length(response)
            with open(destination, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    session.token.raise_if_cancelled("Download cancelled by user", DownloadCancelledError)
                    if not chunk:
                        continue
                    f.write(chunk)
                    downloaded += len(chunk)

                    if total_size > 0 and on_progress:
                        percent = min(downloaded * 100 // total_size, 100)
                        if percent != last_percent:
                            on_progress(percent)
                            last_percent = percent
        except requests.RequestException as e:
            raise NetworkError(
                f"Download of {url} interrupted: {e}",
                context={"url": url, "downloaded": downloaded},
                original_exception=e,
            ) from e
        finally:
            response.close()

        if on_progress and last_percent != 100:
            on_progress(100)

        logger.debug(f"Downloaded {downloaded} bytes to {destination}")
        return downloaded

    def delete(self, name: str) -> None:
        """Unload and remove an installed package

        Raises:
            StorageError: If the directory cannot be removed
        """
        self._check_name(name)
        with self._mutation_lock:
            self.unload_engine(name)
            package_dir = self.models_dir / name
            if package_dir.exists():
                try:
                    shutil.rmtree(package_dir)
                except OSError as e:
                    raise StorageError(
                        f"Failed to delete model {name}: {e}",
                        context={"path": str(package_dir)},
                        original_exception=e,
                    ) from e
            self._installed.pop(name, None)
        logger.info(f"Model {name} deleted")

    # Engine handles

    def load_engine(self, name: str) -> EngineHandle:
        """Return the cached engine handle for ``name``, opening it if needed

        Raises:
            PackageNotFoundError: If the package directory does not exist
            PackageValidationError: If the package is incomplete
            EngineError: If the engine fails to open the package
        """
        self._check_name(name)
        # Same lock order as install/delete: mutation first, then engines
        with self._mutation_lock, self._engine_lock:
            handle = self._engines.get(name)
            if handle is not None:
                return handle

            package_dir = self.models_dir / name
            if not package_dir.is_dir():
                raise PackageNotFoundError(f"Model not found: {name}", context={"model": name})
            if not is_valid_package(package_dir):
                raise PackageValidationError(f"Invalid Vosk model: {name}", context={"model": name})

            try:
                handle = self._engine_factory(name, package_dir)
            except EngineError:
                raise
            except Exception as e:
                raise EngineError(
                    f"Failed to load model {name}: {e}",
                    context={"model": name},
                    original_exception=e,
                ) from e

            self._engines[name] = handle
            logger.info(f"Engine loaded for model {name}")
            return handle

    def unload_engine(self, name: str) -> bool:
        """Close and drop the cached handle; no-op if none is cached"""
        with self._engine_lock:
            handle = self._engines.pop(name, None)
        if handle is None:
            return False
        handle.close()
        logger.info(f"Engine unloaded for model {name}")
        return True

    def loaded_models(self) -> List[str]:
        with self._engine_lock:
            return sorted(self._engines)

    def model_lock(self, name: str) -> threading.Lock:
        """Per-model lock that callers hold while using a shared handle"""
        with self._model_locks_guard:
            return self._model_locks.setdefault(name, threading.Lock())

    @staticmethod
    def _check_name(name: str) -> str:
        if not name or "/" in name or "\\" in name or ".." in name:
            raise ValueError(f"Invalid model name: {name!r}")
        return name


def _content_length(response) -> int:
    """Declared body size, or 0 when the header is missing or malformed"""
    value = response.headers.get("content-length")
    try:
        return max(int(value), 0) if value else 0
    except ValueError:
        logger.warning(f"Ignoring invalid content-length header: {value!r}")
        return 0
