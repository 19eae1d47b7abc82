"""Model store tests: scan, overlay, updates, install, delete and engine cache"""

import threading
from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeResponse, FakeSession, StubEngine, package_zip_bytes, write_package
from voskkit.core.task_events import CompletedEvent, FailedEvent, ProgressEvent
from voskkit.models.archive_installer import ArchiveInstaller
from voskkit.models.catalog import CatalogClient
from voskkit.models.descriptor import make_descriptor
from voskkit.models.download_coordinator import DownloadCoordinator
from voskkit.models.model_store import ModelStore
from voskkit.utils.exceptions import (
    DownloadBusyError,
    DownloadCancelledError,
    EngineError,
    ExtractionError,
    NetworkError,
    PackageNotFoundError,
    PackageValidationError,
)

BASE_URL = "https://example.test/models/"
SMALL_EN = "vosk-model-small-en-us-0.15"
RU = "vosk-model-ru-0.42"


def descriptor(name, **fields):
    fields.setdefault("language", "English")
    fields.setdefault("size", "40M")
    return make_descriptor(name, f"{BASE_URL}{name}.zip", **fields)


@pytest.fixture
def catalog():
    client = MagicMock(spec=CatalogClient)
    client.fetch.return_value = [descriptor(SMALL_EN), descriptor(RU, language="Russian")]
    return client


@pytest.fixture
def models_dir(tmp_path):
    return tmp_path / "models"


@pytest.fixture
def engines():
    """Every engine the factory opened, in order"""
    return []


@pytest.fixture
def make_store(models_dir, catalog, engines):
    def _make(responses=None, coordinator=None, engine_factory=None, chunk_size=256, installer=None):
        def factory(name, path):
            engine = StubEngine(name, path)
            engines.append(engine)
            return engine

        store = ModelStore(
            models_dir,
            catalog,
            coordinator=coordinator or DownloadCoordinator(),
            installer=installer,
            engine_factory=engine_factory or factory,
            session=FakeSession(responses or {}),
            chunk_size=chunk_size,
        )
        assert store.start() is True
        return store

    return _make


def zip_response(prefix="", **kwargs):
    body = package_zip_bytes(prefix)
    kwargs.setdefault("content_length", len(body))
    return lambda: FakeResponse(body, **kwargs)


class StallingInstaller(ArchiveInstaller):
    """Extracts for real, then holds until released and fails"""

    def __init__(self):
        super().__init__()
        self.extracted = threading.Event()
        self.release = threading.Event()

    def extract(self, archive_path, destination):
        super().extract(archive_path, destination)
        self.extracted.set()
        self.release.wait(5)
        raise ExtractionError("disk went away")


def files_for(models_dir, name):
    return sorted(p.name for p in models_dir.iterdir() if p.name.startswith(name))


class TestScan:
    def test_start_creates_directory(self, make_store, models_dir):
        make_store()

        assert models_dir.is_dir()

    def test_scan_keeps_only_valid_packages(self, make_store, models_dir):
        models_dir.mkdir()
        write_package(models_dir / "vosk-model-small-ru-0.22")
        (models_dir / "not-a-model").mkdir()
        (models_dir / "stray.zip").write_bytes(b"")

        store = make_store()

        installed = store.list_installed()
        assert [m.name for m in installed] == ["vosk-model-small-ru-0.22"]
        assert installed[0].language == "Russian"
        assert installed[0].installed is True
        assert installed[0].installed_version == "vosk-model-small-ru-0.22"
        assert store.is_installed("vosk-model-small-ru-0.22")
        assert not store.is_installed("not-a-model")

    def test_rescan_picks_up_changes(self, make_store, models_dir):
        store = make_store()
        write_package(models_dir / "my-model")

        store.scan_installed()

        assert store.get_installed("my-model").language == "Unknown"


class TestCatalogOverlay:
    def test_installed_state_overlaid(self, make_store, models_dir, catalog):
        models_dir.mkdir()
        write_package(models_dir / SMALL_EN)
        store = make_store()

        available = {m.name: m for m in store.list_available()}

        assert available[SMALL_EN].installed is True
        assert available[SMALL_EN].installed_version == SMALL_EN
        assert available[SMALL_EN].size == "40M"
        assert available[RU].installed is False
        catalog.fetch.assert_called_once_with(False)

    def test_network_error_propagates(self, make_store, catalog):
        catalog.fetch.side_effect = NetworkError("offline")
        store = make_store()

        with pytest.raises(NetworkError):
            store.list_available()


class TestCheckUpdates:
    def test_up_to_date_reports_nothing(self, make_store, models_dir, catalog):
        models_dir.mkdir()
        write_package(models_dir / SMALL_EN)
        store = make_store()

        assert store.check_updates() == {}
        catalog.fetch.assert_called_once_with(force_refresh=True)

    def test_version_mismatch_reported(self, make_store, models_dir):
        models_dir.mkdir()
        write_package(models_dir / SMALL_EN)
        store = make_store()
        store._installed[SMALL_EN] = store._installed[SMALL_EN].as_installed("vosk-model-small-en-us-0.10")

        updates = store.check_updates()

        assert list(updates) == [SMALL_EN]
        assert updates[SMALL_EN].download_url == f"{BASE_URL}{SMALL_EN}.zip"

    def test_installed_but_not_in_catalog(self, make_store, models_dir):
        models_dir.mkdir()
        write_package(models_dir / "local-only-model")
        store = make_store()

        assert store.check_updates() == {}


class TestInstall:
    def test_install_success(self, make_store, models_dir):
        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": zip_response()})
        progress = []

        installed = store.install(descriptor(SMALL_EN), progress.append)

        assert installed.installed is True
        assert installed.installed_version == SMALL_EN
        assert store.is_installed(SMALL_EN)
        assert (models_dir / SMALL_EN / "am" / "final.mdl").is_file()
        assert not (models_dir / f"{SMALL_EN}.zip").exists()
        assert progress == sorted(progress)
        assert progress[-1] == 100
        assert progress.count(100) == 1
        assert store.coordinator.has_active() is False

    def test_wrapped_archive_is_flattened(self, make_store, models_dir):
        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": zip_response(prefix=f"{SMALL_EN}/")})

        store.install(descriptor(SMALL_EN))

        assert (models_dir / SMALL_EN / "graph" / "HCLG.fst").is_file()

    def test_unknown_length_reports_only_completion(self, make_store):
        body = package_zip_bytes()
        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": lambda: FakeResponse(body)})
        progress = []

        store.install(descriptor(SMALL_EN), progress.append)

        assert progress == [100]

    def test_install_twice_is_idempotent(self, make_store, models_dir):
        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": zip_response()})

        store.install(descriptor(SMALL_EN))
        (models_dir / SMALL_EN / "leftover.tmp").write_bytes(b"x")
        store.install(descriptor(SMALL_EN))

        assert files_for(models_dir, SMALL_EN) == [SMALL_EN]
        assert not (models_dir / SMALL_EN / "leftover.tmp").exists()
        assert [m.name for m in store.list_installed()] == [SMALL_EN]

    def test_reinstall_unloads_cached_engine(self, make_store, engines):
        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": zip_response()})
        store.install(descriptor(SMALL_EN))
        store.load_engine(SMALL_EN)

        store.install(descriptor(SMALL_EN))

        assert engines[0].closed
        assert store.loaded_models() == []

    def test_cancel_mid_transfer_leaves_nothing(self, make_store, models_dir):
        coordinator = DownloadCoordinator()

        def cancel_on_third_chunk(index):
            if index == 2:
                coordinator.cancel()

        store = make_store(
            {f"{BASE_URL}{SMALL_EN}.zip": zip_response(on_chunk=cancel_on_third_chunk)},
            coordinator=coordinator,
        )

        with pytest.raises(DownloadCancelledError):
            store.install(descriptor(SMALL_EN))

        assert files_for(models_dir, SMALL_EN) == []
        assert not store.is_installed(SMALL_EN)
        assert coordinator.has_active() is False

    def test_invalid_package_is_removed(self, make_store, models_dir):
        from conftest import build_zip

        body = build_zip({"README": b"not a model"})
        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": lambda: FakeResponse(body)})

        with pytest.raises(PackageValidationError):
            store.install(descriptor(SMALL_EN))

        assert files_for(models_dir, SMALL_EN) == []
        assert not store.is_installed(SMALL_EN)

    def test_network_failure_cleans_up(self, make_store, models_dir):
        body = package_zip_bytes()
        store = make_store({
            f"{BASE_URL}{SMALL_EN}.zip": lambda: FakeResponse(
                body, error=requests.ConnectionError("reset by peer")
            )
        })

        with pytest.raises(NetworkError):
            store.install(descriptor(SMALL_EN))

        assert files_for(models_dir, SMALL_EN) == []
        assert store.coordinator.has_active() is False

    def test_http_error_status(self, make_store):
        response = FakeResponse(b"", status_code=404)
        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": lambda: response})

        with pytest.raises(NetworkError):
            store.install(descriptor(SMALL_EN))

        assert response.closed
        assert store.coordinator.has_active() is False

    def test_malformed_content_length_treated_as_unknown(self, make_store):
        response = FakeResponse(package_zip_bytes())
        response.headers["content-length"] = "lots"
        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": lambda: response})
        progress = []

        store.install(descriptor(SMALL_EN), progress.append)

        assert progress == [100]
        assert response.closed
        assert store.is_installed(SMALL_EN)

    def test_busy_while_another_install_runs(self, make_store):
        coordinator = DownloadCoordinator()
        coordinator.begin(RU)
        store = make_store(coordinator=coordinator)

        with pytest.raises(DownloadBusyError):
            store.install(descriptor(SMALL_EN))

        assert coordinator.active_name() == RU

    def test_rejects_path_like_names(self, make_store):
        store = make_store()

        with pytest.raises(ValueError):
            store.install(descriptor("../escape"))


class TestInstallAsync:
    def test_events(self, make_store):
        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": zip_response()})

        stream = store.install_async(descriptor(SMALL_EN))
        events = list(stream)

        assert all(isinstance(e, ProgressEvent) for e in events[:-1])
        assert events[-2].percent == 100
        assert isinstance(events[-1], CompletedEvent)
        assert events[-1].result.name == SMALL_EN
        stream.thread.join(timeout=5)
        assert store.coordinator.has_active() is False

    def test_cancel_via_stream(self, make_store, models_dir):
        gate = threading.Event()
        proceed = threading.Event()

        def pause(index):
            if index == 1:
                gate.set()
                proceed.wait(timeout=5)

        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": zip_response(on_chunk=pause)})

        stream = store.install_async(descriptor(SMALL_EN))
        assert gate.wait(timeout=5)
        assert store.is_download_in_progress()
        stream.cancel()
        proceed.set()

        terminal = [e for e in stream if isinstance(e, FailedEvent)][0]
        assert terminal.cancelled
        assert isinstance(terminal.error, DownloadCancelledError)
        stream.thread.join(timeout=5)
        assert files_for(models_dir, SMALL_EN) == []

    def test_second_async_install_is_busy(self, make_store):
        proceed = threading.Event()
        store = make_store({
            f"{BASE_URL}{SMALL_EN}.zip": zip_response(on_chunk=lambda i: proceed.wait(timeout=5))
        })

        stream = store.install_async(descriptor(SMALL_EN))
        try:
            with pytest.raises(DownloadBusyError):
                store.install_async(descriptor(RU))
        finally:
            proceed.set()
        assert stream.join(timeout=5)


class TestDelete:
    def test_delete_unloads_and_removes(self, make_store, models_dir, engines):
        models_dir.mkdir()
        write_package(models_dir / SMALL_EN)
        store = make_store()
        store.load_engine(SMALL_EN)

        store.delete(SMALL_EN)

        assert engines[0].closed
        assert not (models_dir / SMALL_EN).exists()
        assert not store.is_installed(SMALL_EN)
        assert store.loaded_models() == []

    def test_delete_missing_is_noop(self, make_store):
        store = make_store()

        store.delete("never-installed")

    @pytest.mark.parametrize("name", ["../models", "a/b", "a\\b", ""])
    def test_rejects_path_like_names(self, make_store, name):
        store = make_store()

        with pytest.raises(ValueError):
            store.delete(name)


class TestEngineCache:
    def test_load_caches_handle(self, make_store, models_dir, engines):
        models_dir.mkdir()
        write_package(models_dir / SMALL_EN)
        store = make_store()

        first = store.load_engine(SMALL_EN)
        second = store.load_engine(SMALL_EN)

        assert first is second
        assert len(engines) == 1
        assert first.path == models_dir / SMALL_EN
        assert store.loaded_models() == [SMALL_EN]

    def test_load_missing(self, make_store):
        store = make_store()

        with pytest.raises(PackageNotFoundError):
            store.load_engine(SMALL_EN)

    def test_load_invalid(self, make_store, models_dir):
        (models_dir / SMALL_EN).mkdir(parents=True)
        store = make_store()

        with pytest.raises(PackageValidationError):
            store.load_engine(SMALL_EN)

    def test_factory_failure_wrapped(self, make_store, models_dir):
        models_dir.mkdir()
        write_package(models_dir / SMALL_EN)

        def broken(name, path):
            raise RuntimeError("native crash")

        store = make_store(engine_factory=broken)

        with pytest.raises(EngineError) as exc_info:
            store.load_engine(SMALL_EN)

        assert isinstance(exc_info.value.original_exception, RuntimeError)
        assert store.loaded_models() == []

    def test_unload_closes_once(self, make_store, models_dir, engines):
        models_dir.mkdir()
        write_package(models_dir / SMALL_EN)
        store = make_store()
        store.load_engine(SMALL_EN)

        assert store.unload_engine(SMALL_EN) is True
        assert store.unload_engine(SMALL_EN) is False
        engines[0].close()

        assert engines[0].release_count == 1

    def test_stop_releases_all(self, make_store, models_dir, engines):
        models_dir.mkdir()
        write_package(models_dir / SMALL_EN)
        write_package(models_dir / RU)
        store = make_store()
        store.load_engine(SMALL_EN)
        store.load_engine(RU)

        assert store.stop() is True

        assert all(engine.closed for engine in engines)
        assert store.loaded_models() == []

    def test_scan_drops_handles_of_removed_packages(self, make_store, models_dir, engines):
        import shutil

        models_dir.mkdir()
        write_package(models_dir / SMALL_EN)
        store = make_store()
        store.load_engine(SMALL_EN)

        shutil.rmtree(models_dir / SMALL_EN)
        store.scan_installed()

        assert engines[0].closed
        assert store.loaded_models() == []

    def test_model_lock_is_per_name(self, make_store):
        store = make_store()

        assert store.model_lock("a") is store.model_lock("a")
        assert store.model_lock("a") is not store.model_lock("b")

    def test_load_waits_for_install_and_caches_nothing_when_it_fails(self, make_store, models_dir, engines):
        installer = StallingInstaller()
        store = make_store({f"{BASE_URL}{SMALL_EN}.zip": zip_response()}, installer=installer)
        stream = store.install_async(descriptor(SMALL_EN))
        assert installer.extracted.wait(5)
        outcome = []

        def load():
            try:
                outcome.append(store.load_engine(SMALL_EN))
            except PackageNotFoundError as e:
                outcome.append(e)

        loader = threading.Thread(target=load)
        loader.start()
        loader.join(0.1)
        assert loader.is_alive()

        installer.release.set()
        assert stream.join(5)
        loader.join(5)

        assert isinstance(stream.terminal_event, FailedEvent)
        assert isinstance(outcome[0], PackageNotFoundError)
        assert store.loaded_models() == []
        assert engines == []
        assert not (models_dir / SMALL_EN).exists()
