"""Application context - wires the components from configuration

Usage:
    context = AppContext.from_config(ConfigReader.load())
    context.start()
    try:
        for model in context.available_models():
            print(model.display_name)
    finally:
        context.stop()
"""

from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

from ..models import ArchiveInstaller, CatalogClient, DownloadCoordinator, ModelDescriptor, ModelStore
from ..speech import TranscriptionPipeline
from ..speech.transcription_pipeline import TextCallback
from ..utils.exceptions import NetworkError
from ..utils.network import ConnectivityProbe, create_http_session
from .cancellation import CancellationToken
from .config import ConfigReader
from .task_events import EventStream, run_in_background


class AppContext:
    """Holds one instance of each component and their shared HTTP session"""

    def __init__(
        self,
        config: ConfigReader,
        catalog: CatalogClient,
        store: ModelStore,
        pipeline: TranscriptionPipeline,
        probe: ConnectivityProbe,
    ):
        self.config = config
        self.catalog = catalog
        self.store = store
        self.pipeline = pipeline
        self.probe = probe

    @classmethod
    def from_config(cls, config: ConfigReader) -> "AppContext":
        session = create_http_session()

        catalog = CatalogClient.from_config(config, session=session)
        store = ModelStore(
            models_dir=config.models_directory,
            catalog=catalog,
            coordinator=DownloadCoordinator(),
            installer=ArchiveInstaller(config.get_setting("download.chunk_size", 8192)),
            session=session,
            chunk_size=config.get_setting("download.chunk_size", 8192),
            timeout=config.get_setting("download.timeout", 60),
        )
        pipeline = TranscriptionPipeline.from_config(config)
        probe = ConnectivityProbe(
            url=config.get_setting("network.probe_url"),
            timeout=config.get_setting("network.probe_timeout", 3),
            cache_seconds=config.get_setting("network.probe_cache_seconds", 5),
        )
        return cls(config, catalog, store, pipeline, probe)

    def start(self) -> bool:
        return self.store.start()

    def stop(self) -> bool:
        return self.store.stop()

    def available_models(self, force_refresh: bool = False) -> List[ModelDescriptor]:
        """Catalog with installed overlay; installed packages only when offline"""
        try:
            return self.store.list_available(force_refresh)
        except NetworkError as e:
            logger.warning(f"Catalog unavailable, showing installed models only: {e}")
            return self.store.list_installed()

    def is_online(self) -> bool:
        return self.probe.is_available()

    def find_model(self, name: str, force_refresh: bool = False) -> Optional[ModelDescriptor]:
        for model in self.available_models(force_refresh):
            if model.name == name:
                return model
        return None

    def transcribe(
        self,
        model_name: str,
        audio_file: Union[str, Path],
        on_text: TextCallback,
        token: Optional[CancellationToken] = None,
    ) -> List[str]:
        """Load ``model_name`` (cached) and transcribe while holding its lock"""
        engine = self.store.load_engine(model_name)
        with self.store.model_lock(model_name):
            return self.pipeline.transcribe(audio_file, engine, on_text, token)

    def transcribe_async(self, model_name: str, audio_file: Union[str, Path]) -> EventStream:
        return run_in_background(
            f"transcribe-{model_name}",
            lambda stream: self.transcribe(model_name, audio_file, stream.text, stream.token),
        )
