"""voskkit - offline Vosk model manager and file transcriber

Manages Vosk model packages on local disk (catalog, download, install,
delete, load) and streams audio files through an installed model.
"""

__version__ = "0.1.0"
__description__ = "voskkit"

from .models import CatalogClient, DownloadCoordinator, ModelDescriptor, ModelStore
from .speech import TranscriptionPipeline

__all__ = [
    "CatalogClient",
    "DownloadCoordinator",
    "ModelDescriptor",
    "ModelStore",
    "TranscriptionPipeline",
]
