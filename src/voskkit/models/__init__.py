"""Model catalog, download coordination, extraction and local store"""

from .archive_installer import ArchiveInstaller
from .catalog import CatalogClient, parse_catalog_page
from .descriptor import ModelCategory, ModelDescriptor, make_descriptor
from .download_coordinator import DownloadCoordinator, DownloadSession
from .model_store import ModelStore
from .package_layout import is_valid_package

__all__ = [
    "ArchiveInstaller",
    "CatalogClient",
    "DownloadCoordinator",
    "DownloadSession",
    "ModelCategory",
    "ModelDescriptor",
    "ModelStore",
    "is_valid_package",
    "make_descriptor",
    "parse_catalog_page",
]
