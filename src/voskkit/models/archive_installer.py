"""Safe zip extraction into a model package directory"""

import shutil
import uuid
import zipfile
from pathlib import Path
from typing import List, Union

from loguru import logger

from ..utils.exceptions import ArchiveSecurityError, ExtractionError
from .package_layout import has_package_markers

COPY_CHUNK_SIZE = 8192


class ArchiveInstaller:
    """Extracts a downloaded model archive and normalizes its layout

    Every entry is checked against the destination before anything is
    written, so a malicious archive is rejected without leaving files
    behind. After extraction, a payload wrapped in a single top-level
    folder is hoisted to the destination root.
    """

    def __init__(self, chunk_size: int = COPY_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def extract(self, archive_path: Union[str, Path], destination: Union[str, Path]) -> Path:
        """Extract ``archive_path`` into ``destination`` (wiped first)

        Args:
            archive_path: Zip archive on disk
            destination: Package directory to (re)create

        Returns:
            The destination path

        Raises:
            ArchiveSecurityError: If an entry would land outside ``destination``
            ExtractionError: If the archive is corrupt or cannot be written
        """
        archive_path = Path(archive_path)
        destination = Path(destination)

        try:
            if destination.exists():
                logger.debug(f"Removing existing directory {destination}")
                shutil.rmtree(destination)
            destination.mkdir(parents=True)

            with zipfile.ZipFile(archive_path) as archive:
                entries = archive.infolist()
                targets = [self._resolve_entry(destination, entry) for entry in entries]

                for entry, target in zip(entries, targets):
                    if target is None:
                        continue
                    if entry.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with archive.open(entry) as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst, self.chunk_size)

            logger.info(f"Extracted {len(entries)} entries to {destination}")
            self.flatten(destination)
        except zipfile.BadZipFile as e:
            raise ExtractionError(
                f"Corrupt archive {archive_path.name}: {e}",
                context={"archive": str(archive_path)},
                original_exception=e,
            ) from e
        except OSError as e:
            raise ExtractionError(
                f"Failed to extract {archive_path.name}: {e}",
                context={"archive": str(archive_path), "destination": str(destination)},
                original_exception=e,
            ) from e

        return destination

    @staticmethod
    def _resolve_entry(root: Path, entry: zipfile.ZipInfo):
        root_resolved = root.resolve()
        target = (root / entry.filename).resolve()

        if target == root_resolved:
            # "./" style directory entries
            if entry.is_dir():
                return None
        elif root_resolved in target.parents:
            return target

        raise ArchiveSecurityError(
            f"Archive entry escapes extraction directory: {entry.filename}",
            context={"entry": entry.filename, "destination": str(root)},
        )

    @staticmethod
    def flatten(destination: Path) -> bool:
        """Hoist the contents of a lone top-level folder into ``destination``

        Returns:
            True if the layout was flattened
        """
        subdirs: List[Path] = [p for p in destination.iterdir() if p.is_dir()]
        if len(subdirs) != 1 or has_package_markers(destination):
            return False

        # Renamed first so a child with the same name as the wrapper can move up
        wrapper = subdirs[0].rename(destination / f".flatten-{uuid.uuid4().hex}")
        for child in list(wrapper.iterdir()):
            target = destination / child.name
            if target.is_dir():
                shutil.rmtree(target)
            elif target.exists():
                target.unlink()
            shutil.move(str(child), str(target))
        wrapper.rmdir()

        logger.debug(f"Flattened wrapper folder {subdirs[0].name} into {destination}")
        return True
