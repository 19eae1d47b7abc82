"""On-disk layout of an installed Vosk model package"""

from pathlib import Path
from typing import Union

ACOUSTIC_MODEL_FILE = Path("am") / "final.mdl"
CONFIG_FILE = Path("conf") / "mfcc.conf"
GRAPH_FILES = (Path("graph") / "HCLG.fst", Path("graph") / "HCLr.fst")

# Any one of these at the root means the archive payload is not wrapped
# in an extra top-level folder.
MARKER_FILES = (ACOUSTIC_MODEL_FILE, Path("conf") / "model.conf")


def is_valid_package(path: Union[str, Path]) -> bool:
    """Check that ``path`` holds an acoustic model, its config and a decoding graph"""
    root = Path(path)
    return (
        (root / ACOUSTIC_MODEL_FILE).is_file()
        and (root / CONFIG_FILE).is_file()
        and any((root / graph).is_file() for graph in GRAPH_FILES)
    )


def has_package_markers(path: Union[str, Path]) -> bool:
    root = Path(path)
    return any((root / marker).exists() for marker in MARKER_FILES)
