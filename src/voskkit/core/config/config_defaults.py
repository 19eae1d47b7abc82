"""Default configuration values"""

from pathlib import Path
from typing import Any, Dict

APP_HOME = Path.home() / ".voskkit"
DEFAULT_CONFIG_PATH = APP_HOME / "config.json"


def get_default_config() -> Dict[str, Any]:
    """Get default configuration

    Returns:
        Fresh default configuration dictionary
    """
    return {
        "models": {
            "directory": str(APP_HOME / "models"),
        },
        "catalog": {
            "url": "https://alphacephei.com/vosk/models",
            "download_base_url": "https://alphacephei.com/vosk/models/",
            "timeout": 10,
            "cache_seconds": 3600,
        },
        "download": {
            "chunk_size": 8192,
            "timeout": 60,
        },
        "network": {
            "probe_url": "https://alphacephei.com/vosk/models",
            "probe_timeout": 3,
            "probe_cache_seconds": 5,
        },
        "transcription": {
            "buffer_size": 4096,
            "ffmpeg": "ffmpeg",
            "ffprobe": "ffprobe",
        },
        "logging": {
            "level": "INFO",
            "console_output": True,
            "file": None,
        },
    }
