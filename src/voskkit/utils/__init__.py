"""Shared utilities: exceptions, logging setup, network probing"""

from .exceptions import *  # noqa: F403, F401
from .logger import setup_logging  # noqa: F401
from .network import ConnectivityProbe  # noqa: F401
