"""Lifecycle management base class

Provides minimal start/stop semantics for components that own resources
(directories, loaded engine handles).
"""

from abc import ABC, abstractmethod
from enum import Enum

from loguru import logger


class ComponentState(Enum):
    """Simple 3-state component lifecycle"""

    STOPPED = "stopped"  # initial state
    RUNNING = "running"
    ERROR = "error"


class LifecycleComponent(ABC):
    """Base class for lifecycle-managed components

    Usage:
        class MyComponent(LifecycleComponent):
            def __init__(self):
                super().__init__("MyComponent")

            def _do_start(self) -> bool:
                ...
                return True

            def _do_stop(self) -> bool:
                ...
                return True
    """

    def __init__(self, component_name: str):
        """
        Args:
            component_name: Name for logging and identification
        """
        self._component_name = component_name
        self._state = ComponentState.STOPPED

    def start(self) -> bool:
        """Start the component

        Returns:
            True if start successful, False otherwise
        """
        if self._state == ComponentState.RUNNING:
            return True

        logger.debug(f"{self._component_name} starting")
        try:
            success = self._do_start()
        except Exception as e:
            self._state = ComponentState.ERROR
            logger.error(f"{self._component_name} failed to start: {e}")
            return False

        self._state = ComponentState.RUNNING if success else ComponentState.ERROR
        if success:
            logger.debug(f"{self._component_name} started")
        return success

    def stop(self) -> bool:
        """Stop the component

        Returns:
            True if stop successful, False otherwise
        """
        if self._state == ComponentState.STOPPED:
            return True

        logger.debug(f"{self._component_name} stopping")
        try:
            success = self._do_stop()
        except Exception as e:
            self._state = ComponentState.ERROR
            logger.error(f"{self._component_name} failed to stop: {e}")
            return False

        self._state = ComponentState.STOPPED if success else ComponentState.ERROR
        if success:
            logger.debug(f"{self._component_name} stopped")
        return success

    @abstractmethod
    def _do_start(self) -> bool:
        """Subclass-specific start logic"""

    @abstractmethod
    def _do_stop(self) -> bool:
        """Subclass-specific stop logic"""

    @property
    def is_running(self) -> bool:
        return self._state == ComponentState.RUNNING

    @property
    def state(self) -> ComponentState:
        return self._state

    @property
    def component_name(self) -> str:
        return self._component_name
