"""Structured exception hierarchy for voskkit

Every error raised by the library carries an error code, a category,
a severity and optional recovery suggestions so that front ends can
branch on the type instead of on message text.
"""

import time
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """Error severity levels"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for better classification"""

    NETWORK = "network"
    EXTRACTION = "extraction"
    VALIDATION = "validation"
    CANCELLATION = "cancellation"
    CONVERSION = "conversion"
    ENGINE = "engine"
    STORAGE = "storage"


class VoskKitError(Exception):
    """Base exception for voskkit

    Provides structured error information including:
    - Error codes for programmatic handling
    - Context information for debugging
    - Severity levels for appropriate response
    - Recovery suggestions for user guidance
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.STORAGE,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_suggestions: Optional[List[str]] = None,
        original_exception: Optional[BaseException] = None,
    ):
        """
        Args:
            message: Human-readable error message
            error_code: Unique error code for programmatic handling
            category: Error category for classification
            severity: Error severity level
            context: Additional context information
            recovery_suggestions: List of suggested recovery actions
            original_exception: Original exception if this is a wrapper
        """
        super().__init__(message)

        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or {}
        self.recovery_suggestions = recovery_suggestions or []
        self.original_exception = original_exception
        self.timestamp = time.time()
        self.error_code = error_code or self._generate_error_code()

        if "component" not in self.context:
            self.context["component"] = self.__class__.__name__

    def _generate_error_code(self) -> str:
        """Generate a default error code based on class name"""
        return f"{self.__class__.__name__.upper()}_{int(self.timestamp)}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "context": self.context,
            "recovery_suggestions": self.recovery_suggestions,
            "timestamp": self.timestamp,
            "exception_type": self.__class__.__name__,
            "original_exception": str(self.original_exception)
            if self.original_exception
            else None,
        }

    def get_user_message(self) -> str:
        """Get user-friendly error message with recovery suggestions"""
        user_msg = self.message
        if self.recovery_suggestions:
            suggestions = "\n".join(f"- {s}" for s in self.recovery_suggestions)
            user_msg += f"\n\nSuggested actions:\n{suggestions}"
        return user_msg

    def is_recoverable(self) -> bool:
        """Check if error is potentially recoverable"""
        return (
            len(self.recovery_suggestions) > 0
            and self.severity != ErrorSeverity.CRITICAL
        )


# =============================================================================
# Network
# =============================================================================


class NetworkError(VoskKitError):
    """Catalog fetch, connectivity or download transport failure"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.NETWORK,
            severity=kwargs.pop("severity", ErrorSeverity.MEDIUM),
            recovery_suggestions=kwargs.pop(
                "recovery_suggestions",
                [
                    "Check your internet connection",
                    "Retry later, the model server may be temporarily unavailable",
                    "Use an already installed model in offline mode",
                ],
            ),
            **kwargs,
        )


# =============================================================================
# Archive / package
# =============================================================================


class ExtractionError(VoskKitError):
    """Archive could not be extracted"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=kwargs.pop("category", ErrorCategory.EXTRACTION),
            severity=kwargs.pop("severity", ErrorSeverity.HIGH),
            recovery_suggestions=kwargs.pop(
                "recovery_suggestions",
                [
                    "Download the model again, the archive may be corrupted",
                    "Verify there is enough free disk space",
                ],
            ),
            **kwargs,
        )


class ArchiveSecurityError(ExtractionError):
    """Archive entry would resolve outside the extraction root (zip-slip)"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            severity=kwargs.pop("severity", ErrorSeverity.CRITICAL),
            recovery_suggestions=kwargs.pop("recovery_suggestions", []),
            **kwargs,
        )


class PackageValidationError(VoskKitError):
    """Extracted content is not a valid model package"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=kwargs.pop("severity", ErrorSeverity.HIGH),
            recovery_suggestions=kwargs.pop(
                "recovery_suggestions",
                ["Pick a different model from the catalog"],
            ),
            **kwargs,
        )


class PackageNotFoundError(VoskKitError):
    """Requested model package is not installed"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            severity=kwargs.pop("severity", ErrorSeverity.MEDIUM),
            recovery_suggestions=kwargs.pop(
                "recovery_suggestions",
                ["Install the model first", "Rescan the models directory"],
            ),
            **kwargs,
        )


class StorageError(VoskKitError):
    """Models directory could not be read or modified"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            severity=kwargs.pop("severity", ErrorSeverity.HIGH),
            recovery_suggestions=kwargs.pop(
                "recovery_suggestions",
                ["Check permissions of the models directory"],
            ),
            **kwargs,
        )


class DownloadBusyError(VoskKitError):
    """Another download is already in progress"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            severity=kwargs.pop("severity", ErrorSeverity.LOW),
            recovery_suggestions=kwargs.pop(
                "recovery_suggestions",
                ["Wait for the current download to finish or cancel it"],
            ),
            **kwargs,
        )


# =============================================================================
# Cancellation
# =============================================================================


class CancellationError(VoskKitError):
    """User-requested abort of a long-running operation"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.CANCELLATION,
            severity=kwargs.pop("severity", ErrorSeverity.LOW),
            recovery_suggestions=kwargs.pop("recovery_suggestions", []),
            **kwargs,
        )


class DownloadCancelledError(CancellationError):
    """Model download was cancelled"""


class TranscriptionCancelledError(CancellationError):
    """Transcription (or its transcoding step) was cancelled"""


# =============================================================================
# Audio / engine
# =============================================================================


class ConversionError(VoskKitError):
    """Audio could not be converted to the engine input format"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.CONVERSION,
            severity=kwargs.pop("severity", ErrorSeverity.MEDIUM),
            recovery_suggestions=kwargs.pop(
                "recovery_suggestions",
                [
                    "Make sure ffmpeg is installed and on PATH",
                    "Check that the audio file is not corrupted",
                ],
            ),
            **kwargs,
        )


class EngineError(VoskKitError):
    """Speech engine failed to load or decode"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.ENGINE,
            severity=kwargs.pop("severity", ErrorSeverity.HIGH),
            recovery_suggestions=kwargs.pop(
                "recovery_suggestions",
                [
                    "Reinstall the model package",
                    "Verify the vosk package is installed",
                ],
            ),
            **kwargs,
        )


__all__ = [
    "ErrorSeverity",
    "ErrorCategory",
    "VoskKitError",
    "NetworkError",
    "ExtractionError",
    "ArchiveSecurityError",
    "PackageValidationError",
    "PackageNotFoundError",
    "StorageError",
    "DownloadBusyError",
    "CancellationError",
    "DownloadCancelledError",
    "TranscriptionCancelledError",
    "ConversionError",
    "EngineError",
]
