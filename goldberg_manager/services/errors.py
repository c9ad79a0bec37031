"""Error taxonomy and centralized error handling for Goldberg Config Manager.

This module provides:
- Exception classes for each failure domain (catalog store, catalog sync,
  provisioning, configuration, network, file system, validation)
- User-friendly error messages with suggested actions
- A centralized error handling service with a bounded error history

Lookup misses are not errors: lookups return ``None``.
"""

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog

log = structlog.stdlib.get_logger()


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""
    STORAGE = "storage"
    SYNC = "sync"
    PROVISIONING = "provisioning"
    CONFIGURATION = "configuration"
    NETWORK = "network"
    FILE_SYSTEM = "file_system"
    VALIDATION = "validation"
    DOWNLOAD = "download"
    UNEXPECTED = "unexpected"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ErrorContext:
    """Context information for an error."""
    operation: str
    component: str
    details: dict[str, Any]


@dataclass(frozen=True)
class UserFriendlyError:
    """User-friendly error representation with suggested actions."""
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    suggested_actions: list[str]
    technical_details: str | None = None
    recoverable: bool = True


def _describe(original_error: Exception | None) -> str | None:
    if original_error is None:
        return None
    return f"{type(original_error).__name__}: {original_error}"


def _join_details(*parts: str | None) -> str | None:
    lines = [part for part in parts if part]
    return "\n".join(lines) if lines else None


class AppError(Exception):
    """Base exception class for application errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNEXPECTED,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        suggested_actions: list[str] | None = None,
        technical_details: str | None = None,
        recoverable: bool = True,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.suggested_actions = suggested_actions or []
        self.technical_details = technical_details
        self.recoverable = recoverable
        self.context = context

    def to_user_friendly(self) -> UserFriendlyError:
        """Convert to user-friendly error representation."""
        return UserFriendlyError(
            message=self.message,
            category=self.category,
            severity=self.severity,
            suggested_actions=self.suggested_actions,
            technical_details=self.technical_details,
            recoverable=self.recoverable,
        )


class StorageError(AppError):
    """Catalog store I/O or constraint failure.

    Fatal for the operation that raised it. A failed ``replace_by_type`` is
    rolled back, so the caller can retry the whole sync pass.
    """

    def __init__(
        self,
        message: str,
        database_path: str | None = None,
        app_type: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.ERROR,
            suggested_actions=[
                "Check that the catalog database file is writable",
                "Delete the catalog database to force a full rebuild",
                "Retry the catalog update",
            ],
            technical_details=_join_details(
                f"Database: {database_path}" if database_path else None,
                f"App type: {app_type}" if app_type else None,
                _describe(original_error),
            ),
            recoverable=False,
        )
        self.database_path = database_path
        self.app_type = app_type
        self.original_error = original_error


class SyncError(AppError):
    """Remote catalog fetch or parse failure for one app type.

    Recoverable: the store keeps its previous contents for that type.
    """

    def __init__(
        self,
        message: str,
        app_type: str | None = None,
        url: str | None = None,
        last_app_id: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.SYNC,
            severity=ErrorSeverity.WARNING,
            suggested_actions=[
                "Check your internet connection",
                "Verify the Steam Web API key",
                "The previous catalog stays in use until the next update",
            ],
            technical_details=_join_details(
                f"App type: {app_type}" if app_type else None,
                f"URL: {url}" if url else None,
                f"Cursor: {last_app_id}" if last_app_id is not None else None,
                _describe(original_error),
            ),
            recoverable=True,
        )
        self.app_type = app_type
        self.url = url
        self.last_app_id = last_app_id
        self.original_error = original_error


class ProvisioningError(AppError):
    """Emulator download, integrity, extraction or DLL swap-in failure."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        path: str | None = None,
        failed_entries: list[str] | None = None,
        original_error: Exception | None = None,
        recoverable: bool = False,
    ) -> None:
        suggested_actions = [
            "Retry the emulator update",
            "Download the emulator manually and extract it into the package directory",
        ]
        if stage == "swap":
            suggested_actions = [
                "Run the emulator update first",
                "Check that the game directory is writable",
            ]

        super().__init__(
            message=message,
            category=ErrorCategory.PROVISIONING,
            severity=ErrorSeverity.ERROR,
            suggested_actions=suggested_actions,
            technical_details=_join_details(
                f"Stage: {stage}" if stage else None,
                f"Path: {path}" if path else None,
                f"Failed entries: {', '.join(failed_entries)}" if failed_entries else None,
                _describe(original_error),
            ),
            recoverable=recoverable,
        )
        self.stage = stage
        self.path = path
        self.failed_entries = failed_entries or []
        self.original_error = original_error


class ConfigError(AppError):
    """Configuration read/write failure (per-game artifacts or app_config.json)."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        setting: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.ERROR,
            suggested_actions=[
                "Check that the game directory exists and is writable",
                "Reset the configuration to default values if needed",
            ],
            technical_details=_join_details(
                f"Path: {path}" if path else None,
                f"Setting: {setting}" if setting else None,
                _describe(original_error),
            ),
            recoverable=False,
        )
        self.path = path
        self.setting = setting
        self.original_error = original_error


class NetworkError(AppError):
    """Exception for network-related errors."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        suggested_actions = [
            "Check your internet connection",
            "Try again in a few moments",
        ]

        if status_code:
            if status_code == 429:
                suggested_actions = [
                    "Wait a few minutes before retrying",
                ]
            elif status_code in (401, 403):
                suggested_actions = [
                    "Verify the Steam Web API key",
                ]
            elif status_code >= 500:
                suggested_actions = [
                    "The server is experiencing issues",
                    "Try again later",
                ]

        super().__init__(
            message=message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.ERROR,
            suggested_actions=suggested_actions,
            technical_details=_join_details(
                f"Status: {status_code}" if status_code else None,
                f"URL: {url}" if url else None,
                _describe(original_error),
            ),
            recoverable=True,
        )
        self.original_error = original_error
        self.url = url
        self.status_code = status_code


class FileSystemError(AppError):
    """Exception for file system-related errors."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        path: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.FILE_SYSTEM,
            severity=ErrorSeverity.ERROR,
            suggested_actions=self._get_suggested_actions(original_error),
            technical_details=_join_details(
                f"Path: {path}" if path else None,
                _describe(original_error),
            ),
            recoverable=True,
        )
        self.original_error = original_error
        self.path = path
        self.operation = operation

    @staticmethod
    def _get_suggested_actions(original_error: Exception | None) -> list[str]:
        """Get suggested actions based on error type."""
        if isinstance(original_error, PermissionError):
            return [
                "Check file/directory permissions",
                "Close the game if it is running",
            ]
        elif isinstance(original_error, FileNotFoundError):
            return [
                "Verify the path is correct",
                "Check if the file was moved or deleted",
            ]
        elif isinstance(original_error, OSError):
            error_str = str(original_error).lower()
            if "no space" in error_str or "disk full" in error_str:
                return [
                    "Free up disk space",
                ]

        return [
            "Check the file path and permissions",
            "Ensure sufficient disk space",
        ]


class ValidationError(AppError):
    """Exception for invalid input values."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        constraints: list[str] | None = None,
    ) -> None:
        suggested_actions = ["Review the input requirements"]
        if constraints:
            suggested_actions.extend([f"Ensure: {c}" for c in constraints])

        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.WARNING,
            suggested_actions=suggested_actions,
            technical_details=_join_details(
                f"Field: {field}" if field else None,
                f"Value: {str(value)[:100]}" if value is not None else None,
            ),
            recoverable=True,
        )
        self.field = field
        self.value = value
        self.constraints = constraints or []


class DownloadError(AppError):
    """Exception for a failed or incomplete file download."""

    def __init__(
        self,
        message: str,
        file_name: str | None = None,
        url: str | None = None,
        bytes_downloaded: int = 0,
        total_bytes: int = 0,
        original_error: Exception | None = None,
    ) -> None:
        progress = None
        if total_bytes > 0:
            progress = f"Received: {bytes_downloaded} of {total_bytes} bytes"

        super().__init__(
            message=message,
            category=ErrorCategory.DOWNLOAD,
            severity=ErrorSeverity.ERROR,
            suggested_actions=[
                "Check your internet connection",
                "Verify sufficient disk space",
                "Retry the download",
            ],
            technical_details=_join_details(
                f"File: {file_name}" if file_name else None,
                f"URL: {url}" if url else None,
                progress,
                _describe(original_error),
            ),
            recoverable=True,
        )
        self.file_name = file_name
        self.url = url
        self.bytes_downloaded = bytes_downloaded
        self.total_bytes = total_bytes
        self.original_error = original_error


class ErrorHandlingService:
    """Centralized error handling service.

    Converts arbitrary exceptions into ``AppError`` instances, logs them with
    technical details and keeps a bounded history for later inspection.
    """

    def __init__(self, max_history_size: int = 100) -> None:
        self._error_history: list[tuple[float, AppError]] = []
        self._max_history_size = max_history_size
        log.debug("Error handling service initialized")

    def handle_error(
        self,
        error: Exception,
        operation: str,
        component: str,
        context: dict[str, Any] | None = None,
    ) -> UserFriendlyError:
        """Handle an error and return a user-friendly representation.

        Args:
            error: The exception that occurred
            operation: The operation being performed
            component: The component where the error occurred
            context: Additional context information

        Returns:
            User-friendly error representation
        """
        app_error = self._convert_to_app_error(error, operation, component, context)

        self._log_error(app_error, operation, component, context)

        self._error_history.append((time.time(), app_error))
        if len(self._error_history) > self._max_history_size:
            self._error_history.pop(0)

        return app_error.to_user_friendly()

    def _convert_to_app_error(
        self,
        error: Exception,
        operation: str,
        component: str,
        context: dict[str, Any] | None,
    ) -> AppError:
        """Convert a standard exception to an AppError."""
        context = context or {}

        if isinstance(error, AppError):
            return error

        if isinstance(error, httpx.ConnectError):
            return NetworkError(
                message="Unable to connect to the server. Please check your internet connection.",
                original_error=error,
                url=context.get("url"),
            )
        elif isinstance(error, httpx.TimeoutException):
            return NetworkError(
                message="The request timed out. The server may be slow or unavailable.",
                original_error=error,
                url=context.get("url"),
            )
        elif isinstance(error, httpx.HTTPStatusError):
            status_code = error.response.status_code
            return NetworkError(
                message=self._get_http_error_message(status_code),
                original_error=error,
                url=str(error.request.url) if error.request else None,
                status_code=status_code,
            )
        elif isinstance(error, httpx.RequestError):
            return NetworkError(
                message="A network error occurred. Please check your connection.",
                original_error=error,
                url=context.get("url"),
            )

        elif isinstance(error, PermissionError):
            return FileSystemError(
                message="Permission denied. You don't have access to this file or directory.",
                original_error=error,
                path=context.get("path"),
                operation=operation,
            )
        elif isinstance(error, FileNotFoundError):
            return FileSystemError(
                message="The file or directory was not found.",
                original_error=error,
                path=context.get("path"),
                operation=operation,
            )
        elif isinstance(error, OSError):
            return FileSystemError(
                message=f"A file system error occurred: {error}",
                original_error=error,
                path=context.get("path"),
                operation=operation,
            )

        # JSONDecodeError is a ValueError, so it has to be checked first
        elif isinstance(error, json.JSONDecodeError):
            return ValidationError(
                message="Invalid JSON format. The data could not be parsed.",
                field=context.get("field", "json_content"),
            )
        elif isinstance(error, ValueError):
            return ValidationError(
                message=str(error),
                field=context.get("field"),
                value=context.get("value"),
            )
        elif isinstance(error, TypeError):
            return ValidationError(
                message=f"Invalid data type: {error}",
                field=context.get("field"),
            )

        return AppError(
            message="An unexpected error occurred. Please try again.",
            category=ErrorCategory.UNEXPECTED,
            severity=ErrorSeverity.ERROR,
            technical_details=_describe(error),
            recoverable=True,
            context=ErrorContext(
                operation=operation,
                component=component,
                details=context,
            ),
        )

    @staticmethod
    def _get_http_error_message(status_code: int) -> str:
        """Get a user-friendly message for HTTP status codes."""
        messages = {
            400: "The request was invalid. Please check your input.",
            401: "Authentication required. Please check the Steam Web API key.",
            403: "Access denied. Please check the Steam Web API key.",
            404: "The requested resource was not found.",
            429: "Too many requests. Please wait before trying again.",
            500: "The server encountered an error. Please try again later.",
            502: "The server is temporarily unavailable. Please try again later.",
            503: "The service is temporarily unavailable. Please try again later.",
        }
        return messages.get(status_code, f"HTTP error {status_code} occurred.")

    def _log_error(
        self,
        error: AppError,
        operation: str,
        component: str,
        context: dict[str, Any] | None,
    ) -> None:
        """Log error with full technical details."""
        log_method = log.warning if error.severity == ErrorSeverity.WARNING else log.error

        log_method(
            "Error occurred",
            error_message=error.message,
            category=error.category.value,
            severity=error.severity.value,
            operation=operation,
            component=component,
            technical_details=error.technical_details,
            recoverable=error.recoverable,
            context=context,
        )

    def get_recent_errors(self, count: int = 10) -> list[AppError]:
        """Get the most recent errors from history."""
        recent = self._error_history[-count:] if self._error_history else []
        return [error for _, error in recent]

    def get_error_count_by_category(self) -> dict[ErrorCategory, int]:
        """Get count of errors by category."""
        counts: dict[ErrorCategory, int] = {}
        for _, error in self._error_history:
            counts[error.category] = counts.get(error.category, 0) + 1
        return counts

    def create_user_message(
        self,
        error: UserFriendlyError,
        include_suggestions: bool = True,
    ) -> str:
        """Create a formatted user message from an error.

        Args:
            error: The user-friendly error
            include_suggestions: Whether to include suggested actions

        Returns:
            Formatted message string
        """
        parts = [error.message]

        if include_suggestions and error.suggested_actions:
            parts.append("\nSuggested actions:")
            for action in error.suggested_actions[:3]:
                parts.append(f"  • {action}")

        return "\n".join(parts)


_error_service: ErrorHandlingService | None = None


def get_error_service() -> ErrorHandlingService:
    """Get the global error handling service instance."""
    global _error_service
    if _error_service is None:
        _error_service = ErrorHandlingService()
    return _error_service


def handle_error(
    error: Exception,
    operation: str,
    component: str,
    context: dict[str, Any] | None = None,
) -> UserFriendlyError:
    """Convenience function to handle errors using the global service."""
    return get_error_service().handle_error(error, operation, component, context)
