"""Service layer for business logic and external integrations."""

from .app_config import AppConfigService, ValidationResult
from .cache import TTLCache
from .catalog_store import CatalogStore
from .catalog_sync import CatalogSyncService, SyncReport, SyncStatus, TypeSyncResult
from .config_codec import ConfigCodec
from .errors import (
    AppError,
    ConfigError,
    DownloadError,
    ErrorCategory,
    ErrorHandlingService,
    ErrorSeverity,
    FileSystemError,
    NetworkError,
    ProvisioningError,
    StorageError,
    SyncError,
    UserFriendlyError,
    ValidationError,
    get_error_service,
    handle_error,
)
from .filesystem import FileSystemService
from .goldberg import GoldbergService
from .http_client import HttpClientService
from .interfaces import extract_interface_strings, generate_interfaces_file
from .lookup import LookupService
from .metadata import MetadataService
from .provisioning import ProvisioningResult, ProvisioningService, ProvisioningState
from .status import StatusChannel, StatusLevel, StatusMessage

__all__ = [
    "AppConfigService",
    "AppError",
    "CatalogStore",
    "CatalogSyncService",
    "ConfigCodec",
    "ConfigError",
    "DownloadError",
    "ErrorCategory",
    "ErrorHandlingService",
    "ErrorSeverity",
    "FileSystemError",
    "FileSystemService",
    "GoldbergService",
    "HttpClientService",
    "LookupService",
    "MetadataService",
    "NetworkError",
    "ProvisioningError",
    "ProvisioningResult",
    "ProvisioningService",
    "ProvisioningState",
    "StatusChannel",
    "StatusLevel",
    "StatusMessage",
    "StorageError",
    "SyncError",
    "SyncReport",
    "SyncStatus",
    "TTLCache",
    "TypeSyncResult",
    "UserFriendlyError",
    "ValidationError",
    "ValidationResult",
    "extract_interface_strings",
    "generate_interfaces_file",
    "get_error_service",
    "handle_error",
]
