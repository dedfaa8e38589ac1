"""Error taxonomy: codes, structured tool errors and lifecycle exceptions."""

from .errors import (
    NON_RETRYABLE_PATTERNS,
    RETRYABLE_PATTERNS,
    CloudMCPError,
    ConfigMissingKeysError,
    DuplicateRegistrationError,
    ErrorCode,
    MigrationSettingsError,
    MigrationToolNotFoundError,
    ProviderAlreadyInitializedError,
    ProviderNotInitializedError,
    ProviderNotRegisteredError,
    ProviderRegistrationError,
    ToolError,
    ToolException,
    ToolNotFoundError,
    categorize_error,
    classify_exception,
    classify_message,
    error_text,
)
from .types import JsonDict, JsonMapping, JsonPrimitive, JsonValue

__all__ = [
    # Codes & classification
    "ErrorCode", "classify_exception", "classify_message", "categorize_error", "error_text",
    "RETRYABLE_PATTERNS", "NON_RETRYABLE_PATTERNS",
    # Invocation errors
    "ToolError", "ToolException",
    # Lifecycle errors
    "CloudMCPError", "DuplicateRegistrationError", "ToolNotFoundError",
    "ProviderNotInitializedError", "ProviderAlreadyInitializedError",
    "ConfigMissingKeysError", "ProviderNotRegisteredError", "ProviderRegistrationError",
    "MigrationSettingsError", "MigrationToolNotFoundError",
    # Types
    "JsonDict", "JsonMapping", "JsonPrimitive", "JsonValue",
]
