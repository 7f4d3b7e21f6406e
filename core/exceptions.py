"""
Custom exceptions for the migration engine with structured error context.

This module provides the exception hierarchy used throughout the migration
engine. Each exception includes context information for debugging and for
the status endpoint.

Exception Hierarchy:
    MigrationException (base)
    ├── SourceConnectionError
    │   ├── SourceNetworkError
    │   ├── SourceAuthenticationError
    │   ├── SourceTimeoutError
    │   └── SourceInstanceLookupError
    ├── IntrospectionError
    ├── SourceStreamError
    ├── TranslationError
    │   └── IdentifierNotAllowedError
    ├── LoadError
    │   └── DestinationSchemaError
    ├── InvalidMigrationScopeError
    ├── MigrationAlreadyRunningError
    ├── NoActiveMigrationError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class MigrationException(Exception):
    """
    Base exception for all migration-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (table, tenant, timestamp, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(MigrationException):
    """
    Mixin for errors a caller may reasonably retry.

    The engine never retries on its own; the flag only informs the caller.
    """
    retryable = True


class NonRetryableError(MigrationException):
    """Mixin for errors that will not go away by retrying."""
    retryable = False


# ============================================================================
# Source Connection Errors
# ============================================================================

class SourceConnectionError(MigrationException):
    """
    Exception raised when the legacy source cannot be opened.

    Context should include:
        - server: Source host
        - database: Source database name
        - sqlstate: Driver SQLSTATE (if available)
    """
    code = "ECONNECTION"
    hint = "Could not connect to the source database"
    retryable = False


class SourceNetworkError(RetryableError, SourceConnectionError):
    """Socket-level failure: the server is down or unreachable."""
    code = "ESOCKET"
    hint = "Socket error - check that the server is reachable and the firewall allows the connection"


class SourceAuthenticationError(NonRetryableError, SourceConnectionError):
    """The server rejected the credentials."""
    code = "ELOGIN"
    hint = "Login failed - check the username and password"


class SourceTimeoutError(RetryableError, SourceConnectionError):
    """The server did not answer within the login timeout."""
    code = "ETIMEOUT"
    hint = "Connection timeout - the server may be down or overloaded"


class SourceInstanceLookupError(NonRetryableError, SourceConnectionError):
    """The named instance could not be resolved."""
    code = "EINSTLOOKUP"
    hint = "Instance lookup failed - check the server name and instance"


# ============================================================================
# Read Errors
# ============================================================================

class IntrospectionError(MigrationException):
    """
    Exception raised when source metadata cannot be read.

    Context should include:
        - table_name: Table being introspected
        - operation: count, describe, list_tenants
    """
    pass


class SourceStreamError(MigrationException):
    """
    Exception raised when the streaming cursor itself fails.

    This is fatal to the run: no further batches are written.
    """
    pass


# ============================================================================
# Translation Errors
# ============================================================================

class TranslationError(MigrationException):
    """
    Exception raised when a source row cannot be translated.

    Context should include:
        - column_name: Column that failed
        - ordinal: Row ordinal within the stream
    """
    pass


class IdentifierNotAllowedError(NonRetryableError, TranslationError):
    """A table or column identifier failed allow-list validation."""
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(MigrationException):
    """
    Exception raised when the destination write path fails.

    Context should include:
        - operation: INSERT or UPDATE
        - table_name: Destination table
    """
    pass


class DestinationSchemaError(NonRetryableError, LoadError):
    """The destination table or some of its columns do not exist."""
    pass


# ============================================================================
# Run Lifecycle Errors
# ============================================================================

class InvalidMigrationScopeError(NonRetryableError):
    """The requested migration type or scope is invalid."""
    pass


class MigrationAlreadyRunningError(MigrationException):
    """A migration is already active; only one may run at a time."""
    pass


class NoActiveMigrationError(MigrationException):
    """A stop was requested but nothing is running."""
    pass
