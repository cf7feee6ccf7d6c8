"""
Cache Store Exceptions

Store-level error taxonomy. The store clients raise these; the cache service
and rate limiter catch them at their boundary and degrade to a miss, a no-op
or an allowed request.
"""

from typing import Optional, Any, Dict


class CacheStoreException(Exception):
    """Base exception for cache store errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class StoreUnavailableException(CacheStoreException):
    """Raised when the store cannot be reached or a command times out."""

    def __init__(
        self,
        message: str = "Cache store unavailable",
        operation: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="STORE_UNAVAILABLE", details=details
        )
        if original_error:
            self.__cause__ = original_error


class StoreProtocolException(CacheStoreException):
    """Raised when the store replies with an error or an unexpected shape."""

    def __init__(
        self,
        message: str = "Unexpected cache store response",
        operation: Optional[str] = None,
        key: Optional[str] = None,
        response: Optional[Any] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if key:
            details["key"] = key
        if response is not None:
            details["response"] = repr(response)
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="STORE_PROTOCOL_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error


class SerializationException(CacheStoreException):
    """Raised when a value cannot be encoded for, or decoded from, the store."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        value_type: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if key:
            details["key"] = key
        if value_type:
            details["value_type"] = value_type
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message=message, error_code="SERIALIZATION_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error
