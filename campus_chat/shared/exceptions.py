"""
Custom Exceptions

Defines custom exception classes for the campus chat client.
"""

from typing import Optional


class CampusChatError(Exception):
    """Base exception class for all campus chat errors."""
    pass


class NetworkError(CampusChatError):
    """Raised when network-related errors occur."""

    def __init__(self, message: str, operation: Optional[str] = None, address: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.address = address


class ConnectionError(NetworkError):
    """Raised when connection-related errors occur."""

    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__(message)
        self.address = address


class TransportClosedError(ConnectionError):
    """Raised when writing to a transport that is no longer open."""
    pass


class ProtocolError(CampusChatError):
    """Raised when protocol-related errors occur."""

    def __init__(self, message: str, message_data: Optional[str] = None, expected_format: Optional[str] = None):
        super().__init__(message)
        self.message_data = message_data
        self.expected_format = expected_format


class InvalidMessageFormatError(ProtocolError):
    """Raised when message format is invalid."""
    pass


class AuthenticationError(CampusChatError):
    """Raised when the chat backend rejects the access token."""

    def __init__(self, message: str, token_present: bool = True):
        super().__init__(message)
        self.token_present = token_present


class ConfigurationError(CampusChatError):
    """Raised when configuration-related errors occur."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details


class InvalidConfigurationError(ConfigurationError):
    """Raised when configuration is invalid."""
    pass


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration is missing."""
    pass


class ApiError(CampusChatError):
    """Raised when a REST call to the chatbot API fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SchedulerError(CampusChatError):
    """Raised when event loop scheduling fails."""
    pass
