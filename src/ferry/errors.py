"""
Ferry - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
the Ferry application. Each error has a unique code for logging and debugging.

Author: orpheus497
Version: 1.0.0
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all Ferry error codes."""

    # General Errors (E001-E099)
    E001_UNKNOWN_ERROR = "E001"
    E002_INVALID_ARGUMENT = "E002"
    E003_FILE_NOT_FOUND = "E003"
    E004_PERMISSION_DENIED = "E004"
    E005_OPERATION_FAILED = "E005"
    E006_FEATURE_UNAVAILABLE = "E006"

    # Session / Network Errors (E200-E299)
    E200_NETWORK_ERROR = "E200"
    E201_CONNECT_FAILED = "E201"
    E202_CONNECT_TIMEOUT = "E202"
    E203_CHANNEL_ERROR = "E203"
    E204_SEND_FAILED = "E204"
    E205_RECEIVE_FAILED = "E205"
    E206_INVALID_MESSAGE = "E206"
    E207_MESSAGE_TOO_LARGE = "E207"
    E208_RATE_LIMIT_EXCEEDED = "E208"

    # Rendezvous Directory Errors (E300-E399)
    E300_DIRECTORY_ERROR = "E300"
    E301_DIRECTORY_UNAVAILABLE = "E301"
    E302_CODE_NOT_FOUND = "E302"
    E303_INVALID_RECORD = "E303"

    # File Transfer Errors (E600-E699)
    E600_FILE_TRANSFER_ERROR = "E600"
    E601_FILE_TOO_LARGE = "E601"
    E602_CHUNK_FAILED = "E602"
    E603_SIZE_MISMATCH = "E603"
    E604_TRANSFER_INCOMPLETE = "E604"
    E605_PARTIAL_UNIT_ABANDONED = "E605"
    E606_PROTOCOL_VIOLATION = "E606"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E701_CONFIG_LOAD_FAILED = "E701"
    E702_CONFIG_SAVE_FAILED = "E702"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"

    # Server Errors (E800-E899)
    E800_SERVER_ERROR = "E800"
    E801_SERVER_START_FAILED = "E801"


class FerryError(Exception):
    """Base exception class for all Ferry errors.

    All custom exceptions in Ferry inherit from this class.
    Provides standardized error handling and logging.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize a Ferry error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            details: Additional error context (optional)
        """
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization.

        Returns:
            Dictionary containing error information
        """
        return {"code": self.code.value, "message": self.message, "details": self.details}


class NetworkError(FerryError):
    """Exception raised for session and wire-level failures.

    This includes connection errors, timeouts, channel faults
    and malformed frames.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_NETWORK_ERROR,
        message: str = "Network operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ConnectFailedError(NetworkError):
    """The peer address could not be reached (offline, refused, unknown)."""

    def __init__(
        self,
        message: str = "Could not connect to peer",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E201_CONNECT_FAILED, message, details)


class ConnectTimeoutError(NetworkError):
    """The connect phase did not complete in time."""

    def __init__(
        self,
        message: str = "Timed out connecting to peer",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E202_CONNECT_TIMEOUT, message, details)


class ChannelError(NetworkError):
    """The session failed or closed while it was being used."""

    def __init__(
        self,
        message: str = "Channel failed during session",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E203_CHANNEL_ERROR, message, details)


class DirectoryError(FerryError):
    """Exception raised for rendezvous directory failures.

    This includes unreachable backends and failed code lookups.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E300_DIRECTORY_ERROR,
        message: str = "Directory operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class DirectoryUnavailableError(DirectoryError):
    """The directory backend could not be reached. Retrying may help."""

    def __init__(
        self,
        message: str = "Rendezvous directory unavailable, try again",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E301_DIRECTORY_UNAVAILABLE, message, details)


class CodeNotFoundError(DirectoryError):
    """No live advertisement exists for the code.

    Never-published and expired codes are reported identically.
    """

    def __init__(
        self,
        message: str = "Code not found or expired",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E302_CODE_NOT_FOUND, message, details)


class FileTransferError(FerryError):
    """Exception raised for file transfer failures.

    This includes oversize inputs, chunking and incomplete transfers.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E600_FILE_TRANSFER_ERROR,
        message: str = "File transfer operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class TransferIncompleteError(FileTransferError):
    """The session ended before the sender signalled set-complete.

    Attributes:
        result: The partial TransferResult; files sealed before the
            session ended are kept, the in-flight unit is not.
    """

    def __init__(
        self,
        message: str = "Transfer ended before all files arrived",
        details: Optional[Dict[str, Any]] = None,
        result: Any = None,
    ):
        super().__init__(ErrorCode.E604_TRANSFER_INCOMPLETE, message, details)
        self.result = result


class ConfigError(FerryError):
    """Exception raised for configuration failures.

    This includes loading, parsing, and validating configuration files.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ServerError(FerryError):
    """Exception raised for directory server failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E800_SERVER_ERROR,
        message: str = "Server operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
