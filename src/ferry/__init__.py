"""
Ferry - Direct file sharing with short rendezvous codes

A sender publishes a short code that points at its address, a receiver
resolves the code, and the files travel over one direct session.

Author: orpheus497
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "orpheus497"
__license__ = "MIT"

from .codes import CodeGenerator
from .config import Config
from .constants import APP_NAME, VERSION
from .directory import (
    FileBackend,
    HttpBackend,
    KeyValueBackend,
    MemoryBackend,
    RendezvousDirectory,
    SenderAdvertisement,
)
from .errors import (
    ChannelError,
    CodeNotFoundError,
    ConfigError,
    ConnectFailedError,
    ConnectTimeoutError,
    DirectoryError,
    DirectoryUnavailableError,
    ErrorCode,
    FerryError,
    FileTransferError,
    NetworkError,
    ServerError,
    TransferIncompleteError,
)
from .establisher import SessionEstablisher
from .rate_limiter import RateLimiter, TokenBucket
from .share import ShareReceiver, ShareSender, TransferSession
from .transfer import ReceiveEngine, ReceivedFile, SendEngine, TransferResult, TransferUnit
from .transport import MemoryNetwork, MemoryTransport, Session, TcpTransport

__all__ = [
    "APP_NAME",
    "VERSION",
    "ChannelError",
    "CodeGenerator",
    "CodeNotFoundError",
    "Config",
    "ConfigError",
    "ConnectFailedError",
    "ConnectTimeoutError",
    "DirectoryError",
    "DirectoryUnavailableError",
    "ErrorCode",
    "FerryError",
    "FileBackend",
    "FileTransferError",
    "HttpBackend",
    "KeyValueBackend",
    "MemoryBackend",
    "MemoryNetwork",
    "MemoryTransport",
    "NetworkError",
    "RateLimiter",
    "ReceiveEngine",
    "ReceivedFile",
    "RendezvousDirectory",
    "SendEngine",
    "SenderAdvertisement",
    "ServerError",
    "Session",
    "SessionEstablisher",
    "ShareReceiver",
    "ShareSender",
    "TcpTransport",
    "TokenBucket",
    "TransferIncompleteError",
    "TransferResult",
    "TransferSession",
    "TransferUnit",
    "__author__",
    "__license__",
    "__version__",
]
