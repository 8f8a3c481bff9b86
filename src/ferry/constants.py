"""
Ferry - Global Constants and Configuration Values

This module defines all constants used throughout the Ferry application.
All magic numbers and configuration defaults are centralized here.

Author: orpheus497
Version: 1.0.0
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "Ferry"
AUTHOR = "orpheus497"

# Network Constants
DEFAULT_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 0  # 0 = let the OS pick a free port
LOCALHOST = "127.0.0.1"

# Connection Timeouts (seconds)
CONNECT_TIMEOUT = 10
SENDER_LINGER = 5  # seconds the sender waits for the receiver to hang up

# Rendezvous Codes
CODE_LENGTH = 6
CODE_ALPHABET_NUMERIC = "0123456789"
CODE_ALPHABET_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
CODE_ALPHABETS = {
    "numeric": CODE_ALPHABET_NUMERIC,
    "base36": CODE_ALPHABET_BASE36,
}
DEFAULT_CODE_ALPHABET = "numeric"

# Rendezvous Directory
DIRECTORY_TTL = 86400  # 24 hours, matches the hosted key-value store
DIRECTORY_REQUEST_TIMEOUT = 10  # seconds
DEFAULT_DIRECTORY_URL = "http://127.0.0.1:8787"
DEFAULT_DIRECTORY_PORT = 8787
DIRECTORY_SWEEP_INTERVAL = 60  # seconds between expiry sweeps on the server
DIRECTORY_MAX_RECORD_SIZE = 4096  # bytes

# Directory server rate limiting (lookups per client address)
RATE_LIMIT_LOOKUPS_PER_MINUTE = 30
RATE_LIMIT_LOOKUPS_BURST = 10
RATE_LIMIT_PUBLISHES_PER_MINUTE = 10
RATE_LIMIT_BAN_DURATION = 300  # 5 minutes in seconds
RATE_LIMIT_CLEANUP_INTERVAL = 60  # 1 minute

# File Transfer Constants
DEFAULT_CHUNK_SIZE = 16 * 1024  # 16 KiB keeps well under channel buffer limits
MAX_CHUNK_SIZE = 1024 * 1024
MAX_FILE_SIZE = 512 * 1024 * 1024  # whole files are held in memory
DEFAULT_PACE_DELAY = 0.0  # seconds; 0 still yields to the event loop
DEFAULT_MIME_TYPE = "application/octet-stream"

# Wire Protocol
PROTOCOL_VERSION = 1
MAX_MESSAGE_SIZE = MAX_CHUNK_SIZE + 64 * 1024
MAX_NAME_LENGTH = 255

# NAT Traversal Constants
UPNP_DISCOVERY_DELAY = 200  # milliseconds for UPnP device discovery
STUN_SERVERS = [
    ("stun.l.google.com", 19302),
    ("stun1.l.google.com", 19302),
    ("stun2.l.google.com", 19302),
    ("stun.stunprotocol.org", 3478),
]

# Share links
DEFAULT_SHARE_BASE_URL = "https://ferry.example.net/"
SHARE_LINK_CODE_PARAM = "code"
SHARE_LINK_PEER_PARAM = "peer"

# File Paths
DEFAULT_DATA_DIR = "~/.ferry"
CONFIG_FILENAME = "config.toml"
DIRECTORY_DIRNAME = "directory"
DOWNLOADS_DIRNAME = "downloads"
LOGS_DIR = "logs"
LOG_FILENAME = "ferry.log"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5

# Feature Flags
FEATURE_QR_CODES = True
FEATURE_NAT_TRAVERSAL = False  # STUN/UPnP lookups add seconds to startup
