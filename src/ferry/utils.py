"""
Ferry - Utility functions.

Created by orpheus497
Version: 1.0.0

Provides helpers for formatting sizes, cleaning file names, and parsing
the host:port addresses that senders advertise.
"""

import ipaddress
import logging
import re
from typing import Tuple

logger = logging.getLogger(__name__)

SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def format_file_size(num_bytes: int) -> str:
    """
    Format a byte count for display, e.g. 1536 -> "1.5 KB".

    Args:
        num_bytes: Size in bytes

    Returns:
        Human-readable size with at most two decimals
    """
    if num_bytes <= 0:
        return "0 Bytes"

    k = 1024
    i = 0
    while num_bytes >= k ** (i + 1) and i < len(SIZE_UNITS) - 1:
        i += 1
    value = round(num_bytes / (k**i), 2)
    if value == int(value):
        value = int(value)
    return f"{value} {SIZE_UNITS[i]}"


def validate_port(port: int) -> bool:
    """
    Validate a TCP port a peer can be reached on.

    Args:
        port: Port number to validate

    Returns:
        True if valid, False otherwise
    """
    return 1 <= port <= 65535


def validate_hostname(hostname: str) -> bool:
    """
    Validate a hostname.

    Args:
        hostname: Hostname string

    Returns:
        True if valid hostname, False otherwise
    """
    if not hostname:
        return False

    if len(hostname) > 255:
        return False

    if hostname[-1] == ".":
        hostname = hostname[:-1]

    if not hostname:
        return False

    pattern = r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
    return bool(re.match(pattern, hostname))


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


def format_address(host: str, port: int) -> str:
    """Join host and port, bracketing IPv6 literals ("[::1]:5000")."""
    if ":" in host and _is_ip(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split a "host:port" or "[v6]:port" peer address.

    Raises:
        ValueError: If the address is malformed
    """
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"Malformed peer address: {address!r}")
        port_text = rest[1:]
        if not _is_ip(host):
            raise ValueError(f"Malformed peer address: {address!r}")
    else:
        host, sep, port_text = address.rpartition(":")
        if not sep or not host:
            raise ValueError(f"Malformed peer address: {address!r}")
        if not (_is_ip(host) or validate_hostname(host)):
            raise ValueError(f"Invalid host in peer address: {address!r}")

    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid port in peer address: {address!r}")

    if not validate_port(port):
        raise ValueError(f"Port out of range in peer address: {address!r}")

    return host, port


def truncate_string(s: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate a string to a maximum length.

    Args:
        s: String to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated string
    """
    if len(s) <= max_length:
        return s
    return s[: max_length - len(suffix)] + suffix


def sanitize_filename(filename: str) -> str:
    """
    Sanitize a sender-supplied filename before writing it to disk.

    Path separators are replaced, so a name can never escape the
    download directory.

    Args:
        filename: Filename to sanitize

    Returns:
        Sanitized filename
    """
    invalid_chars = '<>:"/\\|?*\x00'
    for char in invalid_chars:
        filename = filename.replace(char, "_")

    filename = filename.strip(". ")

    if not filename:
        filename = "unnamed"

    return truncate_string(filename, 255, "")
