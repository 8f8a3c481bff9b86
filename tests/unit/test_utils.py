"""
Unit tests for ferry.utils module.

Created by orpheus497

Tests utility functions for formatting, validation, and address parsing.
"""

import pytest

from ferry.utils import (
    format_address,
    format_file_size,
    parse_address,
    sanitize_filename,
    truncate_string,
    validate_hostname,
    validate_port,
)


class TestPortValidation:
    """Test port number validation."""

    def test_valid_ports(self):
        """Test that valid port numbers are accepted."""
        assert validate_port(1) is True
        assert validate_port(5000) is True
        assert validate_port(65535) is True

    def test_invalid_ports(self):
        """Test that invalid port numbers are rejected."""
        assert validate_port(0) is False
        assert validate_port(65536) is False
        assert validate_port(-1) is False


class TestHostnameValidation:
    """Test hostname validation."""

    def test_valid_hostnames(self):
        assert validate_hostname("example.com") is True
        assert validate_hostname("sub.example.com") is True
        assert validate_hostname("localhost") is True
        assert validate_hostname("example.com.") is True

    def test_invalid_hostnames(self):
        assert validate_hostname("") is False
        assert validate_hostname("-example.com") is False
        assert validate_hostname("example-.com") is False
        assert validate_hostname("a" * 256) is False


class TestAddresses:
    """Test peer address formatting and parsing."""

    def test_format_ipv4(self):
        assert format_address("192.168.1.20", 40113) == "192.168.1.20:40113"

    def test_format_ipv6_is_bracketed(self):
        assert format_address("::1", 5000) == "[::1]:5000"

    def test_parse_ipv4(self):
        assert parse_address("192.168.1.20:40113") == ("192.168.1.20", 40113)

    def test_parse_hostname(self):
        assert parse_address("sender.lan:8000") == ("sender.lan", 8000)

    def test_parse_ipv6(self):
        assert parse_address("[::1]:5000") == ("::1", 5000)

    def test_format_parse_agree(self):
        for host, port in [("10.0.0.5", 1), ("fe80::1", 65535), ("example.com", 443)]:
            assert parse_address(format_address(host, port)) == (host, port)

    @pytest.mark.parametrize(
        "address",
        [
            "no-port",
            ":5000",
            "host:",
            "host:notaport",
            "host:0",
            "host:70000",
            "[::1]5000",
            "[nothost]:5000",
            "bad_host!:5000",
        ],
    )
    def test_parse_rejects_malformed(self, address):
        with pytest.raises(ValueError):
            parse_address(address)


class TestStringUtilities:
    """Test string utility functions."""

    def test_format_file_size(self):
        assert format_file_size(0) == "0 Bytes"
        assert format_file_size(500) == "500 Bytes"
        assert format_file_size(1024) == "1 KB"
        assert format_file_size(1536) == "1.5 KB"
        assert format_file_size(5 * 1024 * 1024) == "5 MB"

    def test_truncate_string(self):
        """Test string truncation."""
        assert truncate_string("short", 10) == "short"
        assert truncate_string("this is a long string", 10) == "this is..."
        assert truncate_string("test", 10, "~") == "test"

    def test_sanitize_filename(self):
        """Test filename sanitization."""
        assert sanitize_filename("normal.txt") == "normal.txt"
        assert sanitize_filename("file<>name.txt") == "file__name.txt"
        assert sanitize_filename("path/to/file.txt") == "path_to_file.txt"
        assert sanitize_filename("") == "unnamed"
        assert sanitize_filename("   ") == "unnamed"

    def test_sanitize_filename_cannot_escape(self):
        cleaned = sanitize_filename("../../etc/passwd")
        assert "/" not in cleaned
        assert not cleaned.startswith(".")

    def test_sanitize_filename_length(self):
        assert len(sanitize_filename("x" * 400)) == 255
