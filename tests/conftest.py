"""
Pytest configuration and fixtures for Ferry tests.

Created by orpheus497

Provides common fixtures and test utilities for unit and integration tests.
Objects that own asyncio primitives are built inside the test coroutines
through the factory fixtures below, so they bind to the running loop.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator, List, Optional, Tuple

import pytest

from ferry.directory import MemoryBackend, RendezvousDirectory
from ferry.establisher import SessionEstablisher
from ferry.transfer import TransferUnit
from ferry.transport import MemoryNetwork, MemoryTransport


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp(prefix="ferry_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def temp_file(temp_dir: Path) -> Generator[Path, None, None]:
    """
    Create a small temporary file for testing.

    Yields:
        Path: Temporary file path
    """
    file_path = temp_dir / "test_file.txt"
    file_path.write_bytes(b"hello ferry\n")
    yield file_path


@pytest.fixture
def memory_network() -> MemoryNetwork:
    return MemoryNetwork()


@pytest.fixture
def sample_units() -> List[TransferUnit]:
    """Three files of different shapes: text, binary, empty."""
    return [
        TransferUnit("notes.txt", b"first file\n" * 10, "text/plain"),
        TransferUnit("blob.bin", bytes(range(256)) * 40),
        TransferUnit("empty.dat", b""),
    ]


@pytest.fixture
def make_directory() -> Callable[..., RendezvousDirectory]:
    """Factory for a directory on a fresh in-process backend.

    Call it inside the test coroutine.
    """

    def factory(ttl: Optional[float] = 60) -> RendezvousDirectory:
        return RendezvousDirectory(MemoryBackend(), ttl=ttl)

    return factory


@pytest.fixture
def make_establishers(
    memory_network: MemoryNetwork,
) -> Callable[..., Tuple[SessionEstablisher, SessionEstablisher]]:
    """Factory for sender and receiver establishers on one memory network."""

    def factory(connect_timeout: float = 2) -> Tuple[SessionEstablisher, SessionEstablisher]:
        sender = SessionEstablisher(MemoryTransport(memory_network, "sender"), connect_timeout)
        receiver = SessionEstablisher(
            MemoryTransport(memory_network, "receiver"), connect_timeout
        )
        return sender, receiver

    return factory


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        # Add unit marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Everything outside unit/ drives real sessions end to end
        else:
            item.add_marker(pytest.mark.integration)
