"""
Ferry - Rendezvous Directory.

Created by orpheus497

Maps a short rendezvous code to the sender's connection address. The
protocol layer only calls publish() and resolve(); where the records live
is a configuration choice:

- memory: process-local dict, valid only while the process is alive
- file:   one JSON file per code in a shared directory (same host)
- http:   a small key-value service with a server-side TTL

Never-published and expired codes are indistinguishable to the caller.
"""

import asyncio
import contextlib
import functools
import hashlib
import json
import logging
import os
import secrets
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import aiofiles

from .constants import DIRECTORY_REQUEST_TIMEOUT, DIRECTORY_TTL
from .errors import CodeNotFoundError, ConfigError, DirectoryUnavailableError, ErrorCode

logger = logging.getLogger(__name__)

RECORD_VERSION = 1


@dataclass(frozen=True)
class SenderAdvertisement:
    """A sender's published (code -> address) record.

    Attributes:
        code: Rendezvous code
        peer_address: Address the receiver should connect to
        created_at: Unix timestamp of publication
    """

    code: str
    peer_address: str
    created_at: float = field(default_factory=time.time)

    def to_json(self) -> str:
        """Serialize for storage in a directory backend."""
        record = asdict(self)
        record["version"] = RECORD_VERSION
        return json.dumps(record, separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str) -> "SenderAdvertisement":
        """Parse a stored record.

        Raises:
            ValueError: If the record is malformed
        """
        try:
            record = json.loads(text)
            return cls(
                code=str(record["code"]),
                peer_address=str(record["peer_address"]),
                created_at=float(record["created_at"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Malformed advertisement record: {e}") from e

    def is_expired(self, ttl: Optional[float], now: Optional[float] = None) -> bool:
        """Check whether the advertisement is older than ttl seconds."""
        if not ttl:
            return False
        now = time.time() if now is None else now
        return now - self.created_at >= ttl


class KeyValueBackend(ABC):
    """Storage contract a directory backend must satisfy."""

    name = "abstract"

    @abstractmethod
    async def put(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        """Store value under key, replacing any previous value.

        Raises:
            DirectoryUnavailableError: If the store cannot be written
        """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None for a miss or an expired entry.

        Raises:
            DirectoryUnavailableError: If the store cannot be read
        """

    async def delete(self, key: str) -> None:
        """Remove a key if present. Backends without deletion ignore this."""

    async def close(self) -> None:
        """Release backend resources."""


class MemoryBackend(KeyValueBackend):
    """Process-local key-value store with optional expiry."""

    name = "memory"

    def __init__(self):
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        expires_at = time.time() + ttl if ttl else None
        async with self._lock:
            self._entries[key] = (value, expires_at)

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and time.time() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class FileBackend(KeyValueBackend):
    """Key-value store kept as JSON files in a directory.

    Lets two processes on the same machine rendezvous without a server.
    Writes go through a temporary file and an atomic rename, so a reader
    never sees a half-written record.
    """

    name = "file"

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self.root / f"{digest}.json"

    async def put(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        entry = {
            "key": key,
            "value": value,
            "expires_at": time.time() + ttl if ttl else None,
        }
        path = self._path_for(key)
        temp_path = path.with_name(f"{path.stem}.{os.getpid()}.{secrets.token_hex(4)}.tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)

            # Write to temporary file first
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(entry))

            # Atomic rename
            os.replace(temp_path, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                temp_path.unlink()
            raise DirectoryUnavailableError(
                f"Cannot write directory record: {e}", {"path": str(path), "error": str(e)}
            )

    async def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                entry = json.loads(await f.read())
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            logger.warning(f"Ignoring corrupt directory record: {path}")
            return None
        except OSError as e:
            raise DirectoryUnavailableError(
                f"Cannot read directory record: {e}", {"path": str(path), "error": str(e)}
            )

        if not isinstance(entry, dict) or entry.get("key") != key:
            return None
        expires_at = entry.get("expires_at")
        if expires_at is not None and time.time() >= expires_at:
            await self.delete(key)
            return None
        return entry.get("value")

    async def delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove directory record for {key}: {e}")


class HttpBackend(KeyValueBackend):
    """Key-value store behind the Ferry directory server HTTP API.

    PUT /codes/{key} with {"value": ..., "ttl": ...}; GET /codes/{key}
    answers {"value": ...} or 404. Requests are blocking urllib calls run
    in the default executor.
    """

    name = "http"

    def __init__(self, base_url: str, request_timeout: float = DIRECTORY_REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout

    def _url(self, key: str) -> str:
        return f"{self.base_url}/codes/{quote(key, safe='')}"

    def _request(
        self, method: str, key: str, payload: Optional[Dict[str, Any]] = None
    ) -> Tuple[int, bytes]:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        request = urllib.request.Request(
            self._url(key),
            data=data,
            method=method,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        try:
            with urllib.request.urlopen(request, timeout=self.request_timeout) as response:
                return response.status, response.read()
        except urllib.error.HTTPError as e:
            return e.code, e.read()

    async def _call(
        self, method: str, key: str, payload: Optional[Dict[str, Any]] = None
    ) -> Tuple[int, bytes]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, functools.partial(self._request, method, key, payload)
            )
        except OSError as e:
            raise DirectoryUnavailableError(
                f"Directory unreachable: {e}", {"url": self.base_url, "error": str(e)}
            )

    async def put(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        payload: Dict[str, Any] = {"value": value}
        if ttl:
            payload["ttl"] = ttl

        status, body = await self._call("PUT", key, payload)
        if status >= 400:
            raise DirectoryUnavailableError(
                f"Directory rejected publish: HTTP {status}",
                {"status": status, "body": body[:200].decode("utf-8", "replace")},
            )

    async def get(self, key: str) -> Optional[str]:
        status, body = await self._call("GET", key)
        if status == 404:
            return None
        if status >= 400:
            raise DirectoryUnavailableError(
                f"Directory lookup failed: HTTP {status}", {"status": status}
            )

        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DirectoryUnavailableError(f"Directory returned invalid JSON: {e}")

        value = data.get("value") if isinstance(data, dict) else None
        return value if isinstance(value, str) else None

    async def delete(self, key: str) -> None:
        try:
            status, _body = await self._call("DELETE", key)
        except DirectoryUnavailableError as e:
            logger.warning(f"Directory delete failed: {e}")
            return
        if status >= 500:
            logger.warning(f"Directory delete failed: HTTP {status}")


class RendezvousDirectory:
    """Publishes and resolves sender advertisements through a backend."""

    def __init__(self, backend: KeyValueBackend, ttl: Optional[float] = DIRECTORY_TTL):
        """
        Initialize the directory.

        Args:
            backend: Storage backend
            ttl: Lifetime of an advertisement in seconds (None/0 = no expiry)
        """
        self.backend = backend
        self.ttl = ttl

    async def publish(self, code: str, peer_address: str) -> SenderAdvertisement:
        """
        Store (code -> peer_address). Re-publishing a code supersedes it.

        Returns:
            The stored advertisement

        Raises:
            DirectoryUnavailableError: If the backend cannot be written
        """
        advertisement = SenderAdvertisement(code=code, peer_address=peer_address)
        try:
            await self.backend.put(code, advertisement.to_json(), self.ttl)
        except DirectoryUnavailableError:
            raise
        except OSError as e:
            raise DirectoryUnavailableError(f"Publish failed: {e}", {"error": str(e)})

        logger.info(f"Published code via {self.backend.name} backend (ttl={self.ttl})")
        return advertisement

    async def lookup(self, code: str) -> SenderAdvertisement:
        """
        Fetch the live advertisement for a code.

        Raises:
            CodeNotFoundError: If there is no live advertisement
            DirectoryUnavailableError: If the backend cannot be read
        """
        try:
            raw = await self.backend.get(code)
        except DirectoryUnavailableError:
            raise
        except OSError as e:
            raise DirectoryUnavailableError(f"Resolve failed: {e}", {"error": str(e)})

        if raw is None:
            raise CodeNotFoundError()

        try:
            advertisement = SenderAdvertisement.from_json(raw)
        except ValueError as e:
            logger.warning(f"Discarding unreadable advertisement: {e}")
            raise CodeNotFoundError()

        # Backends without native expiry still honour the TTL here
        if advertisement.code != code or advertisement.is_expired(self.ttl):
            raise CodeNotFoundError()

        return advertisement

    async def resolve(self, code: str) -> str:
        """
        Resolve a code to the sender's peer address.

        Raises:
            CodeNotFoundError: If the code was never published or has expired
            DirectoryUnavailableError: If the backend cannot be read
        """
        advertisement = await self.lookup(code)
        logger.info(f"Resolved code to {advertisement.peer_address}")
        return advertisement.peer_address

    async def withdraw(self, code: str) -> None:
        """Remove a code once the sender no longer accepts connections."""
        await self.backend.delete(code)

    async def close(self) -> None:
        await self.backend.close()


def create_backend(config) -> KeyValueBackend:
    """
    Build the directory backend selected in configuration.

    Args:
        config: Config instance ([directory] section)

    Returns:
        A KeyValueBackend
    """
    backend = config.get("directory", "backend")

    if backend == "memory":
        return MemoryBackend()
    if backend == "file":
        return FileBackend(Path(config.get("directory", "path")))
    if backend == "http":
        return HttpBackend(
            config.get("directory", "url"),
            request_timeout=config.get("directory", "request_timeout"),
        )

    raise ConfigError(
        ErrorCode.E703_INVALID_CONFIG, f"Unknown directory backend: {backend}", {"backend": backend}
    )


def create_directory(config) -> RendezvousDirectory:
    """Build a RendezvousDirectory from configuration."""
    return RendezvousDirectory(create_backend(config), ttl=config.get("directory", "ttl"))
