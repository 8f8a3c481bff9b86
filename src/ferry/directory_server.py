"""
Ferry - Rendezvous directory server.

Created by orpheus497

A small HTTP key-value store for the "http" directory backend. It keeps
only code -> advertisement records with a TTL, never file contents.

Routes:
    GET    /              banner
    PUT    /codes/<code>  {"value": str, "ttl": seconds?}
    GET    /codes/<code>  {"value": str} or 404
    DELETE /codes/<code>

Lookups and publishes are rate limited per client address, which keeps
walking the code space slow.
"""

import argparse
import logging
import re
import sys
import threading
import time
from pathlib import Path
from typing import Dict, Optional, Tuple

from flask import Flask, jsonify, request
from flask_cors import CORS

from . import __version__
from .config import Config
from .constants import (
    APP_NAME,
    DIRECTORY_MAX_RECORD_SIZE,
    DIRECTORY_SWEEP_INTERVAL,
    DIRECTORY_TTL,
)
from .errors import ConfigError, ErrorCode, ServerError
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^[0-9A-Za-z]{1,64}$")


class RecordStore:
    """Thread-safe code -> value store with per-record expiry."""

    def __init__(self):
        self.records: Dict[str, Tuple[str, Optional[float]]] = {}
        self.lock = threading.Lock()

    def put(self, code: str, value: str, ttl: Optional[float]) -> Optional[float]:
        expires_at = time.time() + ttl if ttl else None
        with self.lock:
            self.records[code] = (value, expires_at)
        return expires_at

    def get(self, code: str) -> Optional[str]:
        with self.lock:
            record = self.records.get(code)
            if record is None:
                return None
            value, expires_at = record
            if expires_at is not None and time.time() >= expires_at:
                del self.records[code]
                return None
            return value

    def delete(self, code: str) -> bool:
        with self.lock:
            return self.records.pop(code, None) is not None

    def sweep(self) -> int:
        """Drop expired records; returns how many were removed."""
        now = time.time()
        with self.lock:
            expired = [
                code
                for code, (_value, expires_at) in self.records.items()
                if expires_at is not None and now >= expires_at
            ]
            for code in expired:
                del self.records[code]
        return len(expired)

    def __len__(self) -> int:
        with self.lock:
            return len(self.records)


class Sweeper(threading.Thread):
    """Background thread that expires records and idle rate limit state."""

    def __init__(
        self,
        store: RecordStore,
        rate_limiter: Optional[RateLimiter] = None,
        interval: float = DIRECTORY_SWEEP_INTERVAL,
    ):
        super().__init__(name="ferry-directory-sweeper", daemon=True)
        self.store = store
        self.rate_limiter = rate_limiter
        self.interval = interval
        self.stopped = threading.Event()

    def run(self) -> None:
        while not self.stopped.wait(self.interval):
            removed = self.store.sweep()
            if removed:
                logger.info(f"Expired {removed} directory record(s)")
            if self.rate_limiter is not None:
                self.rate_limiter.cleanup()

    def stop(self) -> None:
        self.stopped.set()


def _error(message: str, status: int):
    return jsonify({"error": message}), status


def create_app(
    store: Optional[RecordStore] = None,
    rate_limiter: Optional[RateLimiter] = None,
    max_ttl: float = DIRECTORY_TTL,
) -> Flask:
    """
    Build the directory Flask application.

    Args:
        store: Record store (a fresh one if omitted)
        rate_limiter: Per-client limiter, None disables limiting
        max_ttl: Default and upper bound for record lifetimes in seconds

    Returns:
        Flask application; the store is available as app.config["FERRY_STORE"]
    """
    app = Flask(__name__)
    CORS(app)

    store = store if store is not None else RecordStore()
    app.config["FERRY_STORE"] = store
    app.config["FERRY_RATE_LIMITER"] = rate_limiter

    def check_code(code: str):
        if not CODE_PATTERN.match(code):
            return _error("Invalid code", 400)
        return None

    def client_address() -> str:
        return request.remote_addr or "unknown"

    @app.route("/")
    def index():
        return f"{APP_NAME} Directory API {__version__}\n", 200, {"Content-Type": "text/plain"}

    @app.route("/info")
    def server_info():
        info = {
            "name": APP_NAME,
            "version": __version__,
            "records": len(store),
            "max_ttl": max_ttl,
            "status": "running",
        }
        if rate_limiter is not None:
            info["rate_limits"] = rate_limiter.get_stats()
        return jsonify(info)

    @app.route("/codes/<code>", methods=["PUT"])
    def put_code(code):
        invalid = check_code(code)
        if invalid:
            return invalid

        if rate_limiter is not None and not rate_limiter.check_publish_rate(client_address()):
            return _error("Too many requests", 429)

        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return _error("Body must be a JSON object", 400)

        value = data.get("value")
        if not isinstance(value, str) or not value:
            return _error("Field 'value' must be a non-empty string", 400)
        if len(value.encode("utf-8")) > DIRECTORY_MAX_RECORD_SIZE:
            return _error("Record too large", 400)

        ttl = data.get("ttl", max_ttl)
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl <= 0:
            return _error("Field 'ttl' must be a positive number", 400)
        ttl = min(ttl, max_ttl) if max_ttl else ttl

        expires_at = store.put(code, value, ttl)
        logger.info(f"Stored code from {client_address()} (ttl={ttl}s)")
        return jsonify({"success": True, "code": code, "expires_at": expires_at})

    @app.route("/codes/<code>", methods=["GET"])
    def get_code(code):
        invalid = check_code(code)
        if invalid:
            return invalid

        if rate_limiter is not None and not rate_limiter.check_lookup_rate(client_address()):
            return _error("Too many requests", 429)

        value = store.get(code)
        if value is None:
            return _error("Code not found", 404)
        return jsonify({"value": value})

    @app.route("/codes/<code>", methods=["DELETE"])
    def delete_code(code):
        invalid = check_code(code)
        if invalid:
            return invalid

        if not store.delete(code):
            return _error("Code not found", 404)
        return jsonify({"success": True})

    return app


def run_server(
    config: Config,
    host: Optional[str] = None,
    port: Optional[int] = None,
    ttl: Optional[float] = None,
) -> None:
    """
    Run the directory server until interrupted.

    Raises:
        ServerError: If the server cannot bind its port
    """
    host = host or config.get("directory", "server_host")
    port = port or config.get("directory", "server_port")
    ttl = ttl or config.get("directory", "ttl")

    store = RecordStore()
    rate_limiter = RateLimiter()
    app = create_app(store, rate_limiter, max_ttl=ttl)

    sweeper = Sweeper(store, rate_limiter)
    sweeper.start()

    logger.info(f"{APP_NAME} directory listening on {host}:{port} (ttl={ttl}s)")
    try:
        app.run(host=host, port=port, threaded=True)
    except OSError as e:
        raise ServerError(
            ErrorCode.E801_SERVER_START_FAILED,
            f"Failed to start directory server: {e}",
            {"host": host, "port": port, "error": str(e)},
        )
    finally:
        sweeper.stop()
        logger.info("Directory server stopped")


def main(argv=None) -> int:
    """Entry point for the ferry-directory script."""
    from .cli import setup_logging

    parser = argparse.ArgumentParser(
        description=f"{APP_NAME} Directory - rendezvous code server"
    )
    parser.add_argument("--config", type=str, default=None, help="Path to config file")
    parser.add_argument("--host", type=str, default=None, help="Interface to bind")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    parser.add_argument("--ttl", type=float, default=None, help="Record lifetime in seconds")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    try:
        config = Config(Path(args.config).expanduser() if args.config else None)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    setup_logging(config, debug=args.debug)

    try:
        run_server(config, args.host, args.port, args.ttl)
    except ServerError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
