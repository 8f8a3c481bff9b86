"""
Ferry - Rate Limiting Implementation

This module implements rate limiting using the token bucket algorithm.
The directory server uses it to limit code lookups and publishes per
client, which makes walking the code space slow. The send engine uses a
bucket to cap its byte rate when transfer.max_rate is set.

Author: orpheus497
Version: 1.0.0
"""

import asyncio
import logging
import time
from threading import Lock
from typing import Dict, Set

from .constants import (
    RATE_LIMIT_BAN_DURATION,
    RATE_LIMIT_CLEANUP_INTERVAL,
    RATE_LIMIT_LOOKUPS_BURST,
    RATE_LIMIT_LOOKUPS_PER_MINUTE,
    RATE_LIMIT_PUBLISHES_PER_MINUTE,
)

logger = logging.getLogger(__name__)


class TokenBucket:
    """Token bucket implementation for rate limiting.

    The token bucket algorithm allows bursts of activity while
    maintaining a long-term rate limit. Tokens are added at a
    constant rate and consumed by operations.

    Attributes:
        capacity: Maximum number of tokens in bucket
        refill_rate: Tokens added per second
        tokens: Current number of tokens
        last_refill: Timestamp of last refill
        lock: Thread lock for synchronization
    """

    def __init__(self, capacity: float, refill_rate: float):
        """Initialize token bucket.

        Args:
            capacity: Maximum tokens (burst size)
            refill_rate: Tokens per second
        """
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.tokens = float(capacity)
        self.last_refill = time.time()
        self.lock = Lock()

    def _refill(self) -> None:
        now = time.time()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + (elapsed * self.refill_rate))
        self.last_refill = now

    def consume(self, tokens: float = 1) -> bool:
        """Attempt to consume tokens from the bucket.

        Args:
            tokens: Number of tokens to consume

        Returns:
            True if tokens were consumed, False if insufficient tokens
        """
        with self.lock:
            self._refill()

            if self.tokens >= tokens:
                self.tokens -= tokens
                return True

            return False

    def time_until(self, tokens: float = 1) -> float:
        """Seconds until the bucket can satisfy a request of this size."""
        with self.lock:
            self._refill()
            missing = min(tokens, self.capacity) - self.tokens
            if missing <= 0:
                return 0.0
            return missing / self.refill_rate

    async def wait(self, tokens: float = 1) -> None:
        """Sleep until tokens are available, then consume them.

        Requests larger than the capacity are clamped to it, so a single
        oversize request still goes through after a full refill.
        """
        tokens = min(tokens, self.capacity)
        while not self.consume(tokens):
            await asyncio.sleep(self.time_until(tokens))

    def reset(self) -> None:
        """Reset the bucket to full capacity."""
        with self.lock:
            self.tokens = float(self.capacity)
            self.last_refill = time.time()


class RateLimiter:
    """Rate limiter for directory server requests.

    Manages rate limiting for code lookups and publishes per client
    address. Supports temporary banning of abusive addresses and automatic
    cleanup of stale entries.

    Attributes:
        lookup_buckets: Token buckets for lookup rate limiting
        publish_buckets: Token buckets for publish rate limiting
        banned_addresses: Set of banned IP addresses
        ban_expiry: Expiry timestamps for banned addresses
        lock: Thread lock for synchronization
        last_cleanup: Timestamp of last cleanup
    """

    def __init__(
        self,
        lookups_per_minute: int = RATE_LIMIT_LOOKUPS_PER_MINUTE,
        lookups_burst: int = RATE_LIMIT_LOOKUPS_BURST,
        publishes_per_minute: int = RATE_LIMIT_PUBLISHES_PER_MINUTE,
    ):
        """Initialize rate limiter.

        Args:
            lookups_per_minute: Maximum code lookups per minute per address
            lookups_burst: Maximum burst size for lookups
            publishes_per_minute: Maximum publishes per minute per address
        """
        self.lookups_per_minute = lookups_per_minute
        self.lookups_burst = lookups_burst
        self.publishes_per_minute = publishes_per_minute

        self.lookup_buckets: Dict[str, TokenBucket] = {}
        self.publish_buckets: Dict[str, TokenBucket] = {}

        self.banned_addresses: Set[str] = set()
        self.ban_expiry: Dict[str, float] = {}

        self.lock = Lock()
        self.last_cleanup = time.time()

        logger.info(
            "Rate limiter initialized: "
            f"{lookups_per_minute} lookups/min, "
            f"{publishes_per_minute} publishes/min"
        )

    def check_lookup_rate(self, address: str) -> bool:
        """Check if a code lookup is allowed for the given address.

        Args:
            address: Client IP address

        Returns:
            True if allowed, False if rate limited
        """
        if self._is_banned(address):
            logger.warning(f"Lookup rejected from banned address: {address}")
            return False

        with self.lock:
            if address not in self.lookup_buckets:
                refill_rate = self.lookups_per_minute / 60.0
                self.lookup_buckets[address] = TokenBucket(self.lookups_burst, refill_rate)

            bucket = self.lookup_buckets[address]

        if bucket.consume():
            return True

        logger.warning(f"Lookup rate limit exceeded for: {address}")
        return False

    def check_publish_rate(self, address: str) -> bool:
        """Check if a publish is allowed for the given address.

        Args:
            address: Client IP address

        Returns:
            True if allowed, False if rate limited
        """
        if self._is_banned(address):
            logger.warning(f"Publish rejected from banned address: {address}")
            return False

        with self.lock:
            if address not in self.publish_buckets:
                refill_rate = self.publishes_per_minute / 60.0
                self.publish_buckets[address] = TokenBucket(
                    self.publishes_per_minute, refill_rate
                )

            bucket = self.publish_buckets[address]

        if bucket.consume():
            return True

        logger.warning(f"Publish rate limit exceeded for: {address}")
        return False

    def ban(self, address: str, duration: int = RATE_LIMIT_BAN_DURATION) -> None:
        """Temporarily ban an address.

        Args:
            address: IP address to ban
            duration: Ban duration in seconds
        """
        with self.lock:
            self.banned_addresses.add(address)
            self.ban_expiry[address] = time.time() + duration

        logger.warning(f"Banned address {address} for {duration} seconds")

    def _is_banned(self, address: str) -> bool:
        if address not in self.banned_addresses:
            return False

        now = time.time()
        with self.lock:
            if address in self.ban_expiry and now >= self.ban_expiry[address]:
                self.banned_addresses.discard(address)
                self.ban_expiry.pop(address, None)
                logger.info(f"Ban expired for address: {address}")
                return False

        return True

    def cleanup(self, force: bool = False) -> None:
        """Clean up expired bans and stale buckets.

        Called from the directory server's sweep task.
        """
        now = time.time()

        if not force and now - self.last_cleanup < RATE_LIMIT_CLEANUP_INTERVAL:
            return

        with self.lock:
            expired_bans = [addr for addr, expiry in self.ban_expiry.items() if now >= expiry]
            for addr in expired_bans:
                self.banned_addresses.discard(addr)
                self.ban_expiry.pop(addr, None)

            if expired_bans:
                logger.info(f"Cleaned up {len(expired_bans)} expired bans")

            stale_timeout = 3600

            removed = 0
            for buckets in (self.lookup_buckets, self.publish_buckets):
                stale = [
                    addr
                    for addr, bucket in buckets.items()
                    if now - bucket.last_refill > stale_timeout
                ]
                for addr in stale:
                    del buckets[addr]
                removed += len(stale)

            if removed:
                logger.info(f"Cleaned up {removed} idle rate limit buckets")

            self.last_cleanup = now

    def get_stats(self) -> Dict[str, int]:
        with self.lock:
            return {
                "lookup_buckets": len(self.lookup_buckets),
                "publish_buckets": len(self.publish_buckets),
                "banned_addresses": len(self.banned_addresses),
            }
