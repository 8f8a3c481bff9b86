"""
Ferry - NAT traversal for advertised sender addresses.

Created by orpheus497

A sender behind NAT has to advertise an address the receiver can reach.
This module asks a UPnP gateway to forward the listening port and falls
back to STUN for public address discovery. Both helpers are optional;
without them the sender advertises its local interface address, which is
enough on a shared LAN.
"""

import asyncio
import logging
import socket
from typing import Dict, List, Optional, Tuple

from .constants import STUN_SERVERS, UPNP_DISCOVERY_DELAY

logger = logging.getLogger(__name__)

try:
    import miniupnpc

    UPNP_AVAILABLE = True
except ImportError:
    logger.debug("miniupnpc not available, UPnP port mapping disabled")
    UPNP_AVAILABLE = False

try:
    import stun

    STUN_AVAILABLE = True
except ImportError:
    logger.debug("pystun3 not available, STUN discovery disabled")
    STUN_AVAILABLE = False


class NATTraversal:
    """
    Works out which address a sender should publish.

    Order of preference: UPnP mapping (external IP + mapped port), STUN
    (public IP, assumes the port is preserved), local interface address.
    """

    def __init__(self, stun_servers: Optional[List[Tuple[str, int]]] = None):
        self.stun_servers = stun_servers or list(STUN_SERVERS)
        self.upnp = None
        self.public_ip: Optional[str] = None
        self.mapped_ports: Dict[str, Dict] = {}

        if UPNP_AVAILABLE:
            try:
                self.upnp = miniupnpc.UPnP()
                self.upnp.discoverdelay = UPNP_DISCOVERY_DELAY
            except Exception as e:
                logger.warning(f"Failed to initialize UPnP: {e}")
                self.upnp = None

    def get_public_ip(self, local_port: int = 0) -> Optional[str]:
        """
        Discover the public IP address using STUN.

        Args:
            local_port: Local UDP port to bind for the STUN test (0 = random)

        Returns:
            Public IP address or None if every server failed
        """
        if not STUN_AVAILABLE:
            return None

        for stun_host, stun_port in self.stun_servers:
            try:
                _nat_type, external_ip, _external_port = stun.get_ip_info(
                    source_port=local_port, stun_host=stun_host, stun_port=stun_port
                )
            except Exception as e:
                logger.debug(f"STUN server {stun_host} failed: {e}")
                continue

            if external_ip:
                self.public_ip = external_ip
                logger.info(f"Public IP via STUN ({stun_host}): {external_ip}")
                return external_ip

        logger.warning("All STUN servers failed")
        return None

    def setup_upnp_mapping(
        self, local_port: int, protocol: str = "TCP", description: str = "Ferry share"
    ) -> Optional[Tuple[str, int]]:
        """
        Ask the gateway to forward local_port.

        Returns:
            (external_ip, external_port) or None if UPnP is unavailable or refused
        """
        if self.upnp is None:
            return None

        try:
            if self.upnp.discover() == 0:
                logger.debug("No UPnP devices found")
                return None

            self.upnp.selectigd()
            external_ip = self.upnp.externalipaddress()
            local_ip = self.upnp.lanaddr

            if not self.upnp.addportmapping(
                local_port, protocol, local_ip, local_port, description, ""
            ):
                logger.warning("UPnP port mapping refused")
                return None

        except Exception as e:
            logger.warning(f"UPnP port mapping error: {e}")
            return None

        self.mapped_ports[f"{protocol}:{local_port}"] = {
            "external_port": local_port,
            "protocol": protocol,
        }
        logger.info(f"UPnP mapping {external_ip}:{local_port} -> {local_ip}:{local_port}")
        return external_ip, local_port

    def cleanup_mappings(self) -> None:
        """Remove every UPnP mapping created by this instance."""
        if self.upnp is None:
            return

        for key, mapping in list(self.mapped_ports.items()):
            try:
                self.upnp.deleteportmapping(mapping["external_port"], mapping["protocol"])
                logger.info(f"UPnP mapping removed: {mapping['external_port']}")
            except Exception as e:
                logger.warning(f"Error removing UPnP mapping: {e}")
            del self.mapped_ports[key]

    @staticmethod
    def get_local_ip() -> Optional[str]:
        """
        Get the local IP address used for outbound traffic.

        Connecting a UDP socket sends nothing, it only selects a route.
        """
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
                s.connect(("8.8.8.8", 80))
                return s.getsockname()[0]
        except OSError as e:
            logger.debug(f"Failed to get local IP: {e}")
            return None

    def discover_address(self, local_port: int) -> Tuple[str, int]:
        """
        Pick the best address to advertise for a listener on local_port.

        Blocking: run it in an executor from async code.
        """
        mapped = self.setup_upnp_mapping(local_port)
        if mapped:
            return mapped

        public_ip = self.get_public_ip()
        if public_ip:
            return public_ip, local_port

        return self.get_local_ip() or "127.0.0.1", local_port

    async def discover_address_async(self, local_port: int) -> Tuple[str, int]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.discover_address, local_port)
