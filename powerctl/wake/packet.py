# powerctl/wake/packet.py
import logging
import re
import socket
from typing import Optional

log = logging.getLogger("powerctl.wake.packet")

_HEX_MAC = re.compile(r"^[0-9a-fA-F]{12}$")
PACKET_SIZE = 102


def parse_mac(mac: str) -> bytes:
    """
    Accept `AA:BB:CC:DD:EE:FF`, `AA-BB-...`, `AABB.CCDD.EEFF` or bare hex.
    Raises ValueError on anything else.
    """
    cleaned = re.sub(r"[:\-.]", "", (mac or "").strip())
    if not _HEX_MAC.match(cleaned):
        raise ValueError(f"invalid MAC address: {mac!r}")
    return bytes.fromhex(cleaned)


def parse_password(password: Optional[str]) -> bytes:
    """SecureOn password: 6 bytes in MAC notation or 4 bytes dotted quad."""
    if not password:
        return b""
    if re.match(r"^\d{1,3}(\.\d{1,3}){3}$", password):
        octets = [int(p) for p in password.split(".")]
        if any(o > 255 for o in octets):
            raise ValueError(f"invalid SecureOn password: {password!r}")
        return bytes(octets)
    return parse_mac(password)


def build_magic_packet(mac: str, secure_on: Optional[str] = None) -> bytes:
    """Six 0xFF bytes then the MAC sixteen times, optionally followed by the password."""
    raw = parse_mac(mac)
    return b"\xff" * 6 + raw * 16 + parse_password(secure_on)


class UdpPacketSender:
    """Broadcasts one datagram per call."""

    def __init__(self, broadcast_address: str = "255.255.255.255", port: int = 9, secure_on: Optional[str] = None):
        self.broadcast_address = broadcast_address
        self.port = port
        self.secure_on = secure_on

    def __call__(self, mac: str) -> bool:
        try:
            packet = build_magic_packet(mac, self.secure_on)
        except ValueError as e:
            log.error("Cannot build wake packet: %s", e)
            return False
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.sendto(packet, (self.broadcast_address, self.port))
            log.debug("Sent %d byte wake packet for %s to %s:%d", len(packet), mac, self.broadcast_address, self.port)
            return True
        except OSError as e:
            log.warning("Wake packet for %s not sent: %s", mac, e)
            return False
        finally:
            sock.close()
