from .dispatcher import WakeDispatcher, default_options
from .packet import build_magic_packet, parse_mac

__all__ = ["WakeDispatcher", "default_options", "build_magic_packet", "parse_mac"]
