"""Wire protocol: frame codec and verb set."""

from .frames import (
    Frame,
    ProtocolError,
    UnknownPeerError,
    Verb,
    format_frame,
    parse_frame,
    parse_id,
    split_args,
)

__all__ = [
    "Frame",
    "ProtocolError",
    "UnknownPeerError",
    "Verb",
    "format_frame",
    "parse_frame",
    "parse_id",
    "split_args",
]
