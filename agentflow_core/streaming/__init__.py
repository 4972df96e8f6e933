"""Wire framing of run events."""

from .protocols import (
    FRAME_CLOSE,
    FRAME_OPEN,
    FrameType,
    ProtocolError,
    StreamFrame,
    StreamFrameReader,
    decode_frame,
    dispatch_frame,
    encode_frame,
    server_hooks,
)

__all__ = [
    "FRAME_CLOSE",
    "FRAME_OPEN",
    "FrameType",
    "ProtocolError",
    "StreamFrame",
    "StreamFrameReader",
    "decode_frame",
    "dispatch_frame",
    "encode_frame",
    "server_hooks",
]
