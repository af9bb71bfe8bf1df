"""Wire protocol: decoding and encoding of streamed chat responses."""

from streamchat.protocol.decoder import LineBuffer, decode_stream, parse_stream_part
from streamchat.protocol.encoder import encode_event, format_stream_part
from streamchat.protocol.parts import DATA_STREAM_HEADER, STREAM_PARTS

__all__ = [
    "DATA_STREAM_HEADER",
    "STREAM_PARTS",
    "LineBuffer",
    "decode_stream",
    "encode_event",
    "format_stream_part",
    "parse_stream_part",
]
