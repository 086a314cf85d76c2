"""Semantic block codec: locate, decode, remove and embed the trailing block."""

from epistemic_markers.block.codec import (
    END_SENTINEL,
    START_SENTINEL,
    BlockDecodeResult,
    BlockSpan,
    DecodeStatus,
    create_empty,
    decode,
    decode_result,
    embed,
    encode,
    locate,
    locate_all,
    read_or_create,
    remove,
)

__all__ = [
    "END_SENTINEL",
    "START_SENTINEL",
    "BlockDecodeResult",
    "BlockSpan",
    "DecodeStatus",
    "create_empty",
    "decode",
    "decode_result",
    "embed",
    "encode",
    "locate",
    "locate_all",
    "read_or_create",
    "remove",
]
