# Copyright (C) 2024-2025 The ctvpool developers
#
# This file is part of ctvpool
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of ctvpool, including this file, may be copied, modified,
# propagated, or distributed except according to the terms contained in the
# LICENSE file.

from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Tuple

from coincurve import PublicKey  # type: ignore

from ctvpool.constants import SATOSHIS_PER_BITCOIN, LEAF_VERSION_TAPSCRIPT


def to_satoshis(num: int | float | Decimal) -> int:
    """
    Converts from any number type (int/float/Decimal) to satoshis (int)
    """
    # we need to round because of how floats are stored internally:
    # e.g. 0.29 * 100000000 = 28999999.999999996
    return int(round(num * SATOSHIS_PER_BITCOIN))


def to_btc(satoshis: int) -> Decimal:
    """Converts satoshis to a BTC Decimal, as expected by the node's RPC"""
    return Decimal(satoshis) / Decimal(SATOSHIS_PER_BITCOIN)


def hash_sha256(b: bytes) -> bytes:
    """Computes SHA-256 hash of the given bytes."""
    return hashlib.sha256(b).digest()


def hash256(b: bytes) -> bytes:
    """Double SHA-256, as used for txids and base58 checksums"""
    return hashlib.sha256(hashlib.sha256(b).digest()).digest()


def prepend_compact_size(data: bytes) -> bytes:
    """
    Counts bytes and returns them with their varint (or compact size) prepended.
    """
    varint_bytes = encode_varint(len(data))
    return varint_bytes + data


def encode_varint(i: int) -> bytes:
    """
    Encode a potentially very large integer into varint bytes. The length should be
    specified in little-endian.

    https://bitcoin.org/en/developer-reference#compactsize-unsigned-integers
    """
    if i < 253:
        return bytes([i])
    elif i < 0x10000:
        return b"\xfd" + i.to_bytes(2, "little")
    elif i < 0x100000000:
        return b"\xfe" + i.to_bytes(4, "little")
    elif i < 0x10000000000000000:
        return b"\xff" + i.to_bytes(8, "little")
    else:
        raise ValueError("Integer is too large: %d" % i)


def tagged_hash(data: bytes, tag: str) -> bytes:
    """
    Tagged hashes ensure that hashes used in one context can not be used in another.
    It is used extensively in Taproot

    A tagged hash is: SHA256( SHA256("TapTweak") ||
                              SHA256("TapTweak") ||
                              data
                            )
    """

    tag_digest = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_digest + tag_digest + data).digest()


def tapleaf_tagged_hash(
    script_bytes: bytes, leaf_version: int = LEAF_VERSION_TAPSCRIPT
) -> bytes:
    """Calculates the tagged hash for a tapleaf"""
    script_part = bytes([leaf_version]) + prepend_compact_size(script_bytes)
    return tagged_hash(script_part, "TapLeaf")


def tapbranch_tagged_hash(thashed_a: bytes, thashed_b: bytes) -> bytes:
    """Calculates the tagged hash for a tapbranch"""
    # order - smaller left side
    if thashed_a < thashed_b:
        return tagged_hash(thashed_a + thashed_b, "TapBranch")
    else:
        return tagged_hash(thashed_b + thashed_a, "TapBranch")


def calculate_tweak(internal_key: bytes, merkle_root: bytes = b"") -> int:
    """
    Calculates the taproot tweak of an x-only internal key committing to
    the given script tree merkle root (empty for key-path only outputs).
    """
    tweak = tagged_hash(internal_key + merkle_root, "TapTweak")

    # we convert to int for later elliptic curve arithmetics
    return b_to_i(tweak)


def tweak_taproot_pubkey(internal_key: bytes, tweak: int) -> Tuple[bytes, bool]:
    """
    Tweaks the x-only internal key with the specified tweak. Returns the
    x-only output key and whether its y coordinate is odd (needed for the
    control block).
    """

    # lift_x: the x-only key always stands for the point with even y
    point = PublicKey(b"\x02" + internal_key)

    # Q = P + t*G
    tweaked = point.add(i_to_b32(tweak))
    compressed = tweaked.format(compressed=True)

    return compressed[1:], compressed[0] == 0x03


#
# Basic conversions between bytes (b), hexadecimal (h) and integer (i)
#
def b_to_h(b: bytes) -> str:
    """Converts bytes to hexadecimal string"""
    return b.hex()


def h_to_b(h: str) -> bytes:
    """Converts hexadecimal string to bytes"""
    return bytes.fromhex(h)


# to convert hashes to ints we need byteorder BIG...
def b_to_i(b: bytes) -> int:
    """Converts a bytes to a number"""
    return int.from_bytes(b, byteorder="big")


def i_to_b32(i: int) -> bytes:
    """Converts a integer to bytes"""
    return i.to_bytes(32, byteorder="big")
